"""Built-in scene editing tools."""

from __future__ import annotations

from typing import Any

from forge_agent.ai.tools.base import Tool
from forge_agent.chat.sanitizer import validate_entity_name
from forge_agent.core.errors import ToolInputError
from forge_agent.documents.store import Entity, SceneState, Transform

ENTITY_TYPES = (
    "cube",
    "sphere",
    "plane",
    "cylinder",
    "cone",
    "torus",
    "capsule",
    "point_light",
    "directional_light",
    "spot_light",
    "empty",
)

_VEC3_SCHEMA = {
    "type": "array",
    "items": {"type": "number"},
    "minItems": 3,
    "maxItems": 3,
}


def _vec3(value: Any, field_name: str) -> list[float]:
    if (
        not isinstance(value, (list, tuple))
        or len(value) != 3
        or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    ):
        raise ToolInputError(f"'{field_name}' must be an array of three numbers")
    return [float(v) for v in value]


def _require_entity(scene: SceneState, tool_input: dict[str, Any]) -> Entity:
    entity_id = tool_input.get("entityId")
    if not isinstance(entity_id, str) or not entity_id:
        raise ToolInputError("'entityId' is required")
    entity = scene.entities.get(entity_id)
    if entity is None:
        raise ToolInputError(f"Entity not found: {entity_id}")
    return entity


def _describe(entity: Entity) -> dict[str, Any]:
    return {
        "entityId": entity.id,
        "name": entity.name,
        "entityType": entity.entity_type,
        "visible": entity.visible,
        "parentId": entity.parent_id,
        "position": list(entity.transform.position),
        "rotation": list(entity.transform.rotation),
        "scale": list(entity.transform.scale),
    }


class SpawnEntityTool(Tool):
    @property
    def name(self) -> str:
        return "spawn_entity"

    @property
    def description(self) -> str:
        return (
            "Create a new entity in the scene. The new entity becomes the selection. "
            "Returns the new entity id."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityType": {
                    "type": "string",
                    "enum": list(ENTITY_TYPES),
                    "description": "Kind of entity to create",
                },
                "name": {"type": "string", "description": "Display name (optional)"},
                "position": {**_VEC3_SCHEMA, "description": "World position [x, y, z]"},
            },
            "required": ["entityType"],
        }

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        entity_type = tool_input.get("entityType")
        if entity_type not in ENTITY_TYPES:
            raise ToolInputError(f"Unknown entity type: {entity_type}")

        raw_name = tool_input.get("name")
        default_name = entity_type.replace("_", " ").title()
        name = validate_entity_name(raw_name) if raw_name else default_name

        transform = Transform()
        if "position" in tool_input:
            transform.position = _vec3(tool_input["position"], "position")

        entity = Entity(
            id=scene.allocate_id(),
            name=name,
            entity_type=entity_type,
            transform=transform,
        )
        scene.entities[entity.id] = entity
        scene.selected_ids = [entity.id]
        return {"entityId": entity.id, "message": f"Spawned {entity_type} '{name}'"}


class DespawnEntityTool(Tool):
    @property
    def name(self) -> str:
        return "despawn_entity"

    @property
    def description(self) -> str:
        return "Delete one or more entities (and their children) from the scene."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityId": {"type": "string", "description": "Entity to delete"},
                "entityIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Several entities to delete",
                },
            },
        }

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        ids = tool_input.get("entityIds")
        if ids is None:
            ids = [tool_input["entityId"]] if tool_input.get("entityId") else []
        if not ids:
            raise ToolInputError("'entityId' or 'entityIds' is required")
        missing = [i for i in ids if i not in scene.entities]
        if missing:
            raise ToolInputError(f"Entity not found: {', '.join(missing)}")

        doomed = set(ids)
        # Children go with their parents
        changed = True
        while changed:
            changed = False
            for entity in scene.entities.values():
                if entity.parent_id in doomed and entity.id not in doomed:
                    doomed.add(entity.id)
                    changed = True

        for entity_id in doomed:
            del scene.entities[entity_id]
        scene.selected_ids = [i for i in scene.selected_ids if i not in doomed]
        return {"deleted": len(doomed)}


class UpdateTransformTool(Tool):
    @property
    def name(self) -> str:
        return "update_transform"

    @property
    def description(self) -> str:
        return "Set the position, rotation (radians) and/or scale of an entity."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityId": {"type": "string"},
                "position": _VEC3_SCHEMA,
                "rotation": _VEC3_SCHEMA,
                "scale": _VEC3_SCHEMA,
            },
            "required": ["entityId"],
        }

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        entity = _require_entity(scene, tool_input)
        fields = [f for f in ("position", "rotation", "scale") if f in tool_input]
        if not fields:
            raise ToolInputError("Provide at least one of position, rotation, scale")
        for field_name in fields:
            setattr(entity.transform, field_name, _vec3(tool_input[field_name], field_name))
        return {"entityId": entity.id, "updated": fields}


class RenameEntityTool(Tool):
    @property
    def name(self) -> str:
        return "rename_entity"

    @property
    def description(self) -> str:
        return "Rename an entity."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityId": {"type": "string"},
                "name": {"type": "string"},
            },
            "required": ["entityId", "name"],
        }

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        entity = _require_entity(scene, tool_input)
        entity.name = validate_entity_name(tool_input.get("name", ""))
        return {"entityId": entity.id, "name": entity.name}


class SetVisibilityTool(Tool):
    @property
    def name(self) -> str:
        return "set_visibility"

    @property
    def description(self) -> str:
        return "Show or hide an entity. Toggles when 'visible' is omitted."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityId": {"type": "string"},
                "visible": {"type": "boolean"},
            },
            "required": ["entityId"],
        }

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        entity = _require_entity(scene, tool_input)
        visible = tool_input.get("visible")
        entity.visible = (not entity.visible) if visible is None else bool(visible)
        return {"entityId": entity.id, "visible": entity.visible}


class SelectEntitiesTool(Tool):
    @property
    def name(self) -> str:
        return "select_entities"

    @property
    def description(self) -> str:
        return "Replace the editor selection so the user can see the given entities."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "entityIds": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["entityIds"],
        }

    @property
    def undoable(self) -> bool:
        return False

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        ids = tool_input.get("entityIds")
        if not isinstance(ids, list):
            raise ToolInputError("'entityIds' must be a list")
        missing = [i for i in ids if i not in scene.entities]
        if missing:
            raise ToolInputError(f"Entity not found: {', '.join(missing)}")
        scene.selected_ids = list(ids)
        return {"selected": len(ids)}


class GetSceneGraphTool(Tool):
    @property
    def name(self) -> str:
        return "get_scene_graph"

    @property
    def description(self) -> str:
        return "List every entity in the scene with its id, name, type and parent."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def undoable(self) -> bool:
        return False

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        return {
            "entities": [
                {
                    "entityId": e.id,
                    "name": e.name,
                    "entityType": e.entity_type,
                    "parentId": e.parent_id,
                    "visible": e.visible,
                }
                for e in scene.entities.values()
            ],
            "selectedIds": list(scene.selected_ids),
        }


class GetEntityTool(Tool):
    @property
    def name(self) -> str:
        return "get_entity"

    @property
    def description(self) -> str:
        return "Get full details (transform, visibility, parent) for one entity."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"entityId": {"type": "string"}},
            "required": ["entityId"],
        }

    @property
    def undoable(self) -> bool:
        return False

    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        return _describe(_require_entity(scene, tool_input))


BUILTIN_SCENE_TOOLS: tuple[type[Tool], ...] = (
    SpawnEntityTool,
    DespawnEntityTool,
    UpdateTransformTool,
    RenameEntityTool,
    SetVisibilityTool,
    SelectEntitiesTool,
    GetSceneGraphTool,
    GetEntityTool,
)
