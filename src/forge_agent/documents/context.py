"""Describe the current scene as text for the completion service."""

from __future__ import annotations

import math

from forge_agent.documents.store import Entity, SceneSnapshot

MAX_LISTED_ENTITIES = 200


def _format_vec3(values: list[float]) -> str:
    return "[" + ", ".join(f"{round(v, 2):g}" for v in values) + "]"


def _describe_entity(entity: Entity, indent: str = "") -> str:
    line = f'{indent}- "{entity.name}" ({entity.entity_type}, id: {entity.id})'
    if not entity.visible:
        line += " [hidden]"
    return line


def _describe_entity_detailed(entity: Entity, snapshot: SceneSnapshot) -> list[str]:
    transform = entity.transform
    rotation_deg = [math.degrees(r) for r in transform.rotation]
    lines = [
        f'  Entity: "{entity.name}" (id: {entity.id})',
        f"  Type: {entity.entity_type}",
        f"  Position: {_format_vec3(transform.position)}",
        f"  Rotation: {_format_vec3(rotation_deg)}deg",
        f"  Scale: {_format_vec3(transform.scale)}",
    ]
    if not entity.visible:
        lines.append("  Visibility: hidden")
    children = [e.name for e in snapshot.entities.values() if e.parent_id == entity.id]
    if children:
        lines.append(f"  Children: {', '.join(children)}")
    return lines


def _walk(snapshot: SceneSnapshot, parent_id: str | None, depth: int, out: list[str]) -> None:
    for entity in snapshot.entities.values():
        if entity.parent_id != parent_id:
            continue
        if len(out) >= MAX_LISTED_ENTITIES:
            return
        out.append(_describe_entity(entity, indent="  " * depth))
        _walk(snapshot, entity.id, depth + 1, out)


def build_scene_context(snapshot: SceneSnapshot) -> str:
    """Build the scene summary sent alongside every round."""
    sections: list[str] = ["## Current Scene"]

    count = len(snapshot.entities)
    sections.append(f"Entities: {count}")
    if count:
        listed: list[str] = []
        _walk(snapshot, None, 0, listed)
        sections.extend(listed)
        if count > len(listed):
            sections.append(f"  ... and {count - len(listed)} more")
    else:
        sections.append("The scene is empty.")

    selected = [snapshot.entities[i] for i in snapshot.selected_ids if i in snapshot.entities]
    if selected:
        sections.append("")
        sections.append(f"## Selection ({len(selected)})")
        for entity in selected:
            sections.extend(_describe_entity_detailed(entity, snapshot))
    else:
        sections.append("")
        sections.append("Nothing is selected.")

    sections.append("")
    sections.append(
        f"Undo available: {'yes' if snapshot.can_undo else 'no'} ({snapshot.undo_depth} steps)"
    )
    return "\n".join(sections)
