"""Document store interface and the in-memory scene implementation."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

from forge_agent.log import get_logger

if TYPE_CHECKING:
    from forge_agent.ai.tools.registry import ToolRegistry

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 100


@dataclass
class ToolExecutionResult:
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class Transform:
    position: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    rotation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    scale: list[float] = field(default_factory=lambda: [1.0, 1.0, 1.0])


@dataclass
class Entity:
    id: str
    name: str
    entity_type: str
    transform: Transform = field(default_factory=Transform)
    visible: bool = True
    parent_id: Optional[str] = None


@dataclass
class SceneState:
    """Mutable scene contents. Tools operate on this directly."""

    entities: dict[str, Entity] = field(default_factory=dict)
    selected_ids: list[str] = field(default_factory=list)
    next_id: int = 1

    def allocate_id(self) -> str:
        entity_id = str(self.next_id)
        self.next_id += 1
        return entity_id


@dataclass(frozen=True)
class SceneSnapshot:
    """Read-only copy of the scene handed to executors and the context builder."""

    entities: Mapping[str, Entity]
    selected_ids: tuple[str, ...]
    can_undo: bool
    undo_depth: int


class DocumentStore(ABC):
    """The external mutable state that tool calls act on."""

    @abstractmethod
    def snapshot(self) -> Any:
        """Return the current state for executors and context building."""
        ...

    @abstractmethod
    async def execute_tool_call(
        self, name: str, tool_input: Mapping[str, Any], snapshot: Any
    ) -> ToolExecutionResult:
        """Run one tool against the store. Failures come back as results, not exceptions."""
        ...

    @abstractmethod
    def undo(self) -> bool:
        """Step back one entry of the shared history. False when there is nothing to undo."""
        ...

    @property
    @abstractmethod
    def can_undo(self) -> bool:
        ...


class SceneStore(DocumentStore):
    """In-memory scene with a single shared undo history."""

    def __init__(self, registry: ToolRegistry, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self._registry = registry
        self._history_limit = history_limit
        self._history: list[SceneState] = []
        self.state = SceneState()

    def snapshot(self) -> SceneSnapshot:
        return SceneSnapshot(
            entities=copy.deepcopy(self.state.entities),
            selected_ids=tuple(self.state.selected_ids),
            can_undo=self.can_undo,
            undo_depth=len(self._history),
        )

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    def record_edit(self) -> None:
        """Push the current state onto the history before a mutation."""
        self._history.append(copy.deepcopy(self.state))
        self._trim_history()

    def _trim_history(self) -> None:
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

    def undo(self) -> bool:
        if not self._history:
            return False
        self.state = self._history.pop()
        logger.debug("scene_undo", remaining=len(self._history))
        return True

    async def execute_tool_call(
        self, name: str, tool_input: Mapping[str, Any], snapshot: Any
    ) -> ToolExecutionResult:
        tool = self._registry.get(name)
        if tool is None:
            return ToolExecutionResult(success=False, error=f"Unknown tool: {name}")

        if tool.undoable:
            # Trimmed only once the tool succeeds, so a failure keeps the oldest step
            self._history.append(copy.deepcopy(self.state))
        try:
            result = await tool.execute(self.state, dict(tool_input))
        except Exception as e:
            if tool.undoable:
                self.state = self._history.pop()
            logger.warning("scene_tool_failed", tool=name, error=str(e))
            return ToolExecutionResult(success=False, error=str(e))
        if tool.undoable:
            self._trim_history()
        return ToolExecutionResult(success=True, result=result)
