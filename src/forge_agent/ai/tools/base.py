"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from forge_agent.documents.store import SceneState


class Tool(ABC):
    """Base class for all model-callable scene tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the completion service."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @property
    def undoable(self) -> bool:
        """Whether the tool mutates the scene (and so pushes one undo step)."""
        return True

    @abstractmethod
    async def execute(self, scene: SceneState, tool_input: dict[str, Any]) -> Any:
        """Apply the tool to the scene and return a JSON-serializable result.

        Raise ToolInputError for bad input; the store turns it into a failed result.
        """
        ...

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
