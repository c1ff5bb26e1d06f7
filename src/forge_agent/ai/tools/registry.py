"""Tool registry for discovering and managing available tools."""

from __future__ import annotations

from typing import Any

from forge_agent.ai.tools.base import Tool
from forge_agent.log import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name, undoable=tool.undoable)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def is_undoable(self, name: str) -> bool:
        """Unknown tools never touch the scene, so they are not undoable."""
        tool = self._tools.get(name)
        return tool.undoable if tool is not None else False

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def to_api_list(self) -> list[dict[str, Any]]:
        return [t.to_api_dict() for t in self._tools.values()]

    def discover_and_register(self) -> None:
        """Register all built-in scene tools."""
        from forge_agent.ai.tools.scene import BUILTIN_SCENE_TOOLS

        for tool_cls in BUILTIN_SCENE_TOOLS:
            self.register(tool_cls())
