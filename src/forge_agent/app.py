"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from forge_agent.ai.client import (
    AnthropicCompletionService,
    CompletionService,
    RelayCompletionService,
)
from forge_agent.ai.tools.registry import ToolRegistry
from forge_agent.chat.session import ChatSession
from forge_agent.config import AppConfig
from forge_agent.documents.store import SceneStore
from forge_agent.log import get_logger
from forge_agent.storage.conversation_repo import ConversationRepository
from forge_agent.storage.database import Database

logger = get_logger(__name__)


class ForgeAgentApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, service: CompletionService | None = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(
            self.db, max_stored_messages=config.chat.max_stored_messages
        )
        self.tool_registry = ToolRegistry()
        self.scene = SceneStore(self.tool_registry, history_limit=config.scene.history_limit)
        self.service = service or self._create_completion_service()
        self.session = ChatSession(
            service=self.service,
            store=self.scene,
            tool_registry=self.tool_registry,
            config=config.chat,
            repo=self.conversation_repo,
        )

    async def start(self) -> None:
        """Initialize storage and register tools."""
        await self.db.initialize()
        self.tool_registry.discover_and_register()
        logger.info(
            "forge_agent_started",
            backend=self.config.chat.backend,
            model=self.config.chat.model,
            tool_count=len(self.tool_registry.all_tools()),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        self.session.stop_streaming()
        try:
            await self.service.close()
        except Exception as e:
            logger.error("completion_service_close_error", error=str(e))
        await self.db.close()
        logger.info("forge_agent_stopped")

    def _create_completion_service(self) -> CompletionService:
        """Create the completion backend named in the chat configuration."""
        match self.config.chat.backend:
            case "anthropic":
                if not self.config.anthropic:
                    raise ValueError(
                        "Chat backend is 'anthropic' but there is no 'anthropic' section in config"
                    )
                return AnthropicCompletionService(
                    self.config.anthropic, thinking_budget=self.config.chat.thinking_budget
                )
            case "relay":
                return RelayCompletionService(self.config.relay)
            case _:
                raise ValueError(f"Unknown chat backend: {self.config.chat.backend}")
