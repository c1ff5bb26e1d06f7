"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
MAX_LOOP_ITERATIONS = 10
MAX_STORED_MESSAGES = 50

DEFAULT_SYSTEM_PROMPT = """You are an AI game creation assistant for a browser-based 3D game engine.
You help users build games by creating and modifying 3D scenes using the provided tools.

Guidelines:
- When the user asks you to create something, use the tools to make it happen.
- Explain what you're doing briefly, then act. Don't ask permission for simple operations.
- For complex requests, break them into steps and execute each one.
- Entity IDs are strings. Use get_scene_graph to find entity IDs.
- Keep your text responses concise. Focus on action, not explanation."""


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class RelayConfig(BaseModel):
    url: str = "http://localhost:3000/api/chat"
    api_key: Optional[str] = None
    timeout: int = 120


class ChatConfig(BaseModel):
    backend: Literal["anthropic", "relay"] = "anthropic"
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    thinking_enabled: bool = False
    thinking_budget: int = 2048
    approval_mode: bool = False
    max_loop_iterations: int = Field(default=MAX_LOOP_ITERATIONS, ge=1)
    max_stored_messages: int = Field(default=MAX_STORED_MESSAGES, ge=1)


class SceneConfig(BaseModel):
    history_limit: int = Field(default=100, ge=1)


class StorageConfig(BaseModel):
    db_path: str = "./data/forge_agent.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    relay: RelayConfig = Field(default_factory=RelayConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    scene: SceneConfig = Field(default_factory=SceneConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
