"""Input sanitization for chat text and entity names."""

from __future__ import annotations

import re

MAX_CHAT_INPUT_LENGTH = 4000
MAX_ENTITY_NAME_LENGTH = 64

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_NAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s\-_]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_chat_input(text: str) -> str:
    """Strip control characters (tab/newline/CR survive), cap the length, trim."""
    if not isinstance(text, str):
        return ""
    sanitized = _CONTROL_CHARS.sub("", text)
    return sanitized[:MAX_CHAT_INPUT_LENGTH].strip()


def validate_entity_name(name: str) -> str:
    """Reduce a name to letters, digits, spaces, '-' and '_'. Falls back to 'Entity'."""
    if not isinstance(name, str):
        return "Entity"
    sanitized = _NAME_DISALLOWED.sub("", name)
    sanitized = _WHITESPACE_RUN.sub(" ", sanitized)
    sanitized = sanitized[:MAX_ENTITY_NAME_LENGTH].strip()
    return sanitized or "Entity"
