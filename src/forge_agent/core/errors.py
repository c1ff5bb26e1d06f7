"""Exception hierarchy for forge-agent."""

from __future__ import annotations


class ForgeAgentError(Exception):
    """Base class for all forge-agent errors."""


class CompletionError(ForgeAgentError):
    """The completion service could not be reached or refused the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamCancelled(ForgeAgentError):
    """The active stream was cancelled by the caller. Not a user-visible error."""


class InvalidToolCallTransition(ForgeAgentError):
    def __init__(self, call_id: str, current: str, target: str):
        super().__init__(f"Tool call {call_id}: cannot move from '{current}' to '{target}'")
        self.call_id = call_id
        self.current = current
        self.target = target


class ToolCallProtocolError(ForgeAgentError):
    """Tool-call stream events arrived in an order the assembler cannot accept."""


class MessageNotFound(ForgeAgentError):
    def __init__(self, message_id: str):
        super().__init__(f"No message with id '{message_id}'")
        self.message_id = message_id


class ToolInputError(ForgeAgentError):
    """A tool was invoked with missing or invalid input."""
