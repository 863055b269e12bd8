"""Errors raised by the conversation core."""

from __future__ import annotations


class ConversationNotFoundError(RuntimeError):
    """Raised when a conversation could not be located."""


class MessageValidationError(ValueError):
    """Raised when an inbound message is rejected before persistence."""


class InvalidTransitionError(RuntimeError):
    """Raised when a status change is not allowed by the state graph."""


__all__ = [
    "ConversationNotFoundError",
    "InvalidTransitionError",
    "MessageValidationError",
]
