"""Conversation state, persistence and message ingestion."""

from .errors import ConversationNotFoundError, InvalidTransitionError, MessageValidationError
from .models import ConversationStatus, MessageRole

__all__ = [
    "ConversationNotFoundError",
    "ConversationStatus",
    "InvalidTransitionError",
    "MessageRole",
    "MessageValidationError",
]
