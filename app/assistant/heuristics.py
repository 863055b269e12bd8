"""Keyword heuristics that decide when a person should take over."""

from __future__ import annotations

from typing import Iterable

ESCALATION_KEYWORDS: tuple[str, ...] = (
    "speak to human",
    "talk to agent",
    "human agent",
    "real person",
    "customer service",
    "representative",
    "escalate",
    "speak to someone",
    "talk to someone",
)

HUMAN_REQUEST_PHRASES: tuple[str, ...] = ESCALATION_KEYWORDS + ("human help", "live agent")

LIMITATION_PHRASES: tuple[str, ...] = (
    "cannot help",
    "unable to assist",
    "beyond my capabilities",
    "need human assistance",
    "contact support",
    "speak with agent",
)


def contains_any(text: str, phrases: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in phrases)


def requests_escalation(text: str) -> bool:
    """``True`` when a customer message explicitly asks for a person."""

    return contains_any(text, ESCALATION_KEYWORDS)


def reply_suggests_escalation(user_text: str, reply: str) -> bool:
    return contains_any(user_text, HUMAN_REQUEST_PHRASES) or contains_any(reply, LIMITATION_PHRASES)


__all__ = [
    "ESCALATION_KEYWORDS",
    "HUMAN_REQUEST_PHRASES",
    "LIMITATION_PHRASES",
    "contains_any",
    "reply_suggests_escalation",
    "requests_escalation",
]
