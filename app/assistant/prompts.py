"""Prompt assembly for assistant replies."""

from __future__ import annotations

from typing import Iterable, Sequence

from app.bots.schemas import Faq
from app.conversations import schemas as convo_schemas
from app.conversations.models import MessageRole
from app.knowledge.schemas import SearchResult


def faq_block(faqs: Iterable[Faq]) -> str:
    return "\n\n".join(f"Q: {faq.question}\nA: {faq.answer}" for faq in faqs)


def knowledge_block(results: Iterable[SearchResult]) -> str:
    return "\n\n".join(f"{result.source_label}: {result.text}" for result in results)


def system_prompt(instructions: str, faqs: str, knowledge: str) -> str:
    prompt = instructions or ""
    if faqs:
        prompt += f"\n\nFAQ Context:\n{faqs}"
    if knowledge:
        prompt += f"\n\nKnowledge Base Context:\n{knowledge}"
    return prompt


def history_messages(history: Sequence[convo_schemas.Message], turns: int) -> list[dict[str, str]]:
    """Map the last ``turns`` messages onto chat roles.

    Customers speak as ``user``; assistant and agent messages both read as
    ``assistant`` to the model.
    """

    window = list(history)[-turns:] if turns > 0 else []
    return [
        {
            "role": "user" if message.role == MessageRole.CUSTOMER else "assistant",
            "content": message.text,
        }
        for message in window
    ]


def build_messages(
    *,
    instructions: str,
    faqs: str,
    knowledge: str,
    history: Sequence[convo_schemas.Message],
    turns: int,
    user_text: str,
) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt(instructions, faqs, knowledge)}]
    messages.extend(history_messages(history, turns))
    messages.append({"role": "user", "content": user_text})
    return messages


__all__ = ["build_messages", "faq_block", "history_messages", "knowledge_block", "system_prompt"]
