"""Retrieval-augmented assistant replies with a human handoff signal.

:meth:`ResponseOrchestrator.respond` never raises: every failure is logged
and turned into a fallback reply that asks for escalation, so the customer
is never left without an answer or a path to a person.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence
from uuid import UUID

from app.bots.repository import BotConfigRepository, resolve_bot_config
from app.config import Settings
from app.conversations import schemas as convo_schemas
from app.knowledge.retrieval import KnowledgeRetrievalEngine

from . import prompts
from .heuristics import reply_suggests_escalation
from .providers import Completion, GenerativeProvider, ProviderUnavailableError
from .tools import ToolOutcome, resolve_tool, to_function_spec

logger = logging.getLogger(__name__)

NO_PROVIDER_REPLY = (
    "I'm sorry, I'm currently unable to process your request. "
    "Please contact a human agent for assistance."
)
EMPTY_REPLY = "I'm sorry, I couldn't generate a response. Please try again."
UNINTERPRETED_TOOL_REPLY = (
    "I've processed your request, but I'm not sure how to respond. "
    "Let me connect you with a human agent."
)
FAILURE_REPLY = "I'm experiencing technical difficulties. Let me connect you with a human agent."


@dataclass(frozen=True)
class AssistantReply:
    text: str
    escalate: bool
    reason: Optional[str] = None


class ResponseOrchestrator:
    def __init__(
        self,
        bots: BotConfigRepository,
        retrieval: KnowledgeRetrievalEngine,
        provider: GenerativeProvider,
        settings: Settings,
    ) -> None:
        self._bots = bots
        self._retrieval = retrieval
        self._provider = provider
        self._settings = settings

    async def respond(
        self,
        text: str,
        history: Sequence[convo_schemas.Message],
        bot_config_id: Optional[UUID] = None,
    ) -> AssistantReply:
        if not self._provider.available:
            return AssistantReply(NO_PROVIDER_REPLY, True)
        try:
            return await self._respond(text, history, bot_config_id)
        except ProviderUnavailableError:
            return AssistantReply(NO_PROVIDER_REPLY, True)
        except Exception:
            logger.exception("Assistant reply failed for bot %s", bot_config_id)
            return AssistantReply(FAILURE_REPLY, True)

    async def _respond(
        self,
        text: str,
        history: Sequence[convo_schemas.Message],
        bot_config_id: Optional[UUID],
    ) -> AssistantReply:
        config = resolve_bot_config(self._bots, bot_config_id)
        results = await self._retrieval.search(
            text,
            bot_config_id=config.id,
            limit=self._settings.retrieval_top_k,
            threshold=self._settings.retrieval_threshold,
        )
        messages = prompts.build_messages(
            instructions=config.system_instructions,
            faqs=prompts.faq_block(config.faqs),
            knowledge=prompts.knowledge_block(results),
            history=history,
            turns=self._settings.prompt_history_turns,
            user_text=text,
        )
        tools = {tool.name: tool for tool in (resolve_tool(d) for d in config.tools)}
        completion = await self._provider.complete(
            model=config.model or self._settings.openai_model,
            temperature=config.temperature,
            messages=messages,
            tools=[to_function_spec(tool) for tool in tools.values()],
            max_tokens=self._settings.max_reply_tokens,
        )
        return self._interpret(text, completion, tools)

    @staticmethod
    def _interpret(text: str, completion: Completion, tools: dict) -> AssistantReply:
        if completion.tool_calls:
            for call in completion.tool_calls:
                tool = tools.get(call.name)
                outcome: Optional[ToolOutcome] = tool.interpret(call.arguments) if tool else None
                if outcome is not None:
                    return AssistantReply(outcome.text, outcome.escalate, outcome.reason)
            logger.info(
                "No interpretable tool call among %s", [call.name for call in completion.tool_calls]
            )
            return AssistantReply(UNINTERPRETED_TOOL_REPLY, True)

        reply = completion.text.strip() or EMPTY_REPLY
        return AssistantReply(reply, reply_suggests_escalation(text, reply))


__all__ = [
    "AssistantReply",
    "EMPTY_REPLY",
    "FAILURE_REPLY",
    "NO_PROVIDER_REPLY",
    "ResponseOrchestrator",
    "UNINTERPRETED_TOOL_REPLY",
]
