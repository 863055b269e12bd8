"""Tools a bot can expose to the generative model.

Tools form a closed set of kinds. ``request_human_agent`` is interpreted by
the orchestrator; every other declared tool is a passthrough that is
advertised to the model but never acted upon.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from app.bots.schemas import DEFAULT_TOOL_PARAMETERS, ToolDefinition

HUMAN_HANDOFF_TOOL = "request_human_agent"

HANDOFF_WITH_REASON = (
    "I understand you'd like to speak with a human agent. "
    "I'll connect you with someone who can help with: {reason}"
)
HANDOFF_WITHOUT_REASON = "I'll connect you with a human agent who can better assist you."


@dataclass(frozen=True)
class ToolOutcome:
    text: str
    escalate: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class HumanHandoffTool:
    name: str = HUMAN_HANDOFF_TOOL
    description: str = "Transfer the conversation to a human support agent."
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "user_reason": {
                    "type": "string",
                    "description": "What the customer needs help with.",
                }
            },
            "required": [],
        }
    )

    def interpret(self, arguments: Dict[str, Any]) -> ToolOutcome:
        reason = arguments.get("user_reason")
        if isinstance(reason, str) and reason.strip():
            return ToolOutcome(HANDOFF_WITH_REASON.format(reason=reason.strip()), True, reason.strip())
        return ToolOutcome(HANDOFF_WITHOUT_REASON, True)


@dataclass(frozen=True)
class PassthroughTool:
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_TOOL_PARAMETERS))

    def interpret(self, arguments: Dict[str, Any]) -> Optional[ToolOutcome]:
        return None


Tool = Union[HumanHandoffTool, PassthroughTool]


def resolve_tool(definition: ToolDefinition) -> Tool:
    """Map a stored tool definition onto its kind."""

    parameters = definition.parameters or dict(DEFAULT_TOOL_PARAMETERS)
    if definition.name == HUMAN_HANDOFF_TOOL:
        return HumanHandoffTool(
            description=definition.description or HumanHandoffTool.description,
            parameters=parameters if parameters.get("properties") else HumanHandoffTool().parameters,
        )
    return PassthroughTool(
        name=definition.name,
        description=definition.description,
        parameters=parameters,
    )


def to_function_spec(tool: Tool) -> Dict[str, Any]:
    """Render ``tool`` in the chat-completions ``tools`` format."""

    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


__all__ = [
    "HANDOFF_WITHOUT_REASON",
    "HANDOFF_WITH_REASON",
    "HUMAN_HANDOFF_TOOL",
    "HumanHandoffTool",
    "PassthroughTool",
    "Tool",
    "ToolOutcome",
    "resolve_tool",
    "to_function_spec",
]
