"""
Reserved synthetic tools implemented by the engine itself.

- init: carries an out-of-band input payload into a fresh history
- respond: structured completion for decks with ``respond=True``
- complete: auto-emitted after each action call resolves
- end: optional explicit stop signal
"""

import json
import re
from typing import Any

from deckrun.domain.envelopes import ToolCall, ToolEnvelope
from deckrun.domain.errors import DeckLoadError, ToolResolutionError
from deckrun.domain.models import new_id

RESERVED_PREFIX = "deckrun_"

INIT_TOOL = f"{RESERVED_PREFIX}init"
RESPOND_TOOL = f"{RESERVED_PREFIX}respond"
COMPLETE_TOOL = f"{RESERVED_PREFIX}complete"
END_TOOL = f"{RESERVED_PREFIX}end"

SYNTHETIC_TOOLS = frozenset({INIT_TOOL, RESPOND_TOOL, COMPLETE_TOOL, END_TOOL})

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_TOOL_NAME_LENGTH = 64

# Shared by respond and end
_COMPLETION_PARAMETERS = {
    "type": "object",
    "properties": {
        "status": {"type": "number"},
        "payload": {},
        "message": {"type": "string"},
        "code": {"type": "string"},
        "meta": {"type": "object"},
    },
    "additionalProperties": True,
}


def validate_tool_name(name: str, *, kind: str = "tool") -> None:
    """Load-time name check for user-declared actions and external tools."""
    if name.startswith(RESERVED_PREFIX):
        raise DeckLoadError(
            f"{kind} name {name!r} uses the reserved prefix {RESERVED_PREFIX!r}",
            details={"name": name},
        )
    if len(name) > MAX_TOOL_NAME_LENGTH or not TOOL_NAME_PATTERN.match(name):
        raise ToolResolutionError(
            f"{kind} name {name!r} must match {TOOL_NAME_PATTERN.pattern} "
            f"and be at most {MAX_TOOL_NAME_LENGTH} characters",
            code="invalid_tool_name",
            status=400,
            details={"name": name},
        )


def respond_definition() -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": RESPOND_TOOL,
            "description": "Finish the current deck with a structured response.",
            "parameters": _COMPLETION_PARAMETERS,
        },
    }


def end_definition() -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": END_TOOL,
            "description": "End the current run once all goals are complete.",
            "parameters": _COMPLETION_PARAMETERS,
        },
    }


def tool_pair(call: ToolCall, content: str) -> list[dict[str, Any]]:
    """An assistant tool_call message followed by its tool result."""
    return [
        {"role": "assistant", "content": None, "tool_calls": [call.to_message_dict()]},
        {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content},
    ]


def init_messages(payload: Any) -> tuple[ToolCall, list[dict[str, Any]]]:
    call = ToolCall(id=new_id("call"), name=INIT_TOOL, args={})
    return call, tool_pair(call, json.dumps(payload, ensure_ascii=False, default=str))


def saved_init_input(messages: list[dict[str, Any]]) -> Any:
    """The most recent init payload in a saved history, or None."""
    for message in reversed(messages):
        if message.get("role") == "tool" and message.get("name") == INIT_TOOL:
            content = message.get("content")
            if not isinstance(content, str):
                return None
            try:
                return json.loads(content)
            except json.JSONDecodeError:
                return content
    return None


def complete_messages(envelope: ToolEnvelope) -> list[dict[str, Any]]:
    content = envelope.to_tool_content()
    call = ToolCall(id=new_id("event"), name=COMPLETE_TOOL, args=json.loads(content))
    return tool_pair(call, content)


__all__ = [
    "RESERVED_PREFIX",
    "INIT_TOOL",
    "RESPOND_TOOL",
    "COMPLETE_TOOL",
    "END_TOOL",
    "SYNTHETIC_TOOLS",
    "TOOL_NAME_PATTERN",
    "MAX_TOOL_NAME_LENGTH",
    "validate_tool_name",
    "respond_definition",
    "end_definition",
    "tool_pair",
    "init_messages",
    "saved_init_input",
    "complete_messages",
]
