"""
Tool call correlation records and result envelopes.
"""

import json
from typing import Any

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    """A normalized model-issued tool call with parsed arguments."""

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)

    def to_message_dict(self) -> dict[str, Any]:
        """OpenAI-format entry for an assistant message's ``tool_calls``."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.args, ensure_ascii=False),
            },
        }


class ToolSource(BaseModel):
    deck: str
    action_name: str | None = None


class ToolEnvelope(BaseModel):
    """
    Result envelope handed back to the parent for one tool call.

    ``status`` defaults to 200 on clean success and 500 on a handled
    application error unless overridden.
    """

    run_id: str
    action_call_id: str
    parent_action_call_id: str | None = None
    source: ToolSource
    status: int = 200
    payload: Any = None
    message: str | None = None
    code: str | None = None
    meta: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.status >= 400

    def to_tool_content(self) -> str:
        """Serialized form placed in the ``tool`` message history entry."""
        return json.dumps(self.model_dump(mode="json", exclude_none=True), ensure_ascii=False)


class _Completion(BaseModel):
    payload: Any = None
    status: int | None = None
    message: str | None = None
    code: str | None = None
    meta: dict[str, Any] | None = None


class RespondEnvelope(_Completion):
    """Structured completion produced through the respond tool or ctx.respond()."""


class EndSignal(_Completion):
    """Explicit stop produced through the end tool or ctx.end()."""


__all__ = [
    "ToolCall",
    "ToolSource",
    "ToolEnvelope",
    "RespondEnvelope",
    "EndSignal",
]
