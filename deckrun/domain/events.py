"""
Trace event protocol.

One typed event per state transition. Events are observational only; the
engine never reads them back.
"""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TraceEventType(str, Enum):
    """Event types emitted to the trace sink"""

    # Run-level events
    RUN_START = "run.start"
    RUN_END = "run.end"

    # Invocation-level events
    DECK_START = "deck.start"
    DECK_END = "deck.end"
    MESSAGE_USER = "message.user"

    # Provider events
    MODEL_CALL = "model.call"
    MODEL_RESULT = "model.result"
    MODEL_FALLBACK = "model.fallback"

    # Tool / action events
    TOOL_CALL = "tool.call"
    TOOL_RESULT = "tool.result"
    ACTION_START = "action.start"
    ACTION_END = "action.end"

    # Handler events
    HANDLER_FIRE = "handler.fire"
    HANDLER_RESULT = "handler.result"
    HANDLER_ERROR = "handler.error"

    GUARDRAIL_EXCEEDED = "guardrail.exceeded"

    # Compute step output
    LOG = "log"
    MONOLOG = "monolog"


class TraceEvent(BaseModel):
    type: TraceEventType
    run_id: str
    action_call_id: str | None = None
    parent_action_call_id: str | None = None
    deck: str | None = None
    name: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    ts: float = Field(default_factory=time.time)


__all__ = ["TraceEventType", "TraceEvent"]
