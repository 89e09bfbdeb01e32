"""
Core domain models for deckrun.

This module contains the execution-side records:
- Guardrails: depth/pass/timeout budgets
- Invocation: one executing instance of a deck
- Run: the top-level execution context
"""

import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .errors import DeckrunError
from .provider import Usage


def new_id(prefix: str) -> str:
    # Short enough for provider tool_call id limits (~40 chars)
    return f"{prefix}-{uuid4().hex[:24]}"


# ============================================================================
# Enums
# ============================================================================


class DeckKind(str, Enum):
    """Discriminator between model-backed and compute-only decks."""

    MODEL = "model"
    COMPUTE = "compute"


class InvocationStatus(str, Enum):
    PENDING = "pending"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOLS = "awaiting_tools"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    GUARDRAIL_EXCEEDED = "guardrail_exceeded"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        InvocationStatus.COMPLETED,
        InvocationStatus.FAILED,
        InvocationStatus.GUARDRAIL_EXCEEDED,
        InvocationStatus.CANCELED,
    }
)


# ============================================================================
# Guardrails
# ============================================================================


class GuardrailOverrides(BaseModel):
    """Partial guardrails declared by a deck."""

    max_depth: int | None = Field(default=None, ge=0)
    max_passes: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1)


class Guardrails(BaseModel):
    """Immutable depth/pass/timeout budget."""

    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(default=3, ge=0)
    max_passes: int = Field(default=10, ge=1)
    timeout_ms: int = Field(default=120_000, ge=1)

    @classmethod
    def defaults(cls, settings=None) -> "Guardrails":
        """Process defaults from DeckrunSettings (the global instance if omitted)."""
        if settings is None:
            from deckrun.config.settings import settings

        return cls(
            max_depth=settings.max_depth,
            max_passes=settings.max_passes,
            timeout_ms=settings.timeout_ms,
        )

    def merge(self, overrides: "GuardrailOverrides | Guardrails | None") -> "Guardrails":
        """Overlay the non-empty fields of an override onto these guardrails."""
        if overrides is None:
            return self
        update = overrides.model_dump(exclude_none=True)
        return self.model_copy(update=update) if update else self


# ============================================================================
# Invocation
# ============================================================================


class Invocation(BaseModel):
    """
    One executing instance of a deck within a run.

    Invocations form an explicit tree through ``parent_action_call_id``;
    the parent is referenced by id, never by object.
    """

    action_call_id: str = Field(default_factory=lambda: new_id("action"))
    parent_action_call_id: str | None = None
    depth: int = 0
    deck: str
    kind: DeckKind
    handler_kind: str | None = None

    pass_count: int = 0
    messages: list[dict[str, Any]] = Field(default_factory=list)
    status: InvocationStatus = InvocationStatus.PENDING
    error: dict[str, Any] | None = None

    started_at: float = Field(default_factory=time.time)
    ended_at: float | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_action_call_id is None and self.handler_kind is None

    def transition(self, status: InvocationStatus) -> None:
        """Move between non-terminal states."""
        if self.status.is_terminal:
            raise RuntimeError(
                f"Invocation {self.action_call_id} already terminal ({self.status.value})"
            )
        self.status = status

    def finish(self, status: InvocationStatus, error: DeckrunError | None = None) -> None:
        """Move to a terminal state. Happens exactly once."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self.status.is_terminal:
            raise RuntimeError(
                f"Invocation {self.action_call_id} already terminal ({self.status.value})"
            )
        self.status = status
        self.ended_at = time.time()
        if error is not None:
            self.error = error.to_dict()


# ============================================================================
# Run
# ============================================================================


class Run(BaseModel):
    """
    Top-level execution context: one root Invocation and its descendants.

    ``session_meta`` is a small key/value map shared by every invocation of
    the run, last write wins.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=lambda: new_id("run"))
    root_deck: str
    guardrails: Guardrails
    started_at: float = Field(default_factory=time.monotonic)
    deadline: float = 0.0
    cancel_token: Any = Field(default=None, exclude=True)

    invocations: dict[str, Invocation] = Field(default_factory=dict)
    session_meta: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if not self.deadline:
            self.deadline = self.started_at + self.guardrails.timeout_ms / 1000

    def add(self, invocation: Invocation) -> Invocation:
        self.invocations[invocation.action_call_id] = invocation
        return invocation

    def children_of(self, action_call_id: str) -> list[Invocation]:
        return [
            inv
            for inv in self.invocations.values()
            if inv.parent_action_call_id == action_call_id
        ]

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


class RunResult(BaseModel):
    """The one final structured result handed back to the host."""

    run_id: str
    status: InvocationStatus
    output: Any = None
    error: dict[str, Any] | None = None
    ended: bool = False
    completion: dict[str, Any] | None = None
    usage: Usage | None = None
    invocations: list[Invocation] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # The typed exception, kept out of serialization
    exception: Any = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.status == InvocationStatus.COMPLETED

    def raise_for_status(self) -> Any:
        if self.exception is not None:
            raise self.exception
        return self.output


__all__ = [
    "new_id",
    "DeckKind",
    "InvocationStatus",
    "TERMINAL_STATUSES",
    "GuardrailOverrides",
    "Guardrails",
    "Invocation",
    "Run",
    "RunResult",
]
