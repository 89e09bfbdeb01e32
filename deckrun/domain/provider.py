"""
Canonical provider request/response shapes.

Every backend adapter produces a ProviderResponse; nothing backend-specific
leaks above the dispatcher.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .envelopes import ToolCall


class FinishReason(str, Enum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"


class Usage(BaseModel):
    """Token usage stats"""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int | None = None

    def __add__(self, other: "Usage") -> "Usage":
        cached = None
        if self.cached_tokens is not None or other.cached_tokens is not None:
            cached = (self.cached_tokens or 0) + (other.cached_tokens or 0)
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cached_tokens=cached,
        )


def normalize_usage(raw: dict[str, Any] | None) -> Usage | None:
    """
    Map vendor token counts onto Usage.

    Accepts OpenAI names (prompt_tokens / completion_tokens) and Anthropic
    names (input_tokens / output_tokens, cache_read_tokens).
    """
    if not raw:
        return None
    input_tokens = raw.get("input_tokens", raw.get("prompt_tokens")) or 0
    output_tokens = raw.get("output_tokens", raw.get("completion_tokens")) or 0
    total = raw.get("total_tokens") or input_tokens + output_tokens
    cached = raw.get("cached_tokens", raw.get("cache_read_tokens"))
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total,
        cached_tokens=cached,
    )


class ResponseMetrics(BaseModel):
    """Timing metadata, the only field allowed to differ between paths."""

    duration_ms: float | None = None
    first_token_latency_ms: float | None = None


class ProviderRequest(BaseModel):
    """Canonical model invocation request."""

    model_config = ConfigDict(protected_namespaces=())

    model: str | list[str]
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None
    stream: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def candidates(self) -> list[str]:
        return list(self.model) if isinstance(self.model, list) else [self.model]


class ProviderResponse(BaseModel):
    """The one response shape every adapter must produce."""

    model_config = ConfigDict(protected_namespaces=())

    message: dict[str, Any]
    finish_reason: FinishReason = FinishReason.STOP
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Usage | None = None
    model: str | None = None
    provider: str | None = None
    metrics: ResponseMetrics | None = None

    @property
    def content(self) -> str | None:
        return self.message.get("content")

    def canonical(self) -> dict[str, Any]:
        """Everything except timing metadata, for path comparisons."""
        return self.model_dump(exclude={"metrics"})


__all__ = [
    "FinishReason",
    "Usage",
    "normalize_usage",
    "ResponseMetrics",
    "ProviderRequest",
    "ProviderResponse",
]
