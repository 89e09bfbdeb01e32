"""
Response normalization.

Both the streaming and the non-streaming path end in build_response(), so
the two produce field-identical ProviderResponse values for the same reply
(only ``metrics`` differs).
"""

import json
import time
from typing import Any, Callable

from deckrun.domain.envelopes import ToolCall
from deckrun.domain.provider import (
    FinishReason,
    ProviderResponse,
    ResponseMetrics,
    Usage,
    normalize_usage,
)
from deckrun.llm.base import StreamChunk
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)

FINISH_REASON_MAP = {
    "stop": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "tool_use": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
    "max_tokens": FinishReason.LENGTH,
}


def map_finish_reason(raw: str | None, has_tool_calls: bool) -> FinishReason:
    if has_tool_calls:
        return FinishReason.TOOL_CALLS
    if raw is None:
        return FinishReason.STOP
    return FINISH_REASON_MAP.get(raw, FinishReason.STOP)


def parse_arguments(raw: Any, *, tool_name: str | None = None) -> dict[str, Any]:
    """Parse a tool-call argument payload once; unparseable input becomes {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("tool_arguments_unparseable", tool=tool_name, arguments=str(raw)[:200])
        return {}
    if not isinstance(parsed, dict):
        logger.warning("tool_arguments_not_object", tool=tool_name, arguments=str(raw)[:200])
        return {}
    return parsed


class ToolCallAccumulator:
    """
    Accumulate streaming tool calls.

    Providers return tool calls incrementally, keyed by index; argument
    fragments are concatenated until the stream ends.
    """

    def __init__(self):
        self._calls: dict[int, dict] = {}

    def accumulate(self, delta_calls: list[dict]):
        """Accumulate incremental tool calls."""
        for tc in delta_calls:
            idx = tc.get("index", 0)

            if idx not in self._calls:
                self._calls[idx] = {
                    "id": None,
                    "type": "function",
                    "function": {"name": "", "arguments": ""},
                }

            acc = self._calls[idx]

            if tc.get("id"):
                acc["id"] = tc["id"]

            if tc.get("function"):
                fn = tc["function"]
                if fn.get("name"):
                    acc["function"]["name"] += fn["name"]
                args = fn.get("arguments")
                if isinstance(args, dict):
                    acc["function"]["arguments"] = args
                elif args:
                    acc["function"]["arguments"] += args

    def finalize(self) -> list[dict]:
        """Get the complete tool calls in index order."""
        calls = []
        for idx in sorted(self._calls):
            call = self._calls[idx]
            if not call["function"]["name"]:
                continue
            if call["id"] is None:
                call = {**call, "id": f"call_{idx}"}
            calls.append(call)
        return calls


class StreamAccumulator:
    """
    Buffer a chunk stream into one response.

    Text deltas are forwarded to ``on_stream_text`` as they arrive.
    """

    def __init__(self, on_stream_text: Callable[[str], Any] | None = None):
        self.on_stream_text = on_stream_text
        self._content: list[str] = []
        self._tool_calls = ToolCallAccumulator()
        self._usage: dict[str, int] | None = None
        self._finish_reason: str | None = None
        self._started = time.monotonic()
        self._first_token_at: float | None = None

    def add(self, chunk: StreamChunk) -> None:
        if (chunk.content or chunk.tool_calls) and self._first_token_at is None:
            self._first_token_at = time.monotonic()

        if chunk.content:
            self._content.append(chunk.content)
            if self.on_stream_text is not None:
                try:
                    self.on_stream_text(chunk.content)
                except Exception as e:
                    logger.warning("stream_callback_failed", error=str(e))

        if chunk.tool_calls:
            self._tool_calls.accumulate(chunk.tool_calls)

        if chunk.usage:
            # Providers report cumulative usage; the latest report wins
            self._usage = chunk.usage

        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason

    def metrics(self) -> ResponseMetrics:
        now = time.monotonic()
        first = None
        if self._first_token_at is not None:
            first = (self._first_token_at - self._started) * 1000
        return ResponseMetrics(duration_ms=(now - self._started) * 1000, first_token_latency_ms=first)

    def build(self, *, model: str | None = None, provider: str | None = None) -> ProviderResponse:
        return build_response(
            content="".join(self._content),
            tool_calls=self._tool_calls.finalize(),
            finish_reason=self._finish_reason,
            usage=self._usage,
            model=model,
            provider=provider,
            metrics=self.metrics(),
        )


def build_response(
    *,
    content: str | None,
    tool_calls: list[dict] | None,
    finish_reason: str | None,
    usage: dict[str, Any] | Usage | None = None,
    model: str | None = None,
    provider: str | None = None,
    metrics: ResponseMetrics | None = None,
) -> ProviderResponse:
    """
    The single normalizer every adapter path goes through.

    Args:
        content: Full assistant text ("" and None are equivalent)
        tool_calls: OpenAI-format tool calls; arguments may be str or dict
        finish_reason: Vendor finish reason
        usage: Vendor usage dict or Usage
    """
    calls = [
        ToolCall(
            id=tc["id"],
            name=tc["function"]["name"],
            args=parse_arguments(tc["function"].get("arguments"), tool_name=tc["function"]["name"]),
        )
        for tc in tool_calls or []
    ]

    message: dict[str, Any] = {"role": "assistant", "content": content or None}
    if calls:
        message["tool_calls"] = [call.to_message_dict() for call in calls]

    if not isinstance(usage, Usage):
        usage = normalize_usage(usage)

    return ProviderResponse(
        message=message,
        finish_reason=map_finish_reason(finish_reason, bool(calls)),
        tool_calls=calls,
        usage=usage,
        model=model,
        provider=provider,
        metrics=metrics,
    )


__all__ = [
    "FINISH_REASON_MAP",
    "map_finish_reason",
    "parse_arguments",
    "ToolCallAccumulator",
    "StreamAccumulator",
    "build_response",
]
