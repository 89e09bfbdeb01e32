"""
Scripted model - deterministic replies for tests and replays.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, ConfigDict, Field

from deckrun.domain.provider import ProviderResponse
from deckrun.llm.base import Model, StreamChunk
from deckrun.llm.normalize import build_response


class ScriptedReply(BaseModel):
    """One canned assistant turn."""

    content: str | None = None
    tool_calls: list[dict[str, Any]] = Field(
        default_factory=list, description="Each entry: {id, name, args}"
    )
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    delay: float = Field(default=0.0, ge=0.0, description="Seconds before replying")

    def openai_tool_calls(self) -> list[dict[str, Any]]:
        return [
            {
                "id": tc.get("id") or f"call_{i}",
                "type": "function",
                "function": {"name": tc["name"], "arguments": json.dumps(tc.get("args") or {})},
            }
            for i, tc in enumerate(self.tool_calls)
        ]


ScriptItem = ScriptedReply | dict | BaseException
Responder = Callable[[list[dict], list[dict] | None], ScriptItem]


class ScriptedModel(Model):
    """
    Replays a fixed list of replies in order.

    Items may be ScriptedReply, a plain dict of its fields, or an exception
    instance to raise. With ``repeat_last`` the final item answers every
    call after the script runs out; a ``responder`` callable replaces the
    script entirely.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    provider: str = "scripted"
    script: list[Any] = Field(default_factory=list)
    repeat_last: bool = False
    responder: Callable[..., Any] | None = Field(default=None, exclude=True)
    chunk_size: int = Field(default=4, ge=1)

    calls: list[dict[str, Any]] = Field(default_factory=list, exclude=True)

    def _next(self, model: str, messages: list[dict], tools: list[dict] | None) -> ScriptedReply:
        self.calls.append({"model": model, "messages": list(messages), "tools": tools})
        if self.responder is not None:
            item = self.responder(messages, tools)
        elif self.script:
            item = self.script.pop(0) if (len(self.script) > 1 or not self.repeat_last) else self.script[0]
        else:
            raise RuntimeError(f"ScriptedModel {self.provider!r} ran out of replies")

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            item = ScriptedReply(**item)
        return item

    async def arun_stream(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        reply = self._next(model, messages, tools)
        if reply.delay:
            await asyncio.sleep(reply.delay)

        text = reply.content or ""
        for start in range(0, len(text), self.chunk_size):
            yield StreamChunk(content=text[start : start + self.chunk_size])

        for index, tc in enumerate(reply.openai_tool_calls()):
            arguments = tc["function"]["arguments"]
            half = len(arguments) // 2
            yield StreamChunk(
                tool_calls=[
                    {
                        "index": index,
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["function"]["name"], "arguments": arguments[:half]},
                    }
                ]
            )
            yield StreamChunk(tool_calls=[{"index": index, "function": {"arguments": arguments[half:]}}])

        yield StreamChunk(usage=reply.usage, finish_reason=reply.finish_reason or "stop")

    async def arun(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        reply = self._next(model, messages, tools)
        if reply.delay:
            await asyncio.sleep(reply.delay)
        return build_response(
            content=reply.content,
            tool_calls=reply.openai_tool_calls(),
            finish_reason=reply.finish_reason or "stop",
            usage=reply.usage,
            model=model,
            provider=self.provider,
        )


__all__ = ["ScriptedReply", "ScriptedModel"]
