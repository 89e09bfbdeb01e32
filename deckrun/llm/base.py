"""
Model abstraction layer - Pure LLM Interface

Responsibilities:
- Encapsulate different LLM provider APIs
- Provide unified streaming and non-streaming interfaces
- Standardize output format

Does NOT handle:
- Pass loop logic
- Provider routing / fallback
- Tool execution
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

from deckrun.domain.provider import ProviderResponse


class StreamChunk(BaseModel):
    """
    Minimal unit of LLM streaming output.

    All Model implementations must standardize their vendor-specific
    streaming output to this format.
    """

    model_config = ConfigDict(frozen=False)

    content: str | None = Field(default=None, description="Text content delta")
    tool_calls: list[dict] | None = Field(
        default=None, description="Tool calls delta (OpenAI format, keyed by index)"
    )
    usage: dict[str, int] | None = Field(
        default=None,
        description="Token usage stats {input_tokens, output_tokens, total_tokens}",
    )
    finish_reason: str | None = Field(
        default=None, description="Finish reason: stop, tool_calls, length, etc."
    )


class Model(BaseModel, ABC):
    """
    Unified Model abstract base class.

    One Model instance is a backend adapter that serves any model name of
    its provider; the dispatcher passes the unprefixed name per call.
    Subclasses implement arun_stream() and may override arun() with a
    native non-streaming request.
    """

    provider: str = Field(description="Provider prefix, e.g. openai")

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow", protected_namespaces=())

    @abstractmethod
    async def arun_stream(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Unified streaming interface.

        Args:
            model: Model name without provider prefix
            messages: Message list, standard OpenAI format
            tools: Tool definition list, OpenAI format
            params: Sampling parameters (temperature, max_tokens, ...)

        Yields:
            StreamChunk: Streaming output chunk
        """
        pass

    async def arun(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        """Non-streaming call. The default buffers arun_stream()."""
        from deckrun.llm.normalize import StreamAccumulator

        accumulator = StreamAccumulator()
        async for chunk in self.arun_stream(model, messages, tools, params):
            accumulator.add(chunk)
        return accumulator.build(model=model, provider=self.provider)


__all__ = ["Model", "StreamChunk"]
