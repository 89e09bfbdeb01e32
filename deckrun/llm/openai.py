"""
OpenAI Model implementation - Pure LLM Interface
"""

import os
from typing import Any, AsyncIterator

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from pydantic import ConfigDict, Field, SecretStr

from deckrun.domain.provider import ProviderResponse
from deckrun.llm.base import Model, StreamChunk
from deckrun.llm.normalize import build_response
from deckrun.utils.logging import get_logger
from deckrun.utils.retry import retry_async

logger = get_logger(__name__)

# Retryable exceptions for OpenAI
OPENAI_RETRYABLE = (
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    APITimeoutError,
)

_SAMPLING_KEYS = ("temperature", "top_p", "frequency_penalty", "presence_penalty", "max_tokens")


def _usage_dict(usage: Any) -> dict[str, int] | None:
    if usage is None:
        return None
    usage_dict = {
        "prompt_tokens": usage.prompt_tokens,
        "completion_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }
    details = getattr(usage, "prompt_tokens_details", None)
    if details is not None and getattr(details, "cached_tokens", None) is not None:
        usage_dict["cached_tokens"] = details.cached_tokens
    return usage_dict


class OpenAIModel(Model):
    """
    OpenAI chat completions adapter.

    Serves GPT models and any OpenAI API compatible backend.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    provider: str = "openai"
    api_key: SecretStr | None = Field(default=None, exclude=True)
    base_url: str | None = Field(default=None)
    client: AsyncOpenAI | None = Field(default=None, exclude=True)

    def model_post_init(self, __context) -> None:
        """Initialize AsyncOpenAI client after model creation."""
        from deckrun.config import settings

        # Resolve API Key: argument > config > env
        resolved_api_key = None
        if self.api_key:
            resolved_api_key = self.api_key.get_secret_value()
        elif settings.openai_api_key:
            resolved_api_key = settings.openai_api_key.get_secret_value()
        else:
            resolved_api_key = os.getenv("OPENAI_API_KEY")

        resolved_base_url = (
            self.base_url or settings.openai_base_url or os.getenv("OPENAI_BASE_URL")
        )

        if self.client is None:
            self.client = AsyncOpenAI(
                api_key=resolved_api_key,
                base_url=resolved_base_url,
            )

        super().model_post_init(__context)

    def _build_params(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None,
        params: dict[str, Any] | None,
        stream: bool,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"model": model, "messages": messages}
        for key in _SAMPLING_KEYS:
            value = (params or {}).get(key)
            if value is not None:
                request[key] = value
        if tools:
            request["tools"] = tools
        if stream:
            request["stream"] = True
            request["stream_options"] = {"include_usage": True}
        return request

    @retry_async(exceptions=OPENAI_RETRYABLE)
    async def _create(self, request: dict[str, Any]) -> Any:
        logger.info(
            "llm_request",
            provider=self.provider,
            model=request["model"],
            messages_count=len(request["messages"]),
            tools_count=len(request.get("tools") or []),
            stream=request.get("stream", False),
        )
        try:
            return await self.client.chat.completions.create(**request)
        except Exception as e:
            logger.error(
                "llm_request_failed",
                provider=self.provider,
                model=request["model"],
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise

    async def arun_stream(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Call OpenAI API and return standardized streaming output.

        Yields:
            StreamChunk: Standardized streaming output chunk
        """
        stream = await self._create(self._build_params(model, messages, tools, params, stream=True))

        async for chunk in stream:
            stream_chunk = StreamChunk()

            if chunk.usage:
                stream_chunk.usage = _usage_dict(chunk.usage)

            if chunk.choices and len(chunk.choices) > 0:
                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    stream_chunk.content = delta.content

                if delta.tool_calls:
                    stream_chunk.tool_calls = [
                        tc.model_dump(exclude_none=True) for tc in delta.tool_calls
                    ]

                if choice.finish_reason:
                    stream_chunk.finish_reason = choice.finish_reason

            if (
                stream_chunk.content is not None
                or stream_chunk.tool_calls is not None
                or stream_chunk.usage is not None
                or stream_chunk.finish_reason is not None
            ):
                yield stream_chunk

    async def arun(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        """Native non-streaming chat completion."""
        completion = await self._create(self._build_params(model, messages, tools, params, stream=False))

        choice = completion.choices[0]
        message = choice.message
        tool_calls = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.function.name, "arguments": tc.function.arguments},
            }
            for tc in message.tool_calls or []
        ]
        return build_response(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=_usage_dict(completion.usage),
            model=model,
            provider=self.provider,
        )


__all__ = ["OpenAIModel", "OPENAI_RETRYABLE"]
