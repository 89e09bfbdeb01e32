"""
Anthropic Model implementation - Pure LLM Interface
"""

import json
import os
from typing import Any, AsyncIterator

from anthropic import (
    APIConnectionError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)
from pydantic import ConfigDict, Field, SecretStr

from deckrun.domain.provider import ProviderResponse
from deckrun.llm.base import Model, StreamChunk
from deckrun.llm.normalize import build_response
from deckrun.utils.logging import get_logger
from deckrun.utils.retry import retry_async

logger = get_logger(__name__)

# Retryable exceptions for Anthropic
ANTHROPIC_RETRYABLE = (
    APIConnectionError,
    RateLimitError,
    APITimeoutError,
)


class AnthropicModel(Model):
    """
    Anthropic messages API adapter.

    Converts OpenAI-format history and tools on the way in and normalizes
    content blocks on the way out.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    provider: str = "anthropic"
    api_key: SecretStr | None = Field(default=None, exclude=True)
    base_url: str | None = Field(default=None, description="Custom API base URL")
    client: AsyncAnthropic | None = Field(default=None, exclude=True)

    max_tokens_to_sample: int = Field(default=4096, ge=1)

    def model_post_init(self, __context) -> None:
        """Initialize AsyncAnthropic client after model creation."""
        from deckrun.config import settings

        # Resolve API Key: argument > config > env
        resolved_api_key = None
        if self.api_key:
            resolved_api_key = self.api_key.get_secret_value()
        elif settings.anthropic_api_key:
            resolved_api_key = settings.anthropic_api_key.get_secret_value()
        else:
            resolved_api_key = os.getenv("ANTHROPIC_API_KEY")

        if self.client is None:
            client_kwargs = {"api_key": resolved_api_key}
            base_url = self.base_url or settings.anthropic_base_url
            if base_url:
                client_kwargs["base_url"] = base_url
            self.client = AsyncAnthropic(**client_kwargs)

        super().model_post_init(__context)

    def _convert_messages(self, messages: list[dict]) -> tuple[str | None, list[dict]]:
        """Convert OpenAI format messages to Anthropic format."""
        system_parts: list[str] = []
        anthropic_messages: list[dict] = []

        def append(role: str, blocks: list[dict]) -> None:
            # Anthropic requires alternating roles; merge consecutive turns
            if anthropic_messages and anthropic_messages[-1]["role"] == role:
                anthropic_messages[-1]["content"].extend(blocks)
            else:
                anthropic_messages.append({"role": role, "content": blocks})

        for msg in messages:
            role = msg.get("role")
            content = msg.get("content")

            if role == "system":
                if content:
                    system_parts.append(content)
            elif role == "user":
                append("user", [{"type": "text", "text": content or ""}])
            elif role == "assistant":
                blocks: list[dict] = []
                if content:
                    blocks.append({"type": "text", "text": content})
                for tool_call in msg.get("tool_calls") or []:
                    func = tool_call["function"]
                    args = func.get("arguments") or {}
                    if isinstance(args, str):
                        try:
                            args = json.loads(args)
                        except json.JSONDecodeError:
                            logger.error("failed_to_decode_tool_arguments", arguments=args)
                            args = {}
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": tool_call["id"],
                            "name": func["name"],
                            "input": args,
                        }
                    )
                if blocks:
                    append("assistant", blocks)
            elif role == "tool":
                # Ensure tool result content is a string
                tool_result_content = content
                if not isinstance(tool_result_content, str):
                    tool_result_content = json.dumps(tool_result_content)
                append(
                    "user",
                    [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.get("tool_call_id"),
                            "content": tool_result_content,
                        }
                    ],
                )

        system_prompt = "\n\n".join(system_parts) if system_parts else None
        return system_prompt, anthropic_messages

    def _convert_tools(self, tools: list[dict] | None) -> list[dict] | None:
        """Convert OpenAI format tools to Anthropic format."""
        if not tools:
            return None

        anthropic_tools = []
        for tool in tools:
            if tool.get("type") == "function":
                func = tool["function"]
                anthropic_tools.append(
                    {
                        "name": func["name"],
                        "description": func.get("description", ""),
                        "input_schema": func.get("parameters", {"type": "object"}),
                    }
                )

        return anthropic_tools if anthropic_tools else None

    def _build_params(
        self,
        model: str,
        messages: list[dict],
        tools: list[dict] | None,
        params: dict[str, Any] | None,
        stream: bool,
    ) -> dict[str, Any]:
        params = params or {}
        system_prompt, anthropic_messages = self._convert_messages(messages)
        anthropic_tools = self._convert_tools(tools)

        request: dict[str, Any] = {
            "model": model,
            "messages": anthropic_messages,
            "max_tokens": params.get("max_tokens") or self.max_tokens_to_sample,
        }
        if stream:
            request["stream"] = True
        if system_prompt:
            request["system"] = system_prompt
        if params.get("temperature") is not None:
            request["temperature"] = params["temperature"]
        if params.get("top_p") is not None:
            request["top_p"] = params["top_p"]
        if anthropic_tools:
            request["tools"] = anthropic_tools
        return request

    @retry_async(exceptions=ANTHROPIC_RETRYABLE)
    async def _create(self, request: dict[str, Any]) -> Any:
        logger.info(
            "llm_request",
            provider=self.provider,
            model=request["model"],
            messages_count=len(request["messages"]),
            tools_count=len(request.get("tools") or []),
            max_tokens=request["max_tokens"],
            stream=request.get("stream", False),
        )
        try:
            return await self.client.messages.create(**request)
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
        Call Anthropic API and return standardized streaming output.

        Tool input JSON arrives as ``input_json_delta`` fragments and is
        forwarded as OpenAI-style argument deltas keyed by block index.
        """
        stream = await self._create(self._build_params(model, messages, tools, params, stream=True))

        usage_info = {"input_tokens": 0, "output_tokens": 0}

        async for event in stream:
            stream_chunk = StreamChunk()

            if event.type == "message_start":
                usage = getattr(event.message, "usage", None)
                if usage is not None:
                    usage_info["input_tokens"] = getattr(usage, "input_tokens", 0) or 0
                    usage_info["output_tokens"] = getattr(usage, "output_tokens", 0) or 0
                    cached = getattr(usage, "cache_read_input_tokens", None)
                    if cached is not None:
                        usage_info["cache_read_tokens"] = cached
                    stream_chunk.usage = dict(usage_info)

            elif event.type == "content_block_start":
                if event.content_block.type == "tool_use":
                    stream_chunk.tool_calls = [
                        {
                            "index": event.index,
                            "id": event.content_block.id,
                            "type": "function",
                            "function": {"name": event.content_block.name, "arguments": ""},
                        }
                    ]

            elif event.type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    stream_chunk.content = delta.text
                elif delta.type == "input_json_delta":
                    stream_chunk.tool_calls = [
                        {"index": event.index, "function": {"arguments": delta.partial_json}}
                    ]

            elif event.type == "message_delta":
                usage = getattr(event, "usage", None)
                if usage is not None and getattr(usage, "output_tokens", None) is not None:
                    usage_info["output_tokens"] = usage.output_tokens
                    stream_chunk.usage = dict(usage_info)

                # Raw stop reason; build_response maps it
                if event.delta.stop_reason:
                    stream_chunk.finish_reason = event.delta.stop_reason

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
        """Native non-streaming messages call."""
        response = await self._create(self._build_params(model, messages, tools, params, stream=False))

        text_parts: list[str] = []
        tool_calls: list[dict] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    {
                        "id": block.id,
                        "type": "function",
                        "function": {"name": block.name, "arguments": block.input},
                    }
                )

        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
            cached = getattr(response.usage, "cache_read_input_tokens", None)
            if cached is not None:
                usage["cache_read_tokens"] = cached

        return build_response(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=response.stop_reason,
            usage=usage,
            model=model,
            provider=self.provider,
        )


__all__ = ["AnthropicModel", "ANTHROPIC_RETRYABLE"]
