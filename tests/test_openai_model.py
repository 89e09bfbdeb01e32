"""
Tests for OpenAIModel
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deckrun.domain import FinishReason
from deckrun.llm import OpenAIModel, StreamAccumulator


@pytest.fixture
def mock_openai():
    with patch("deckrun.llm.openai.AsyncOpenAI") as mock:
        yield mock


async def agen(items):
    for item in items:
        yield item


def _usage(prompt=5, completion=7):
    return SimpleNamespace(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        prompt_tokens_details=None,
    )


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    choices = []
    if content is not None or tool_calls is not None or finish_reason is not None:
        choices = [
            SimpleNamespace(
                delta=SimpleNamespace(content=content, tool_calls=tool_calls),
                finish_reason=finish_reason,
            )
        ]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(data):
    delta = MagicMock()
    delta.model_dump.return_value = data
    return delta


def _stream_chunks():
    return [
        _chunk(content="Let me "),
        _chunk(content="check."),
        _chunk(
            tool_calls=[
                _tool_delta(
                    {"index": 0, "id": "call_1", "type": "function", "function": {"name": "lookup", "arguments": '{"q": '}}
                )
            ]
        ),
        _chunk(tool_calls=[_tool_delta({"index": 0, "function": {"arguments": '"x"}'}})]),
        _chunk(finish_reason="tool_calls"),
        _chunk(usage=_usage()),
    ]


def _completion():
    message = SimpleNamespace(
        content="Let me check.",
        tool_calls=[
            SimpleNamespace(id="call_1", function=SimpleNamespace(name="lookup", arguments='{"q": "x"}'))
        ],
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="tool_calls")],
        usage=_usage(),
    )


def test_openai_init(mock_openai):
    """Test initialization."""
    model = OpenAIModel(api_key="sk-test", base_url="https://example.test/v1")
    assert model.provider == "openai"
    mock_openai.assert_called_once_with(api_key="sk-test", base_url="https://example.test/v1")


@pytest.mark.asyncio
async def test_arun_stream(mock_openai):
    """Test streaming execution."""
    mock_client = mock_openai.return_value
    mock_client.chat.completions.create = AsyncMock(return_value=agen(_stream_chunks()))
    model = OpenAIModel(api_key="sk-test")

    chunks = [
        c
        async for c in model.arun_stream(
            "gpt-4o-mini",
            [{"role": "user", "content": "hi"}],
            tools=[{"type": "function", "function": {"name": "lookup", "parameters": {}}}],
            params={"temperature": 0.2, "top_p": None},
        )
    ]

    assert [c.content for c in chunks if c.content] == ["Let me ", "check."]
    assert chunks[-1].usage == {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12}

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["stream"] is True
    assert kwargs["stream_options"] == {"include_usage": True}
    assert kwargs["temperature"] == 0.2
    assert "top_p" not in kwargs
    assert kwargs["tools"][0]["function"]["name"] == "lookup"


@pytest.mark.asyncio
async def test_arun_native(mock_openai):
    mock_client = mock_openai.return_value
    mock_client.chat.completions.create = AsyncMock(return_value=_completion())
    model = OpenAIModel(api_key="sk-test")

    response = await model.arun("gpt-4o-mini", [{"role": "user", "content": "hi"}])

    assert response.content == "Let me check."
    assert response.finish_reason == FinishReason.TOOL_CALLS
    assert response.tool_calls[0].args == {"q": "x"}
    assert response.usage.input_tokens == 5
    assert "stream" not in mock_client.chat.completions.create.call_args.kwargs


@pytest.mark.asyncio
async def test_stream_and_native_normalize_identically(mock_openai):
    mock_client = mock_openai.return_value
    mock_client.chat.completions.create = AsyncMock(
        side_effect=[agen(_stream_chunks()), _completion()]
    )
    model = OpenAIModel(api_key="sk-test")
    messages = [{"role": "user", "content": "hi"}]

    acc = StreamAccumulator()
    async for chunk in model.arun_stream("gpt-4o-mini", messages):
        acc.add(chunk)
    streamed = acc.build(model="gpt-4o-mini", provider="openai")
    native = await model.arun("gpt-4o-mini", messages)

    assert streamed.canonical() == native.canonical()


@pytest.mark.asyncio
async def test_request_failure_propagates(mock_openai):
    mock_client = mock_openai.return_value
    mock_client.chat.completions.create = AsyncMock(side_effect=ValueError("bad request"))
    model = OpenAIModel(api_key="sk-test")

    with pytest.raises(ValueError):
        await model.arun("gpt-4o-mini", [{"role": "user", "content": "hi"}])
    assert mock_client.chat.completions.create.await_count == 1
