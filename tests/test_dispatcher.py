"""
Tests for ProviderDispatcher: prefix routing, fallback and normalization
parity between the streaming and non-streaming paths.
"""

import asyncio

import pytest

from deckrun.config import DeckrunSettings
from deckrun.domain import ProviderError, ProviderRequest, RunCanceled
from deckrun.llm import ProviderDispatcher, ScriptedModel, ScriptedReply
from deckrun.runtime import AbortSignal


def _request(model, stream=False):
    return ProviderRequest(
        model=model,
        messages=[{"role": "user", "content": "hi"}],
        stream=stream,
    )


def test_route_by_prefix():
    a = ScriptedModel(provider="a")
    b = ScriptedModel(provider="b")
    dispatcher = ProviderDispatcher({"a": a, "b": b}, default="a")

    assert dispatcher.route("b/model-x") == ("b", b, "model-x")
    assert dispatcher.route("model-y") == ("a", a, "model-y")


def test_unknown_prefix_never_uses_default():
    dispatcher = ProviderDispatcher({"a": ScriptedModel(provider="a")}, default="a")
    with pytest.raises(ProviderError) as exc:
        dispatcher.route("zzz/model")
    assert exc.value.code == "no_provider"


def test_unprefixed_without_default_fails():
    dispatcher = ProviderDispatcher({"a": ScriptedModel(provider="a")}, settings=DeckrunSettings(_env_file=None))
    with pytest.raises(ProviderError) as exc:
        dispatcher.route("model")
    assert exc.value.code == "no_provider"


def test_default_must_be_registered():
    with pytest.raises(ValueError):
        ProviderDispatcher({}, default="a")


def test_default_provider_comes_from_settings():
    a = ScriptedModel(provider="a")
    settings = DeckrunSettings(_env_file=None, default_provider="a")
    dispatcher = ProviderDispatcher({"a": a}, settings=settings)

    assert dispatcher.default == "a"
    assert dispatcher.route("model-y") == ("a", a, "model-y")


def test_explicit_default_wins_over_settings():
    a = ScriptedModel(provider="a")
    b = ScriptedModel(provider="b")
    settings = DeckrunSettings(_env_file=None, default_provider="a")
    dispatcher = ProviderDispatcher({"a": a, "b": b}, default="b", settings=settings)

    assert dispatcher.route("model-y") == ("b", b, "model-y")


def test_unregistered_settings_default_is_no_provider():
    settings = DeckrunSettings(_env_file=None, default_provider="missing")
    dispatcher = ProviderDispatcher({"a": ScriptedModel(provider="a")}, settings=settings)

    with pytest.raises(ProviderError) as exc:
        dispatcher.route("model")
    assert exc.value.code == "no_provider"


@pytest.mark.asyncio
async def test_invoke_sets_provider_and_model():
    model = ScriptedModel(provider="a", script=[ScriptedReply(content="hello")])
    dispatcher = ProviderDispatcher({"a": model})

    response = await dispatcher.invoke(_request("a/small"))

    assert response.content == "hello"
    assert response.provider == "a"
    assert response.model == "small"
    assert response.metrics is not None
    assert model.calls[0]["model"] == "small"


@pytest.mark.asyncio
async def test_fallback_list_advances_on_failure():
    """First candidate fails, the second answers, the hook sees the switch."""
    a = ScriptedModel(provider="a", script=[RuntimeError("backend down")])
    b = ScriptedModel(provider="b", script=[ScriptedReply(content="from b")])
    dispatcher = ProviderDispatcher({"a": a, "b": b})
    switches = []

    response = await dispatcher.invoke(
        _request(["a/m1", "b/m2"]),
        on_fallback=lambda failed, nxt, err: switches.append((failed, nxt, err.code)),
    )

    assert response.content == "from b"
    assert response.provider == "b"
    assert switches == [("a/m1", "b/m2", "provider_error")]


@pytest.mark.asyncio
async def test_fallback_skips_unroutable_candidate():
    b = ScriptedModel(provider="b", script=[ScriptedReply(content="ok")])
    dispatcher = ProviderDispatcher({"b": b})

    response = await dispatcher.invoke(_request(["nope/m1", "b/m2"]))
    assert response.provider == "b"


@pytest.mark.asyncio
async def test_single_candidate_failure_raises_provider_error():
    a = ScriptedModel(provider="a", script=[RuntimeError("boom")])
    dispatcher = ProviderDispatcher({"a": a})

    with pytest.raises(ProviderError) as exc:
        await dispatcher.invoke(_request("a/m1"))
    assert "boom" in exc.value.message


@pytest.mark.asyncio
async def test_exhausted_fallback_list_carries_last_error():
    a = ScriptedModel(provider="a", script=[RuntimeError("first")])
    b = ScriptedModel(provider="b", script=[RuntimeError("second")])
    dispatcher = ProviderDispatcher({"a": a, "b": b})

    with pytest.raises(ProviderError) as exc:
        await dispatcher.invoke(_request(["a/m1", "b/m2"]))
    assert exc.value.details["candidates"] == ["a/m1", "b/m2"]
    assert "second" in exc.value.details["last_error"]["message"]


@pytest.mark.asyncio
async def test_cancellation_is_not_a_fallback():
    a = ScriptedModel(provider="a", script=[RunCanceled("stop")])
    b = ScriptedModel(provider="b", script=[ScriptedReply(content="never")])
    dispatcher = ProviderDispatcher({"a": a, "b": b})

    with pytest.raises(RunCanceled):
        await dispatcher.invoke(_request(["a/m1", "b/m2"]))
    assert b.calls == []


@pytest.mark.asyncio
async def test_signal_aborts_in_flight_call():
    slow = ScriptedModel(provider="a", script=[ScriptedReply(content="late", delay=5)])
    dispatcher = ProviderDispatcher({"a": slow})
    signal = AbortSignal()
    asyncio.get_running_loop().call_later(0.02, signal.abort, "user stop")

    with pytest.raises(RunCanceled):
        await dispatcher.invoke(_request("a/m"), signal=signal)


@pytest.mark.asyncio
async def test_empty_candidate_list():
    dispatcher = ProviderDispatcher({})
    with pytest.raises(ProviderError) as exc:
        await dispatcher.invoke(_request([]))
    assert exc.value.code == "no_provider"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        ScriptedReply(content="The answer is forty-two.", usage={"prompt_tokens": 7, "completion_tokens": 6}),
        ScriptedReply(
            tool_calls=[
                {"id": "call_1", "name": "lookup", "args": {"q": "weather", "days": 3}},
                {"id": "call_2", "name": "deckrun_respond", "args": {"payload": {"ok": True}}},
            ],
            usage={"input_tokens": 11, "output_tokens": 4},
        ),
        ScriptedReply(content="cut off", finish_reason="length"),
    ],
)
async def test_streaming_and_non_streaming_are_field_identical(reply):
    streamed = ScriptedModel(provider="s", script=[reply], chunk_size=3)
    buffered = ScriptedModel(provider="s", script=[reply])
    text = []

    r1 = await ProviderDispatcher({"s": streamed}).invoke(
        _request("s/m", stream=True), on_stream_text=text.append
    )
    r2 = await ProviderDispatcher({"s": buffered}).invoke(_request("s/m", stream=False))

    assert r1.canonical() == r2.canonical()
    assert "".join(text) == (reply.content or "")
