"""
End-to-end tests for ExecutionEngine with scripted models.
"""

import asyncio
import json

import pytest
from pydantic import BaseModel

from deckrun.domain import (
    ActionDeckRef,
    DeckDefinition,
    GuardrailOverrides,
    HandlerConfig,
    HandlersConfig,
    InvocationStatus,
    ModelParams,
    SavedState,
)
from deckrun.llm import ScriptedModel, ScriptedReply
from deckrun.tools import tool


class Question(BaseModel):
    question: str


class Answer(BaseModel):
    answer: str


@tool
def lookup(query: str) -> dict:
    """Search the knowledge base."""
    return {"hits": [query.upper()]}


def call(name, args=None, id="call_1"):
    return ScriptedReply(tool_calls=[{"id": id, "name": name, "args": args or {}}])


def text(content):
    return ScriptedReply(content=content)


def tool_messages(messages):
    return [m for m in messages if m["role"] == "tool"]


@pytest.mark.asyncio
async def test_plain_text_root(registry, make_engine):
    registry.register(DeckDefinition(ref="root", prompt="Be brief."))
    model = ScriptedModel(script=[text("Hello there")])

    result = await make_engine(model).run("root", initial_user_message="hi")

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == "Hello there"
    assert model.calls[0]["model"] == "test-model"
    assert model.calls[0]["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.asyncio
async def test_pass_limit_stops_after_one_model_call(registry, make_engine):
    """A model that keeps calling tools is stopped by max_passes."""
    registry.register(
        DeckDefinition(ref="root", tools=[lookup], guardrails=GuardrailOverrides(max_passes=1))
    )
    model = ScriptedModel(script=[call("lookup", {"query": "x"})], repeat_last=True)
    events = []

    result = await make_engine(model).run("root", initial_user_message="go", trace=events.append)

    assert result.status == InvocationStatus.GUARDRAIL_EXCEEDED
    assert result.error["details"]["limit"] == "passes"
    assert len(model.calls) == 1
    assert "guardrail.exceeded" in [e.type.value for e in events]
    root = result.invocations[0]
    assert root.status == InvocationStatus.GUARDRAIL_EXCEEDED
    assert root.pass_count == 1


@pytest.mark.asyncio
async def test_external_tool_round_trip(registry, make_engine):
    registry.register(DeckDefinition(ref="root", tools=[lookup]))
    model = ScriptedModel(script=[call("lookup", {"query": "cats"}), text("Found CATS")])

    result = await make_engine(model).run("root", initial_user_message="search cats")

    assert result.output == "Found CATS"
    second = model.calls[1]["messages"]
    assert second[-2]["tool_calls"][0]["function"]["name"] == "lookup"
    envelope = json.loads(second[-1]["content"])
    assert envelope["status"] == 200
    assert envelope["payload"] == {"hits": ["CATS"]}
    assert envelope["action_call_id"] == "call_1"


@pytest.mark.asyncio
async def test_action_deck_child_and_complete_pair(registry, make_engine):
    async def answer(ctx):
        return {"answer": f"re: {ctx.input['question']}"}

    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=answer)
    )
    registry.register(
        DeckDefinition(ref="root", action_decks=[ActionDeckRef(name="ask", deck="child")])
    )
    model = ScriptedModel(script=[call("ask", {"question": "why"}), text("done")])
    events = []

    result = await make_engine(model).run("root", initial_user_message="q", trace=events.append)

    assert result.output == "done"
    messages = model.calls[1]["messages"]
    tool_msgs = tool_messages(messages)
    assert json.loads(tool_msgs[0]["content"])["payload"] == {"answer": "re: why"}
    # Complete pair follows the action result
    assert messages[-2]["tool_calls"][0]["function"]["name"] == "deckrun_complete"
    assert messages[-1]["name"] == "deckrun_complete"
    assert json.loads(messages[-1]["content"])["status"] == 200

    root, child = result.invocations
    assert child.depth == 1
    assert child.parent_action_call_id == root.action_call_id
    assert child.status == InvocationStatus.COMPLETED
    types = [e.type.value for e in events]
    assert types.index("action.start") < types.index("action.end")


@pytest.mark.asyncio
async def test_invalid_action_arguments_never_start_child(registry, make_engine):
    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=lambda ctx: {})
    )
    registry.register(
        DeckDefinition(ref="root", action_decks=[ActionDeckRef(name="ask", deck="child")])
    )
    model = ScriptedModel(script=[call("ask", {"wrong": 1}), text("ok")])

    result = await make_engine(model).run("root", initial_user_message="q")

    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] == 400
    assert envelope["code"] == "invalid_input"
    assert len(result.invocations) == 1


@pytest.mark.asyncio
async def test_depth_limit_becomes_error_envelope(registry, make_engine):
    """root(0) -> child(1) -> grandchild(2) with max_depth=1."""

    async def child_step(ctx):
        return await ctx.spawn_and_wait("grandchild", {"question": "deeper"})

    registry.register(
        DeckDefinition(ref="grandchild", input_schema=Question, output_schema=Answer, compute_step=lambda ctx: {"answer": "x"})
    )
    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=child_step)
    )
    registry.register(
        DeckDefinition(
            ref="root",
            action_decks=[ActionDeckRef(name="ask", deck="child")],
            guardrails=GuardrailOverrides(max_depth=1),
        )
    )
    model = ScriptedModel(script=[call("ask", {"question": "q"}), text("gave up")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.COMPLETED
    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] == 429
    assert envelope["code"] == "guardrail_exceeded"
    assert all(inv.depth <= 1 for inv in result.invocations)
    child = result.invocations[1]
    assert child.status == InvocationStatus.GUARDRAIL_EXCEEDED


@pytest.mark.asyncio
async def test_sibling_actions_run_concurrently(registry, make_engine):
    """Each child waits for the other to start; sequential execution would time out."""
    arrived = []
    both_started = asyncio.Event()

    async def rendezvous(ctx):
        arrived.append(ctx.input["question"])
        if len(arrived) == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=1)
        return {"answer": ctx.input["question"]}

    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=rendezvous)
    )
    registry.register(
        DeckDefinition(ref="root", action_decks=[ActionDeckRef(name="ask", deck="child")])
    )
    model = ScriptedModel(
        script=[
            ScriptedReply(
                tool_calls=[
                    {"id": "call_a", "name": "ask", "args": {"question": "a"}},
                    {"id": "call_b", "name": "ask", "args": {"question": "b"}},
                ]
            ),
            text("both done"),
        ]
    )

    result = await make_engine(model).run("root", initial_user_message="go")

    assert result.output == "both done"
    results = tool_messages(model.calls[1]["messages"])
    assert [m["tool_call_id"] for m in results[:2]] == ["call_a", "call_b"]
    assert [json.loads(m["content"])["payload"]["answer"] for m in results[:2]] == ["a", "b"]


@pytest.mark.asyncio
async def test_child_without_output_schema_fails(registry, make_engine):
    registry.register(DeckDefinition(ref="chatty"))
    registry.register(
        DeckDefinition(ref="root", action_decks=[ActionDeckRef(name="chat", deck="chatty")])
    )
    model = ScriptedModel(script=[call("chat"), text("ok")])

    result = await make_engine(model).run("root", initial_user_message="go")

    assert result.output == "ok"
    # Rejected before the child makes a model call of its own
    assert len(model.calls) == 2
    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] == 422
    assert envelope["code"] == "missing_output_schema"


@pytest.mark.asyncio
async def test_root_input_goes_through_init_tool(registry, make_engine):
    registry.register(DeckDefinition(ref="root", input_schema=Question, prompt="Answer it."))
    model = ScriptedModel(script=[text("because")])

    result = await make_engine(model).run("root", {"question": "why?"})

    assert result.output == "because"
    messages = model.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[1]["tool_calls"][0]["function"]["name"] == "deckrun_init"
    assert json.loads(messages[2]["content"]) == {"question": "why?"}


@pytest.mark.asyncio
async def test_root_input_is_validated(registry, make_engine):
    registry.register(DeckDefinition(ref="root", input_schema=Question))
    model = ScriptedModel(script=[text("never")])

    result = await make_engine(model).run("root", {"nope": 1})

    assert result.status == InvocationStatus.FAILED
    assert result.error["code"] == "invalid_input"
    assert model.calls == []


@pytest.mark.asyncio
async def test_root_string_input_allowed_when_requested(registry, make_engine):
    registry.register(DeckDefinition(ref="root", input_schema=Question))
    model = ScriptedModel(script=[text("fine")])

    result = await make_engine(model).run("root", "free text", allow_root_string_input=True)

    assert result.status == InvocationStatus.COMPLETED
    assert json.loads(model.calls[0]["messages"][1]["content"]) == "free text"


@pytest.mark.asyncio
async def test_root_output_schema_rejects_plain_text(registry, make_engine):
    registry.register(DeckDefinition(ref="root", output_schema=Answer))
    model = ScriptedModel(script=[text("not json")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.FAILED
    assert result.error["code"] == "validation_error"


@pytest.mark.asyncio
async def test_root_output_schema_accepts_json_text(registry, make_engine):
    registry.register(DeckDefinition(ref="root", output_schema=Answer))
    model = ScriptedModel(script=[text('{"answer": "42"}')])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.output == {"answer": "42"}


@pytest.mark.asyncio
async def test_respond_tool_completes_with_envelope(registry, make_engine):
    registry.register(DeckDefinition(ref="root", respond=True, output_schema=Answer))
    model = ScriptedModel(
        script=[
            text("let me think"),
            call("deckrun_respond", {"payload": {"answer": "42"}, "message": "done", "status": 201}),
        ]
    )

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == {"answer": "42"}
    assert result.completion == {"payload": {"answer": "42"}, "status": 201, "message": "done"}
    assert not result.ended
    # Text-only reply did not finish the deck
    assert len(model.calls) == 2
    assert model.calls[0]["tools"][0]["function"]["name"] == "deckrun_respond"


@pytest.mark.asyncio
async def test_respond_payload_defaults_to_whole_arguments(registry, make_engine):
    registry.register(DeckDefinition(ref="root", respond=True, output_schema=Answer))
    model = ScriptedModel(script=[call("deckrun_respond", {"answer": "direct"})])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.output == {"answer": "direct"}


@pytest.mark.asyncio
async def test_respond_payload_is_validated(registry, make_engine):
    registry.register(DeckDefinition(ref="root", respond=True, output_schema=Answer))
    model = ScriptedModel(script=[call("deckrun_respond", {"payload": {"wrong": 1}})])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.FAILED
    assert result.error["code"] == "validation_error"


@pytest.mark.asyncio
async def test_respond_not_enabled_is_unknown_tool(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[call("deckrun_respond", {"payload": "x"}), text("fallback")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.output == "fallback"
    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] == 404


@pytest.mark.asyncio
async def test_end_tool_stops_the_run(registry, make_engine):
    registry.register(DeckDefinition(ref="root", allow_end=True, respond=True))
    model = ScriptedModel(
        script=[
            ScriptedReply(
                tool_calls=[
                    {"id": "c1", "name": "deckrun_respond", "args": {"payload": "respond"}},
                    {"id": "c2", "name": "deckrun_end", "args": {"payload": {"bye": True}, "message": "all goals met"}},
                ]
            )
        ]
    )

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.ended
    assert result.output == {"bye": True}
    assert result.completion["message"] == "all goals met"


@pytest.mark.asyncio
async def test_empty_tool_calls_finish_is_an_error(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[ScriptedReply(finish_reason="tool_calls")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.FAILED
    assert result.error["kind"] == "ProviderError"


@pytest.mark.asyncio
async def test_length_without_content_is_an_error(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[ScriptedReply(finish_reason="length")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.FAILED


@pytest.mark.asyncio
async def test_empty_stop_becomes_empty_string(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[ScriptedReply()])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == ""


@pytest.mark.asyncio
async def test_model_fallback_is_traced(registry, make_engine):
    registry.register(
        DeckDefinition(ref="root", model_params=ModelParams(model=["broken/m1", "scripted/m2"]))
    )
    broken = ScriptedModel(provider="broken", script=[RuntimeError("503 upstream")])
    model = ScriptedModel(script=[text("from fallback")])
    events = []

    result = await make_engine(model, broken=broken).run(
        "root", initial_user_message="q", trace=events.append
    )

    assert result.output == "from fallback"
    fallback = [e for e in events if e.type.value == "model.fallback"]
    assert fallback[0].data["failed_model"] == "broken/m1"
    assert fallback[0].data["next_model"] == "scripted/m2"


@pytest.mark.asyncio
async def test_unknown_provider_prefix_fails_run(registry, make_engine):
    registry.register(DeckDefinition(ref="root", model_params=ModelParams(model="nowhere/m")))
    model = ScriptedModel(script=[text("unused")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.FAILED
    assert result.error["code"] == "no_provider"


@pytest.mark.asyncio
async def test_unknown_root_deck(registry, make_engine):
    result = await make_engine(ScriptedModel()).run("missing")

    assert result.status == InvocationStatus.FAILED
    assert result.error["code"] == "unknown_deck"


@pytest.mark.asyncio
async def test_streaming_forwards_text_and_matches_buffered_output(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    chunks = []

    streamed = await make_engine(ScriptedModel(script=[text("streamed reply")], chunk_size=3)).run(
        "root", initial_user_message="q", stream=True, on_stream_text=chunks.append
    )
    buffered = await make_engine(ScriptedModel(script=[text("streamed reply")])).run(
        "root", initial_user_message="q"
    )

    assert "".join(chunks) == "streamed reply"
    assert len(chunks) > 1
    assert streamed.output == buffered.output


@pytest.mark.asyncio
async def test_replay_produces_identical_trace_types(registry, make_engine):
    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=lambda ctx: {"answer": "a"})
    )
    registry.register(
        DeckDefinition(
            ref="root",
            tools=[lookup],
            action_decks=[ActionDeckRef(name="ask", deck="child")],
        )
    )

    def script():
        return [
            ScriptedReply(
                tool_calls=[
                    {"id": "c1", "name": "lookup", "args": {"query": "x"}},
                    {"id": "c2", "name": "ask", "args": {"question": "y"}},
                ]
            ),
            text("final"),
        ]

    first, second = [], []
    r1 = await make_engine(ScriptedModel(script=script())).run("root", initial_user_message="q", trace=first.append)
    r2 = await make_engine(ScriptedModel(script=script())).run("root", initial_user_message="q", trace=second.append)

    assert r1.output == r2.output == "final"
    assert [e.type for e in first] == [e.type for e in second]
    assert r1.run_id != r2.run_id


@pytest.mark.asyncio
async def test_usage_is_summed_across_passes(registry, make_engine):
    registry.register(DeckDefinition(ref="root", tools=[lookup]))
    model = ScriptedModel(
        script=[
            ScriptedReply(
                tool_calls=[{"id": "c1", "name": "lookup", "args": {"query": "x"}}],
                usage={"prompt_tokens": 10, "completion_tokens": 2},
            ),
            ScriptedReply(content="ok", usage={"prompt_tokens": 20, "completion_tokens": 3}),
        ]
    )

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.usage.input_tokens == 30
    assert result.usage.output_tokens == 5


@pytest.mark.asyncio
async def test_state_updates_and_resume(registry, make_engine):
    registry.register(DeckDefinition(ref="root", prompt="sys"))
    states = []

    first = await make_engine(ScriptedModel(script=[text("first answer")])).run(
        "root", initial_user_message="one", on_state_update=states.append
    )
    saved = states[-1]
    assert isinstance(saved, SavedState)
    assert saved.run_id == first.run_id
    assert [m["role"] for m in saved.messages] == ["system", "user", "assistant"]

    model = ScriptedModel(script=[text("second answer")])
    second = await make_engine(model).run("root", initial_user_message="two", state=saved)

    assert second.output == "second answer"
    assert second.run_id == first.run_id
    assert [m["role"] for m in model.calls[0]["messages"]] == ["system", "user", "assistant", "user"]


@pytest.mark.asyncio
async def test_run_timeout(registry, make_engine):
    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[ScriptedReply(content="too late", delay=5)])

    result = await make_engine(model).run(
        "root", initial_user_message="q", guardrails=GuardrailOverrides(timeout_ms=50)
    )

    assert result.status == InvocationStatus.GUARDRAIL_EXCEEDED
    assert result.error["details"]["limit"] == "timeout"


@pytest.mark.asyncio
async def test_busy_handler_fires_during_slow_model_call(registry, make_engine):
    registry.register(DeckDefinition(ref="status", compute_step=lambda ctx: {"message": "Still thinking..."}))
    registry.register(
        DeckDefinition(
            ref="root",
            handlers=HandlersConfig(on_busy=HandlerConfig(deck="status", delay_ms=10)),
        )
    )
    model = ScriptedModel(script=[ScriptedReply(content="answer", delay=0.15)])
    events = []

    result = await make_engine(model).run("root", initial_user_message="q", trace=events.append)

    assert result.output == "answer"
    handler_results = [e for e in events if e.type.value == "handler.result"]
    assert handler_results[0].data["message"] == "Still thinking..."
    assert handler_results[0].data["kind"] == "busy"
    # Handler output never enters the conversation
    assert all("Still thinking" not in str(m.get("content")) for m in model.calls[0]["messages"])


@pytest.mark.asyncio
async def test_fast_model_call_never_fires_busy_handler(registry, make_engine):
    registry.register(DeckDefinition(ref="status", compute_step=lambda ctx: "busy"))
    registry.register(
        DeckDefinition(
            ref="root",
            handlers=HandlersConfig(on_busy=HandlerConfig(deck="status", delay_ms=500)),
        )
    )
    events = []

    await make_engine(ScriptedModel(script=[text("quick")])).run(
        "root", initial_user_message="q", trace=events.append
    )

    assert "handler.fire" not in [e.type.value for e in events]


@pytest.mark.asyncio
async def test_error_handler_recovers_failed_child(registry, make_engine):
    def failing(ctx):
        ctx.fail("disk full", code="disk_full")

    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=failing)
    )
    registry.register(
        DeckDefinition(
            ref="recover",
            compute_step=lambda ctx: {"message": f"recovered from {ctx.input['error']['code']}", "status": 503},
        )
    )
    registry.register(
        DeckDefinition(
            ref="root",
            action_decks=[ActionDeckRef(name="work", deck="child")],
            handlers=HandlersConfig(on_error=HandlerConfig(deck="recover")),
        )
    )
    model = ScriptedModel(script=[call("work", {"question": "q"}), text("handled")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.output == "handled"
    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] == 503
    assert envelope["message"] == "recovered from disk_full"
    assert envelope["code"] == "disk_full"


@pytest.mark.asyncio
async def test_cancel_token_stops_run(registry, make_engine):
    from deckrun.runtime import AbortSignal

    registry.register(DeckDefinition(ref="root"))
    model = ScriptedModel(script=[ScriptedReply(content="never", delay=5)])
    token = AbortSignal()
    asyncio.get_running_loop().call_later(0.02, token.abort, "user pressed stop")

    result = await make_engine(model).run("root", initial_user_message="q", cancel_token=token)

    assert result.status == InvocationStatus.CANCELED
    assert result.error["code"] == "canceled"
    assert result.invocations[0].status == InvocationStatus.CANCELED


@pytest.mark.asyncio
async def test_action_output_missing_required_field_fails_child(registry, make_engine):
    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=lambda ctx: {"note": "no answer"})
    )
    registry.register(
        DeckDefinition(ref="root", action_decks=[ActionDeckRef(name="ask", deck="child")])
    )
    model = ScriptedModel(script=[call("ask", {"question": "why"}), text("moving on")])

    result = await make_engine(model).run("root", initial_user_message="q")

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == "moving on"
    envelope = json.loads(tool_messages(model.calls[1]["messages"])[0]["content"])
    assert envelope["status"] >= 400
    assert envelope["code"] == "validation_error"
    child = result.invocations[1]
    assert child.status == InvocationStatus.FAILED
    assert child.error["code"] == "validation_error"


@pytest.mark.asyncio
async def test_failing_error_handler_falls_back_to_structured_envelope(registry, make_engine):
    def failing(ctx):
        ctx.fail("disk full", code="disk_full")

    def broken_handler(ctx):
        raise RuntimeError("handler crashed")

    registry.register(
        DeckDefinition(ref="child", input_schema=Question, output_schema=Answer, compute_step=failing)
    )
    registry.register(DeckDefinition(ref="recover", compute_step=broken_handler))
    registry.register(
        DeckDefinition(
            ref="root",
            action_decks=[ActionDeckRef(name="work", deck="child")],
            handlers=HandlersConfig(on_error=HandlerConfig(deck="recover")),
        )
    )
    model = ScriptedModel(script=[call("work", {"question": "q"}), text("carried on")])
    events = []

    result = await make_engine(model).run("root", initial_user_message="q", trace=events.append)

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == "carried on"
    messages = model.calls[1]["messages"]
    envelope = json.loads(tool_messages(messages)[0]["content"])
    assert envelope["status"] == 500
    assert envelope["code"] == "handler_fallback"
    assert envelope["message"] == "Handled error: disk full"
    assert envelope["meta"] == {"handler_failed": True}
    assert messages[-1]["name"] == "deckrun_complete"
    assert json.loads(messages[-1]["content"])["code"] == "handler_fallback"
    assert "handler.error" in [e.type.value for e in events]


@pytest.mark.asyncio
async def test_saved_state_carries_handler_meta(registry, make_engine):
    registry.register(DeckDefinition(ref="status", compute_step=lambda ctx: {"message": "Still thinking..."}))
    registry.register(
        DeckDefinition(
            ref="root",
            handlers=HandlersConfig(on_busy=HandlerConfig(deck="status", delay_ms=10)),
        )
    )
    model = ScriptedModel(script=[ScriptedReply(content="answer", delay=0.15)])
    states = []

    await make_engine(model).run("root", initial_user_message="q", on_state_update=states.append)

    busy = states[-1].handler_meta["busy"]
    assert busy["deck"] == "status"
    assert busy["message"] == "Still thinking..."


@pytest.mark.asyncio
async def test_resume_recovers_root_input_from_saved_init(registry, make_engine):
    registry.register(DeckDefinition(ref="root", input_schema=Question))
    states = []

    await make_engine(ScriptedModel(script=[text("first")])).run(
        "root", {"question": "why?"}, on_state_update=states.append
    )

    model = ScriptedModel(script=[text("second")])
    result = await make_engine(model).run("root", initial_user_message="more", state=states[-1])

    assert result.status == InvocationStatus.COMPLETED
    assert result.output == "second"
    names = [m.get("name") for m in model.calls[0]["messages"] if m["role"] == "tool"]
    assert names == ["deckrun_init"]
