"""
ExecutionEngine - recursive deck execution under guardrails.

Responsibilities:
- Resolve the root deck and build the effective guardrails for the run
- Drive model-backed decks pass by pass: provider call, tool resolution,
  synthetic respond/end/complete bookkeeping
- Run compute steps with an ExecutionContext
- Run action decks as child invocations and wrap their outcome into
  envelopes for the parent
- Map terminal outcomes onto the one RunResult returned to the host

A RunScope holds everything shared by the invocations of one run: the Run
record, the abort signal, the guardrail tracker, the trace emitter and the
handler supervisor.
"""

import asyncio
import inspect
import json
from typing import Any, Callable, Protocol

from deckrun.config.settings import DeckrunSettings
from deckrun.config.settings import settings as default_settings
from deckrun.domain.deck import LoadedDeck
from deckrun.domain.envelopes import EndSignal, RespondEnvelope, ToolCall, ToolEnvelope
from deckrun.domain.errors import (
    DeckrunError,
    GuardrailExceeded,
    ProviderError,
    RunCanceled,
    ValidationError,
)
from deckrun.domain.events import TraceEventType
from deckrun.domain.models import (
    DeckKind,
    GuardrailOverrides,
    Guardrails,
    Invocation,
    InvocationStatus,
    Run,
    RunResult,
    new_id,
)
from deckrun.domain.provider import FinishReason, ProviderRequest, ProviderResponse, Usage
from deckrun.domain.state import SavedState
from deckrun.llm.dispatcher import race_signal
from deckrun.runtime.context import ExecutionContext
from deckrun.runtime.control import AbortSignal
from deckrun.runtime.guardrails import GuardrailTracker
from deckrun.runtime.handlers import HandlerSupervisor
from deckrun.runtime.tracing import TraceEmitter, TraceSink
from deckrun.tools.router import ToolRouter
from deckrun.tools.synthetic import (
    END_TOOL,
    INIT_TOOL,
    RESPOND_TOOL,
    complete_messages,
    init_messages,
    saved_init_input,
)
from deckrun.tools.table import ToolEntry, ToolKind
from deckrun.utils.logging import get_logger
from deckrun.utils.schema import coerce_root_output, to_jsonable, validate_input, validate_value

logger = get_logger(__name__)

StateCallback = Callable[[SavedState], Any]


class ModelProvider(Protocol):
    """Anything that can answer a canonical ProviderRequest."""

    async def invoke(
        self,
        request: ProviderRequest,
        *,
        on_stream_text: Callable[[str], Any] | None = None,
        signal: Any = None,
        on_fallback: Callable[[str, str, DeckrunError], Any] | None = None,
    ) -> ProviderResponse: ...


def _completion_fields(args: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    status = args.get("status")
    if isinstance(status, int) and not isinstance(status, bool):
        fields["status"] = status
    for key in ("message", "code"):
        if isinstance(args.get(key), str):
            fields[key] = args[key]
    if isinstance(args.get("meta"), dict):
        fields["meta"] = args["meta"]
    return fields


def _user_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    return json.dumps(to_jsonable(message), ensure_ascii=False)


class RunScope:
    """State shared by every invocation of one run."""

    def __init__(
        self,
        engine: "ExecutionEngine",
        run: Run,
        signal: AbortSignal,
        emitter: TraceEmitter,
        *,
        base_guardrails: Guardrails,
        stream: bool = False,
        on_stream_text: Callable[[str], Any] | None = None,
        on_state_update: StateCallback | None = None,
        allow_root_string_input: bool = False,
    ):
        self.engine = engine
        self.run = run
        self.signal = signal
        self.emitter = emitter
        self.base_guardrails = base_guardrails
        self.stream = stream
        self.on_stream_text = on_stream_text
        self.on_state_update = on_state_update
        self.allow_root_string_input = allow_root_string_input

        self.tracker = GuardrailTracker(run, signal)
        self.supervisor = HandlerSupervisor(
            emitter=emitter,
            run_handler=self._run_handler,
            default_delay_ms=engine.settings.status_delay_ms,
        )
        self.usage: Usage | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, type: TraceEventType, invocation: Invocation, **data: Any) -> None:
        self.emitter.emit(
            type,
            action_call_id=invocation.action_call_id,
            parent_action_call_id=invocation.parent_action_call_id,
            deck=invocation.deck,
            **data,
        )

    async def resolve(self, ref: str) -> LoadedDeck:
        loaded = self.engine.resolver.resolve(ref)
        if inspect.isawaitable(loaded):
            loaded = await loaded
        return loaded

    def _add_usage(self, usage: Usage | None) -> None:
        if usage is None:
            return
        self.usage = usage if self.usage is None else self.usage + usage

    def _model_candidates(self, deck: LoadedDeck) -> list[str]:
        default = self.engine.settings.default_model
        if deck.model_params is not None:
            candidates = deck.model_params.candidates(default)
        else:
            candidates = [default] if default else []
        if not candidates:
            raise ProviderError(f"No model configured for deck {deck.ref}", code="no_provider")
        return candidates

    def _require_schemas(self, deck: LoadedDeck, invocation: Invocation) -> None:
        """Child decks must declare both schemas; handler decks are exempt."""
        if invocation.is_root or invocation.handler_kind is not None:
            return
        for schema, code in (
            (deck.output_schema, "missing_output_schema"),
            (deck.input_schema, "missing_input_schema"),
        ):
            if schema is None:
                raise ValidationError(
                    f"Deck {deck.ref} must declare input and output schemas to run as a child",
                    code=code,
                    details={"deck": deck.ref},
                )

    def _validate_input(self, deck: LoadedDeck, value: Any, invocation: Invocation) -> Any:
        if deck.input_schema is None:
            return to_jsonable(value)
        if invocation.is_root and self.allow_root_string_input and isinstance(value, str):
            return value
        return validate_input(deck.input_schema, value)

    def _validate_output(self, deck: LoadedDeck, value: Any, invocation: Invocation) -> Any:
        if deck.output_schema is not None:
            return validate_value(deck.output_schema, value)
        if invocation.is_root:
            return coerce_root_output(value)
        # Only handler decks reach here without a schema
        return to_jsonable(value)

    def _publish_state(self, invocation: Invocation) -> None:
        if self.on_state_update is None or not invocation.is_root:
            return
        state = SavedState(
            run_id=self.run.run_id,
            messages=[dict(m) for m in invocation.messages],
            meta=dict(self.run.session_meta),
            traces=list(self.emitter.events),
            handler_meta=dict(self.supervisor.meta),
        )
        try:
            self.on_state_update(state)
        except Exception as e:
            logger.warning("state_update_failed", run_id=self.run.run_id, error=str(e))

    def _finish(
        self,
        invocation: Invocation,
        status: InvocationStatus,
        error: DeckrunError | None = None,
    ) -> None:
        invocation.finish(status, error)
        self._emit(
            TraceEventType.DECK_END,
            invocation,
            status=status.value,
            passes=invocation.pass_count,
            error=error.to_dict() if error is not None else None,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute(
        self,
        root: LoadedDeck,
        input: Any,
        *,
        initial_user_message: Any = None,
        state: SavedState | None = None,
    ) -> RunResult:
        """Run the root deck to a terminal state and build the RunResult."""
        if state is not None:
            self.supervisor.meta.update(state.handler_meta)
            if input is None:
                input = saved_init_input(state.messages)
        self.emitter.emit(
            TraceEventType.RUN_START,
            deck=root.ref,
            guardrails=self.run.guardrails.model_dump(),
            input=to_jsonable(input),
            resumed=bool(state and state.messages),
        )
        logger.info(
            "run_started",
            run_id=self.run.run_id,
            deck=root.ref,
            max_depth=self.run.guardrails.max_depth,
            max_passes=self.run.guardrails.max_passes,
            timeout_ms=self.run.guardrails.timeout_ms,
        )
        self.tracker.arm()

        status = InvocationStatus.COMPLETED
        output: Any = None
        completion: dict[str, Any] | None = None
        ended = False
        failure: DeckrunError | None = None
        try:
            value = await self.run_deck(
                root,
                input,
                depth=0,
                parent_action_call_id=None,
                guardrails=self.base_guardrails,
                initial_user_message=initial_user_message,
                state=state,
            )
            if isinstance(value, (RespondEnvelope, EndSignal)):
                ended = isinstance(value, EndSignal)
                completion = value.model_dump(exclude_none=True)
                output = value.payload
            else:
                output = value
        except GuardrailExceeded as e:
            status, failure = InvocationStatus.GUARDRAIL_EXCEEDED, e
        except RunCanceled as e:
            status, failure = InvocationStatus.CANCELED, e
        except DeckrunError as e:
            status, failure = InvocationStatus.FAILED, e
        finally:
            self.tracker.disarm()
            await self.supervisor.aclose()

        self.emitter.emit(
            TraceEventType.RUN_END,
            deck=root.ref,
            status=status.value,
            ended=ended,
            error=failure.to_dict() if failure is not None else None,
            elapsed_ms=round(self.run.elapsed_ms()),
        )
        await self.emitter.close()
        logger.info(
            "run_finished",
            run_id=self.run.run_id,
            status=status.value,
            elapsed_ms=round(self.run.elapsed_ms()),
            invocations=len(self.run.invocations),
        )
        return RunResult(
            run_id=self.run.run_id,
            status=status,
            output=output,
            error=failure.to_dict() if failure is not None else None,
            ended=ended,
            completion=completion,
            usage=self.usage,
            invocations=list(self.run.invocations.values()),
            exception=failure,
        )

    async def run_deck(
        self,
        deck: LoadedDeck,
        input: Any,
        *,
        depth: int,
        parent_action_call_id: str | None,
        guardrails: Guardrails,
        handler_kind: str | None = None,
        initial_user_message: Any = None,
        state: SavedState | None = None,
    ) -> Any:
        """
        Run one invocation of ``deck`` to a terminal state.

        Returns:
            The validated output, or a RespondEnvelope / EndSignal

        Raises:
            GuardrailExceeded: depth, passes or timeout
            RunCanceled: the run was cancelled
            DeckrunError: any other invocation failure
        """
        effective = guardrails.merge(deck.guardrails)
        try:
            self.tracker.enter(depth, effective, deck.ref)
        except GuardrailExceeded as e:
            self.emitter.emit(
                TraceEventType.GUARDRAIL_EXCEEDED,
                action_call_id=parent_action_call_id,
                deck=deck.ref,
                limit=e.limit,
                error=e.to_dict(),
            )
            raise

        invocation = self.run.add(
            Invocation(
                parent_action_call_id=parent_action_call_id,
                depth=depth,
                deck=deck.ref,
                kind=deck.kind,
                handler_kind=handler_kind,
            )
        )
        self._emit(
            TraceEventType.DECK_START,
            invocation,
            kind=deck.kind.value,
            depth=depth,
            label=deck.label,
            handler_kind=handler_kind,
        )

        try:
            self.tracker.check()
            self._require_schemas(deck, invocation)
            value = self._validate_input(deck, input, invocation)
            if deck.kind == DeckKind.COMPUTE:
                result = await self._run_compute(
                    deck, invocation, value, effective, initial_user_message=initial_user_message
                )
            else:
                result = await self._run_model(
                    deck,
                    invocation,
                    value,
                    effective,
                    initial_user_message=initial_user_message,
                    state=state,
                )
        except GuardrailExceeded as e:
            self._emit(TraceEventType.GUARDRAIL_EXCEEDED, invocation, limit=e.limit, error=e.to_dict())
            self._finish(invocation, InvocationStatus.GUARDRAIL_EXCEEDED, e)
            raise
        except RunCanceled as e:
            self._finish(invocation, InvocationStatus.CANCELED, e)
            raise
        except asyncio.CancelledError:
            self._finish(invocation, InvocationStatus.CANCELED, RunCanceled("Invocation task cancelled"))
            raise
        except DeckrunError as e:
            self._finish(invocation, InvocationStatus.FAILED, e)
            raise
        except Exception as e:
            logger.error(
                "invocation_crashed",
                run_id=self.run.run_id,
                deck=deck.ref,
                action_call_id=invocation.action_call_id,
                error=str(e),
                exc_info=True,
            )
            error = DeckrunError(f"{type(e).__name__}: {e}", details={"deck": deck.ref})
            self._finish(invocation, InvocationStatus.FAILED, error)
            raise error from e

        self._finish(invocation, InvocationStatus.COMPLETED)
        return result

    # ------------------------------------------------------------------
    # Model-backed decks
    # ------------------------------------------------------------------

    async def _run_model(
        self,
        deck: LoadedDeck,
        invocation: Invocation,
        input: Any,
        guardrails: Guardrails,
        *,
        initial_user_message: Any = None,
        state: SavedState | None = None,
    ) -> Any:
        messages = invocation.messages
        resumed = bool(invocation.is_root and state is not None and state.messages)
        if resumed:
            messages.extend(dict(m) for m in state.messages)
        else:
            if deck.prompt:
                messages.append({"role": "system", "content": deck.prompt})
            if input is not None:
                init_call, pair = init_messages(input)
                self._emit(
                    TraceEventType.TOOL_CALL,
                    invocation,
                    name=INIT_TOOL,
                    tool_call_id=init_call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    args={},
                )
                messages.extend(pair)
                self._emit(
                    TraceEventType.TOOL_RESULT,
                    invocation,
                    name=INIT_TOOL,
                    tool_call_id=init_call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    result=input,
                )
        if initial_user_message is not None:
            text = _user_text(initial_user_message)
            messages.append({"role": "user", "content": text})
            self._emit(TraceEventType.MESSAGE_USER, invocation, content=text)

        candidates = self._model_candidates(deck)
        params = deck.model_params.sampling() if deck.model_params is not None else {}
        tools = deck.tool_table.definitions() if deck.tool_table is not None else []
        completes: dict[str, list[dict[str, Any]]] = {}

        async def run_action(entry: ToolEntry, args: Any, call: ToolCall) -> ToolEnvelope:
            return await self._run_action(
                deck, invocation, guardrails, router, entry, args, call, completes
            )

        router = ToolRouter(
            deck.tool_table,
            run_id=self.run.run_id,
            deck=deck.ref,
            action_call_id=invocation.action_call_id,
            depth=invocation.depth,
            run_action=run_action,
            signal=self.signal,
        )
        idle = self.supervisor.idle(
            deck.handlers.on_idle, deck=deck.ref, label=deck.label, parent=invocation
        )

        def stream_text(text: str) -> None:
            if self.signal.is_aborted():
                return
            idle.touch()
            if self.on_stream_text is not None:
                self.on_stream_text(text)

        def on_fallback(failed: str, next_model: str, error: DeckrunError) -> None:
            self._emit(
                TraceEventType.MODEL_FALLBACK,
                invocation,
                failed_model=failed,
                next_model=next_model,
                error=error.to_dict(),
            )

        idle.touch()
        try:
            while True:
                self.tracker.check()
                self.tracker.begin_pass(invocation, guardrails)
                invocation.transition(InvocationStatus.AWAITING_MODEL)
                self._emit(
                    TraceEventType.MODEL_CALL,
                    invocation,
                    model=candidates,
                    stream=self.stream,
                    pass_number=invocation.pass_count,
                    message_count=len(messages),
                    tool_count=len(tools),
                )
                request = ProviderRequest(
                    model=candidates,
                    messages=[dict(m) for m in messages],
                    tools=tools or None,
                    stream=self.stream,
                    params=params,
                )
                async with self.supervisor.busy(
                    deck.handlers.on_busy,
                    deck=deck.ref,
                    label=deck.label,
                    action_name=None,
                    child_input=input,
                    parent=invocation,
                ):
                    response = await self.engine.provider.invoke(
                        request,
                        on_stream_text=stream_text if self.stream else None,
                        signal=self.signal,
                        on_fallback=on_fallback,
                    )
                idle.touch()
                self._add_usage(response.usage)
                self._emit(
                    TraceEventType.MODEL_RESULT,
                    invocation,
                    model=response.model,
                    provider=response.provider,
                    finish_reason=response.finish_reason.value,
                    content=response.content,
                    tool_calls=[call.model_dump() for call in response.tool_calls],
                    usage=response.usage.model_dump() if response.usage else None,
                )

                if response.tool_calls:
                    invocation.transition(InvocationStatus.AWAITING_TOOLS)
                    messages.append(response.message)
                    completion = await self._resolve_tool_calls(
                        deck, invocation, response.tool_calls, router, idle, completes
                    )
                    self._publish_state(invocation)
                    if completion is not None:
                        return completion
                    continue

                if response.finish_reason == FinishReason.TOOL_CALLS:
                    raise ProviderError(
                        "Model reported tool_calls without any tool call",
                        code="empty_tool_calls",
                        details={"model": response.model},
                    )
                content = response.content
                if response.finish_reason == FinishReason.LENGTH and content is None:
                    raise ProviderError(
                        "Model hit the length limit before producing content",
                        code="length_exceeded",
                        details={"model": response.model},
                    )
                if content is None and not deck.respond:
                    content = ""
                if content is not None:
                    messages.append({"role": "assistant", "content": content})
                    self._publish_state(invocation)
                    if not invocation.is_root:
                        self._emit(TraceEventType.MONOLOG, invocation, content=content)
                    if not deck.respond:
                        return self._validate_output(deck, content, invocation)
        finally:
            idle.stop()

    async def _resolve_tool_calls(
        self,
        deck: LoadedDeck,
        invocation: Invocation,
        calls: list[ToolCall],
        router: ToolRouter,
        idle,
        completes: dict[str, list[dict[str, Any]]],
    ) -> RespondEnvelope | EndSignal | None:
        """
        Resolve one batch of tool calls and append their messages.

        Respond and end are handled inline; everything else is routed
        concurrently. Tool messages land in request order, followed by the
        complete pairs of action calls.
        """
        results: dict[str, str] = {}
        respond: RespondEnvelope | None = None
        end: EndSignal | None = None
        routed: list[ToolCall] = []

        for call in calls:
            if call.name == RESPOND_TOOL and deck.respond:
                self._emit(
                    TraceEventType.TOOL_CALL,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    args=call.args,
                )
                raw = call.args["payload"] if "payload" in call.args else call.args
                payload = self._validate_output(deck, raw, invocation)
                respond = RespondEnvelope(payload=payload, **_completion_fields(call.args))
                results[call.id] = json.dumps(call.args, ensure_ascii=False, default=str)
                self._emit(
                    TraceEventType.TOOL_RESULT,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    result=respond.model_dump(exclude_none=True),
                )
            elif call.name == END_TOOL and deck.allow_end:
                self._emit(
                    TraceEventType.TOOL_CALL,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    args=call.args,
                )
                end = EndSignal(payload=call.args.get("payload"), **_completion_fields(call.args))
                results[call.id] = json.dumps(call.args, ensure_ascii=False, default=str)
                self._emit(
                    TraceEventType.TOOL_RESULT,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    tool_kind=ToolKind.SYNTHETIC.value,
                    result=end.model_dump(exclude_none=True),
                )
            else:
                routed.append(call)

        if routed:
            for call in routed:
                entry = router.table.lookup(call.name)
                self._emit(
                    TraceEventType.TOOL_CALL,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    tool_kind=entry.kind.value if entry is not None else "unknown",
                    args=call.args,
                )
            idle.pause()
            try:
                envelopes = await router.route_batch(routed)
            finally:
                idle.resume()
            for call, envelope in zip(routed, envelopes):
                results[call.id] = envelope.to_tool_content()
                self._emit(
                    TraceEventType.TOOL_RESULT,
                    invocation,
                    name=call.name,
                    tool_call_id=call.id,
                    status=envelope.status,
                    result=envelope.model_dump(exclude_none=True),
                )

        for call in calls:
            invocation.messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": results[call.id],
                }
            )
        for call in calls:
            pair = completes.pop(call.id, None)
            if pair:
                invocation.messages.extend(pair)
        idle.touch()

        if end is not None:
            return end
        return respond

    async def _run_action(
        self,
        deck: LoadedDeck,
        invocation: Invocation,
        guardrails: Guardrails,
        router: ToolRouter,
        entry: ToolEntry,
        args: Any,
        call: ToolCall,
        completes: dict[str, list[dict[str, Any]]],
    ) -> ToolEnvelope:
        """Run an action deck as a child invocation and wrap the outcome."""
        action = entry.action
        label = action.label or deck.label
        self._emit(
            TraceEventType.ACTION_START,
            invocation,
            name=action.name,
            tool_call_id=call.id,
            child_deck=action.deck,
            input=args,
        )
        envelope: ToolEnvelope | None = None
        try:
            try:
                child = await self.resolve(action.deck)
                async with self.supervisor.busy(
                    deck.handlers.on_busy,
                    deck=deck.ref,
                    label=label,
                    action_name=action.name,
                    child_input=args,
                    parent=invocation,
                ):
                    value = await self.run_deck(
                        child,
                        args,
                        depth=invocation.depth + 1,
                        parent_action_call_id=invocation.action_call_id,
                        guardrails=guardrails,
                    )
            except RunCanceled:
                raise
            except GuardrailExceeded as e:
                # Only the run-wide timeout aborts the parent
                if e.limit == "timeout":
                    raise
                envelope = router.error_envelope(call, e)
            except DeckrunError as e:
                on_error = deck.handlers.on_error
                if on_error is None:
                    envelope = router.error_envelope(call, e)
                else:
                    envelope = await self.supervisor.handle_error(
                        on_error,
                        error=e,
                        envelope=lambda **fields: router.envelope(call, **fields),
                        deck=deck.ref,
                        label=label,
                        action_name=action.name,
                        child_input=args,
                        parent=invocation,
                    )
            else:
                envelope = router.result_envelope(call, value)
            completes[call.id] = complete_messages(envelope)
            return envelope
        finally:
            self._emit(
                TraceEventType.ACTION_END,
                invocation,
                name=action.name,
                tool_call_id=call.id,
                child_deck=action.deck,
                status=envelope.status if envelope is not None else None,
            )

    # ------------------------------------------------------------------
    # Compute decks
    # ------------------------------------------------------------------

    async def _run_compute(
        self,
        deck: LoadedDeck,
        invocation: Invocation,
        input: Any,
        guardrails: Guardrails,
        *,
        initial_user_message: Any = None,
    ) -> Any:
        self.tracker.begin_pass(invocation, guardrails)
        invocation.transition(InvocationStatus.RUNNING)

        step = deck.compute_step
        is_async = inspect.iscoroutinefunction(step)
        ctx = ExecutionContext(
            self,
            invocation,
            input=input,
            label=deck.label,
            guardrails=guardrails,
            initial_user_message=initial_user_message,
            loop=None if is_async else asyncio.get_running_loop(),
        )
        async with self.supervisor.busy(
            deck.handlers.on_busy,
            deck=deck.ref,
            label=deck.label,
            action_name=None,
            child_input=input,
            parent=invocation,
        ):
            if is_async:
                raw = await race_signal(step(ctx), self.signal)
            else:
                raw = await race_signal(asyncio.to_thread(step, ctx), self.signal)
            if inspect.isawaitable(raw):
                raw = await race_signal(raw, self.signal)
        self.tracker.check()

        if isinstance(raw, EndSignal):
            result: Any = raw
        elif isinstance(raw, RespondEnvelope):
            result = raw.model_copy(
                update={"payload": self._validate_output(deck, raw.payload, invocation)}
            )
        else:
            result = self._validate_output(deck, raw, invocation)
        self._publish_state(invocation)
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _run_handler(
        self, config, kind: str, payload: dict[str, Any], parent: Invocation
    ) -> Any:
        deck = await self.resolve(config.deck)
        value = await self.run_deck(
            deck,
            payload,
            depth=parent.depth + 1,
            parent_action_call_id=parent.action_call_id,
            guardrails=self.run.guardrails,
            handler_kind=kind,
        )
        if isinstance(value, (RespondEnvelope, EndSignal)):
            return value.model_dump(exclude_none=True)
        return value


class ExecutionEngine:
    """
    Entry point for running decks.

    Examples:
        >>> registry = DeckRegistry()
        >>> registry.register(DeckDefinition(ref="root", prompt="Be brief.",
        ...                                  model_params=ModelParams(model="openai/gpt-4o-mini")))
        >>> engine = ExecutionEngine(registry, ProviderDispatcher({"openai": OpenAIModel()}))
        >>> result = await engine.run("root", initial_user_message="hi")
    """

    def __init__(
        self,
        resolver,
        provider: ModelProvider,
        settings: DeckrunSettings | None = None,
    ):
        self.resolver = resolver
        self.provider = provider
        self.settings = settings or default_settings

    async def run(
        self,
        deck: str,
        input: Any = None,
        *,
        initial_user_message: Any = None,
        trace: TraceSink | None = None,
        on_stream_text: Callable[[str], Any] | None = None,
        cancel_token: AbortSignal | None = None,
        guardrails: Guardrails | GuardrailOverrides | None = None,
        state: SavedState | None = None,
        on_state_update: StateCallback | None = None,
        stream: bool = False,
        allow_root_string_input: bool = False,
        run_id: str | None = None,
    ) -> RunResult:
        """
        Run ``deck`` as the root invocation and return its RunResult.

        Errors never escape as exceptions; they are mapped onto the result's
        status. ``RunResult.raise_for_status()`` re-raises the typed error.
        """
        signal = cancel_token or AbortSignal()
        run_id = run_id or (state.run_id if state is not None else None) or new_id("run")
        emitter = TraceEmitter(run_id, trace)
        base = Guardrails.defaults(self.settings).merge(guardrails)

        try:
            root = self.resolver.resolve(deck)
            if inspect.isawaitable(root):
                root = await root
        except DeckrunError as e:
            logger.error("root_deck_unresolved", run_id=run_id, deck=deck, error=e.message)
            await emitter.close()
            return RunResult(
                run_id=run_id,
                status=InvocationStatus.FAILED,
                error=e.to_dict(),
                exception=e,
            )

        run = Run(
            run_id=run_id,
            root_deck=root.ref,
            guardrails=base.merge(root.guardrails),
            cancel_token=signal,
            session_meta=dict(state.meta) if state is not None else {},
        )
        scope = RunScope(
            self,
            run,
            signal,
            emitter,
            base_guardrails=base,
            stream=stream,
            on_stream_text=on_stream_text,
            on_state_update=on_state_update,
            allow_root_string_input=allow_root_string_input,
        )
        return await scope.execute(
            root, input, initial_user_message=initial_user_message, state=state
        )


__all__ = ["ExecutionEngine", "ModelProvider", "RunScope"]
