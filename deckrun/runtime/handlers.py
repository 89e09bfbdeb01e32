"""
Handler supervisor - busy, idle and error decks.

Responsibilities:
- Arm a busy timer around a guarded step and cancel it the instant the
  step completes; firings run as their own tasks so they never block it
- Drive the per-invocation idle timer (touch / pause / resume / stop)
- Run the error handler for a failed child and shape the parent envelope,
  falling back to a structured envelope when the handler itself fails
- Cancel every in-flight handler task when the run ends

Handler output surfaces only as trace events; message history is never
touched except through the error handler's envelope.
"""

import asyncio
import contextlib
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from deckrun.domain.deck import HandlerConfig
from deckrun.domain.envelopes import ToolEnvelope
from deckrun.domain.errors import DeckrunError, HandlerError
from deckrun.domain.events import TraceEventType
from deckrun.domain.models import Invocation
from deckrun.runtime.tracing import TraceEmitter
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)

# (config, kind, handler input, invoking invocation) -> handler output
HandlerRunner = Callable[[HandlerConfig, str, dict[str, Any], Invocation], Awaitable[Any]]


def handler_message(output: Any) -> str | None:
    """Human-readable text of a handler's output."""
    if output is None:
        return None
    if isinstance(output, str):
        return output or None
    if isinstance(output, dict) and isinstance(output.get("message"), str):
        return output["message"]
    return None


class HandlerSupervisor:
    """Schedules handler decks for one run."""

    def __init__(
        self,
        *,
        emitter: TraceEmitter,
        run_handler: HandlerRunner,
        default_delay_ms: int = 800,
    ):
        self.emitter = emitter
        self.run_handler = run_handler
        self.default_delay_ms = default_delay_ms
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        # Latest output per handler kind, persisted with saved state
        self.meta: dict[str, Any] = {}

    def _delay(self, config: HandlerConfig) -> float:
        delay_ms = config.delay_ms if config.delay_ms is not None else self.default_delay_ms
        return delay_ms / 1000

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def fire(
        self,
        kind: str,
        config: HandlerConfig,
        payload: dict[str, Any],
        parent: Invocation,
    ) -> Any:
        """Run one handler firing. Failures are logged and traced, never raised."""
        self.emitter.emit(
            TraceEventType.HANDLER_FIRE,
            action_call_id=parent.action_call_id,
            parent_action_call_id=parent.parent_action_call_id,
            deck=parent.deck,
            name=config.deck,
            kind=kind,
            input=payload,
        )
        try:
            output = await self.run_handler(config, kind, payload, parent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_failure(kind, config, parent, e)
            return None

        self._record(kind, config, output)
        self.emitter.emit(
            TraceEventType.HANDLER_RESULT,
            action_call_id=parent.action_call_id,
            parent_action_call_id=parent.parent_action_call_id,
            deck=parent.deck,
            name=config.deck,
            kind=kind,
            output=output,
            message=handler_message(output),
        )
        return output

    def _record(self, kind: str, config: HandlerConfig, output: Any) -> None:
        self.meta[kind] = {
            "deck": config.deck,
            "output": output,
            "message": handler_message(output),
        }

    def _report_failure(
        self, kind: str, config: HandlerConfig, parent: Invocation, exc: Exception
    ) -> HandlerError:
        error = HandlerError(
            f"{kind} handler {config.deck} failed: {exc}",
            details={"kind": kind, "handler": config.deck},
        )
        logger.warning(
            "handler_failed",
            kind=kind,
            handler=config.deck,
            deck=parent.deck,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self.emitter.emit(
            TraceEventType.HANDLER_ERROR,
            action_call_id=parent.action_call_id,
            parent_action_call_id=parent.parent_action_call_id,
            deck=parent.deck,
            name=config.deck,
            kind=kind,
            error=error.to_dict(),
        )
        return error

    # ------------------------------------------------------------------
    # Busy
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def busy(
        self,
        config: HandlerConfig | None,
        *,
        deck: str,
        label: str | None,
        action_name: str | None,
        child_input: Any,
        parent: Invocation,
    ) -> AsyncIterator[None]:
        """
        Guard a step with the busy handler.

        The timer fires after delay_ms, then every repeat_ms, until the
        guarded block exits; exit cancels the timer unconditionally.
        """
        if config is None or self._closed:
            yield
            return

        started = time.monotonic()

        def build_input() -> dict[str, Any]:
            return {
                "kind": "busy",
                "label": config.label or label,
                "source": {"deck": deck, "action_name": action_name},
                "trigger": {
                    "reason": "timeout",
                    "elapsed_ms": round((time.monotonic() - started) * 1000),
                },
                "child_input": child_input,
            }

        async def timer() -> None:
            await asyncio.sleep(self._delay(config))
            while True:
                self.spawn(self.fire("busy", config, build_input(), parent))
                if not config.repeat_ms:
                    return
                await asyncio.sleep(config.repeat_ms / 1000)

        timer_task = asyncio.ensure_future(timer())
        try:
            yield
        finally:
            timer_task.cancel()

    # ------------------------------------------------------------------
    # Idle
    # ------------------------------------------------------------------

    def idle(
        self,
        config: HandlerConfig | None,
        *,
        deck: str,
        label: str | None,
        parent: Invocation,
    ) -> "IdleController":
        return IdleController(self, config, deck=deck, label=label, parent=parent)

    # ------------------------------------------------------------------
    # Error
    # ------------------------------------------------------------------

    async def handle_error(
        self,
        config: HandlerConfig,
        *,
        error: DeckrunError,
        envelope: Callable[..., ToolEnvelope],
        deck: str,
        label: str | None,
        action_name: str,
        child_input: Any,
        parent: Invocation,
    ) -> ToolEnvelope:
        """
        Run the error handler and build the parent's envelope from it.

        Args:
            envelope: Factory taking envelope fields (status, payload, ...)
        """
        payload = {
            "kind": "error",
            "label": config.label or label,
            "source": {"deck": deck, "action_name": action_name},
            "error": {"message": error.message, "code": error.code},
            "child_input": child_input,
        }
        self.emitter.emit(
            TraceEventType.HANDLER_FIRE,
            action_call_id=parent.action_call_id,
            parent_action_call_id=parent.parent_action_call_id,
            deck=deck,
            name=config.deck,
            kind="error",
            input=payload,
        )
        try:
            output = await self.run_handler(config, "error", payload, parent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_failure("error", config, parent, e)
            return envelope(
                status=500,
                payload=payload,
                message=f"Handled error: {error.message}",
                code="handler_fallback",
                meta={"handler_failed": True},
            )

        self._record("error", config, output)
        self.emitter.emit(
            TraceEventType.HANDLER_RESULT,
            action_call_id=parent.action_call_id,
            parent_action_call_id=parent.parent_action_call_id,
            deck=deck,
            name=config.deck,
            kind="error",
            output=output,
            message=handler_message(output),
        )

        parsed = output if isinstance(output, dict) else {}
        status = parsed.get("status")
        code = parsed.get("code")
        message = parsed.get("message")
        meta = parsed.get("meta")
        return envelope(
            status=status if isinstance(status, int) and not isinstance(status, bool) else 500,
            payload=parsed["payload"] if parsed.get("payload") is not None else output,
            message=message if isinstance(message, str) else error.message,
            code=code if isinstance(code, str) else error.code,
            meta=meta if isinstance(meta, dict) else None,
        )

    async def aclose(self) -> None:
        """Cancel every in-flight handler task."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class IdleController:
    """
    Idle timer for one model-backed invocation.

    ``touch`` restarts the countdown; ``pause``/``resume`` bracket action
    calls; ``stop`` is final.
    """

    def __init__(
        self,
        supervisor: HandlerSupervisor,
        config: HandlerConfig | None,
        *,
        deck: str,
        label: str | None,
        parent: Invocation,
    ):
        self.supervisor = supervisor
        self.config = config
        self.deck = deck
        self.label = label
        self.parent = parent
        self._last_touched = time.monotonic()
        self._paused = False
        self._stopped = config is None
        self._timer: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return not self._stopped

    def _clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self) -> None:
        if self._stopped or self._paused or self.supervisor._closed:
            return
        self._clear()
        delay = self.supervisor._delay(self.config)
        remaining = max(0.0, delay - (time.monotonic() - self._last_touched))
        self._timer = asyncio.ensure_future(self._run(remaining))

    async def _run(self, remaining: float) -> None:
        await asyncio.sleep(remaining)
        while not (self._stopped or self._paused):
            payload = {
                "kind": "idle",
                "label": self.config.label or self.label,
                "source": {"deck": self.deck},
                "trigger": {
                    "reason": "idle_timeout",
                    "elapsed_ms": round((time.monotonic() - self._last_touched) * 1000),
                },
            }
            firing = self.supervisor.spawn(
                self.supervisor.fire("idle", self.config, payload, self.parent)
            )
            # Cancelling the timer must not cancel a firing already under way
            await asyncio.shield(firing)
            if not self.config.repeat_ms:
                return
            self._last_touched = time.monotonic()
            await asyncio.sleep(self.config.repeat_ms / 1000)

    def touch(self) -> None:
        if self._stopped:
            return
        self._last_touched = time.monotonic()
        self._schedule()

    def pause(self) -> None:
        self._paused = True
        self._clear()

    def resume(self) -> None:
        if self._stopped or not self._paused:
            return
        self._paused = False
        self._schedule()

    def stop(self) -> None:
        self._stopped = True
        self._clear()


__all__ = ["HandlerRunner", "HandlerSupervisor", "IdleController", "handler_message"]
