"""
ExecutionContext - what a compute step sees.
"""

import asyncio
from typing import TYPE_CHECKING, Any

from deckrun.domain.envelopes import EndSignal, RespondEnvelope
from deckrun.domain.errors import UserFail
from deckrun.domain.events import TraceEventType
from deckrun.domain.models import Guardrails, Invocation

if TYPE_CHECKING:
    from deckrun.runtime.engine import RunScope


class ExecutionContext:
    """
    Handle passed to ``compute_step(ctx)``.

    Async steps await ``spawn_and_wait``; sync steps run in a worker thread
    and use ``spawn_and_wait_sync`` instead.

    Examples:
        >>> async def step(ctx):
        ...     ctx.log("looking up profile")
        ...     profile = await ctx.spawn_and_wait("lookup", {"id": ctx.input["id"]})
        ...     return {"name": profile["name"]}
    """

    def __init__(
        self,
        scope: "RunScope",
        invocation: Invocation,
        *,
        input: Any,
        label: str | None,
        guardrails: Guardrails,
        initial_user_message: Any = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._scope = scope
        self._invocation = invocation
        self._guardrails = guardrails
        self._loop = loop
        self.input = input
        self.label = label
        self.initial_user_message = initial_user_message

    @property
    def run_id(self) -> str:
        return self._scope.run.run_id

    @property
    def action_call_id(self) -> str:
        return self._invocation.action_call_id

    @property
    def parent_action_call_id(self) -> str | None:
        return self._invocation.parent_action_call_id

    @property
    def depth(self) -> int:
        return self._invocation.depth

    @property
    def deck(self) -> str:
        return self._invocation.deck

    def log(
        self,
        message: Any,
        *,
        level: str = "info",
        title: str | None = None,
        body: Any = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Emit a ``log`` trace event."""
        text = message if isinstance(message, str) else str(message)
        self._scope.emitter.emit(
            TraceEventType.LOG,
            action_call_id=self.action_call_id,
            parent_action_call_id=self.parent_action_call_id,
            deck=self.deck,
            level=level,
            title=title or text or None,
            message=text,
            body=body if body is not None else message,
            meta=meta,
        )

    async def spawn_and_wait(
        self, deck: str, input: Any = None, *, initial_user_message: Any = None
    ) -> Any:
        """
        Run a child deck at depth + 1 and return its validated output.

        Child failures raise their typed error into the step.
        """
        self._scope.tracker.check()
        child = await self._scope.resolve(deck)
        return await self._scope.run_deck(
            child,
            input,
            depth=self.depth + 1,
            parent_action_call_id=self.action_call_id,
            guardrails=self._guardrails,
            initial_user_message=initial_user_message,
        )

    def spawn_and_wait_sync(
        self, deck: str, input: Any = None, *, initial_user_message: Any = None
    ) -> Any:
        """Blocking variant for sync steps running in a worker thread."""
        if self._loop is None:
            raise RuntimeError("spawn_and_wait_sync is only available to sync compute steps")
        future = asyncio.run_coroutine_threadsafe(
            self.spawn_and_wait(deck, input, initial_user_message=initial_user_message),
            self._loop,
        )
        return future.result()

    def fail(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Fail this invocation explicitly."""
        raise UserFail(message, code=code, status=status, details=details)

    def respond(
        self,
        payload: Any = None,
        *,
        status: int | None = None,
        message: str | None = None,
        code: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> RespondEnvelope:
        """Build a structured completion; return it from the step."""
        return RespondEnvelope(payload=payload, status=status, message=message, code=code, meta=meta)

    def end(
        self,
        payload: Any = None,
        *,
        status: int | None = None,
        message: str | None = None,
        code: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> EndSignal:
        """Build an explicit end signal; return it from the step."""
        return EndSignal(payload=payload, status=status, message=message, code=code, meta=meta)

    def get_session_meta(self, key: str, default: Any = None) -> Any:
        return self._scope.run.session_meta.get(key, default)

    def set_session_meta(self, key: str, value: Any) -> None:
        """Last write wins; ``None`` deletes the key."""
        if value is None:
            self._scope.run.session_meta.pop(key, None)
        else:
            self._scope.run.session_meta[key] = value


__all__ = ["ExecutionContext"]
