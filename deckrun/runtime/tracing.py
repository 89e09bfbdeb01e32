"""
Trace emission.

The sink is observational only: a plain callable, an async callable or a
Wire. Sink failures are logged and never reach the engine.
"""

import asyncio
import inspect
from typing import Any, Callable, Union

from deckrun.domain.events import TraceEvent, TraceEventType
from deckrun.runtime.wire import Wire
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)

TraceSink = Union[Callable[[TraceEvent], Any], Wire]


class TraceEmitter:
    def __init__(self, run_id: str, sink: TraceSink | None = None):
        self.run_id = run_id
        self.sink = sink
        self.events: list[TraceEvent] = []
        self._pending: set[asyncio.Task] = set()

    def emit(
        self,
        type: TraceEventType,
        *,
        action_call_id: str | None = None,
        parent_action_call_id: str | None = None,
        deck: str | None = None,
        name: str | None = None,
        **data: Any,
    ) -> TraceEvent:
        event = TraceEvent(
            type=type,
            run_id=self.run_id,
            action_call_id=action_call_id,
            parent_action_call_id=parent_action_call_id,
            deck=deck,
            name=name,
            data=data,
        )
        self.events.append(event)
        if self.sink is not None:
            self._deliver(event)
        return event

    def _deliver(self, event: TraceEvent) -> None:
        try:
            if isinstance(self.sink, Wire):
                self.sink.write_nowait(event)
                return
            result = self.sink(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_done)
        except Exception as e:
            logger.warning("trace_sink_failed", event_type=event.type.value, error=str(e))

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("trace_sink_failed", error=str(task.exception()))

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    async def flush(self) -> None:
        """Wait for async sink deliveries still in flight."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def close(self) -> None:
        """Flush, then close a Wire sink so its readers stop."""
        await self.flush()
        if isinstance(self.sink, Wire):
            await self.sink.close()


__all__ = ["TraceSink", "TraceEmitter"]
