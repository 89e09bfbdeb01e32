"""
Guardrail tracker.

Depth is checked before an invocation is created, passes at each pass
boundary, and the wall-clock timeout both at checkpoints and through a
loop timer that trips the run's abort signal so in-flight calls stop too.
"""

import asyncio
import time

from deckrun.domain.errors import GuardrailExceeded
from deckrun.domain.models import Guardrails, Invocation, Run
from deckrun.runtime.control import AbortSignal
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)


class GuardrailTracker:
    def __init__(self, run: Run, signal: AbortSignal):
        self.run = run
        self.signal = signal
        self._timer: asyncio.TimerHandle | None = None

    def arm(self) -> None:
        """Schedule the deadline timer on the running loop."""
        loop = asyncio.get_running_loop()
        remaining = max(0.0, self.run.deadline - time.monotonic())
        self._timer = loop.call_later(remaining, self._on_deadline)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_deadline(self) -> None:
        self._timer = None
        if self.signal.is_aborted():
            return
        logger.warning(
            "run_timeout",
            run_id=self.run.run_id,
            timeout_ms=self.run.guardrails.timeout_ms,
        )
        self.signal.abort(
            f"Run exceeded timeout of {self.run.guardrails.timeout_ms} ms", timeout=True
        )

    def enter(self, depth: int, guardrails: Guardrails, deck: str) -> None:
        """
        Raises:
            GuardrailExceeded: depth > max_depth
        """
        if depth > guardrails.max_depth:
            raise GuardrailExceeded(
                f"Deck {deck} would run at depth {depth}, max depth is {guardrails.max_depth}",
                limit="depth",
                details={"depth": depth, "max_depth": guardrails.max_depth, "deck": deck},
            )

    def begin_pass(self, invocation: Invocation, guardrails: Guardrails) -> None:
        """
        Count one pass (one model round-trip or one compute step).

        Raises:
            GuardrailExceeded: the pass would exceed max_passes
        """
        if invocation.pass_count >= guardrails.max_passes:
            raise GuardrailExceeded(
                f"Max passes exceeded ({guardrails.max_passes}) for deck {invocation.deck}",
                limit="passes",
                details={"max_passes": guardrails.max_passes, "deck": invocation.deck},
            )
        invocation.pass_count += 1

    def check(self) -> None:
        """
        Checkpoint: cancellation and deadline.

        Raises:
            GuardrailExceeded: timeout
            RunCanceled: explicit cancel
        """
        if not self.signal.is_aborted() and time.monotonic() >= self.run.deadline:
            self._on_deadline()
        self.signal.raise_if_aborted()


__all__ = ["GuardrailTracker"]
