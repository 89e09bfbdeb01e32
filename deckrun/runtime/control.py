"""
Abort signal for cancelling a running deck tree.

Based on asyncio.Event:
- Synchronous check of the aborted state
- Async wait for the abort
- Records the reason, and whether the abort came from the run deadline
"""

import asyncio

from deckrun.domain.errors import DeckrunError, GuardrailExceeded, RunCanceled


class AbortSignal:
    """
    Run-level cancellation token shared by every invocation, provider call
    and handler task of one run.

    Examples:
        >>> signal = AbortSignal()
        >>>
        >>> # Trip it from another task
        >>> signal.abort("User cancelled")
        >>>
        >>> # Check between steps
        >>> if signal.is_aborted():
        >>>     raise signal.error()
        >>>
        >>> # Or wait for it
        >>> await signal.wait()
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._timed_out = False

    def abort(self, reason: str = "Operation cancelled", *, timeout: bool = False):
        """
        Trip the signal. The first abort wins.

        Args:
            reason: Reason used in logs and error messages
            timeout: The run deadline passed
        """
        if self._event.is_set():
            return
        self._reason = reason
        self._timed_out = timeout
        self._event.set()

    def is_aborted(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    def error(self) -> DeckrunError:
        """The typed error this abort terminates the run with."""
        if self._timed_out:
            return GuardrailExceeded(self._reason or "Run timed out", limit="timeout")
        return RunCanceled(self._reason or "Run canceled")

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise self.error()


__all__ = ["AbortSignal"]
