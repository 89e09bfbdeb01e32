"""
Provider dispatcher.

Routes a canonical ProviderRequest to a backend adapter by model prefix,
walks fallback lists, and races every in-flight call against the run's
cancellation signal.
"""

import asyncio
import contextlib
import inspect
import time
from typing import Any, Callable

from deckrun.config.settings import DeckrunSettings
from deckrun.config.settings import settings as default_settings
from deckrun.domain.errors import DeckrunError, GuardrailExceeded, ProviderError, RunCanceled
from deckrun.domain.provider import ProviderRequest, ProviderResponse, ResponseMetrics
from deckrun.llm.base import Model
from deckrun.llm.normalize import StreamAccumulator
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)

FallbackCallback = Callable[[str, str, DeckrunError], Any]


class ProviderDispatcher:
    """
    Prefix-routing model provider.

    Examples:
        >>> dispatcher = ProviderDispatcher(
        ...     {"openai": OpenAIModel(), "anthropic": AnthropicModel()},
        ...     default="openai",
        ... )
        >>> await dispatcher.invoke(ProviderRequest(model="anthropic/claude-sonnet-4", messages=[...]))
    """

    def __init__(
        self,
        adapters: dict[str, Model] | None = None,
        default: str | None = None,
        settings: DeckrunSettings | None = None,
    ):
        self.adapters: dict[str, Model] = dict(adapters or {})
        if default is not None and default not in self.adapters:
            raise ValueError(f"Default provider {default!r} is not registered")
        if default is None:
            # May name an adapter registered later; route() checks again
            default = (settings or default_settings).default_provider
        self.default = default

    def register(self, prefix: str, adapter: Model, *, default: bool = False) -> None:
        self.adapters[prefix] = adapter
        if default:
            self.default = prefix

    def route(self, model_id: str) -> tuple[str, Model, str]:
        """
        Resolve a model identifier to (prefix, adapter, model name).

        Raises:
            ProviderError: no_provider for an unknown prefix or no default
        """
        prefix, sep, name = model_id.partition("/")
        if sep and prefix in self.adapters:
            return prefix, self.adapters[prefix], name
        if sep:
            # An unknown prefix is never routed to the default
            raise ProviderError(
                f"No provider registered for prefix {prefix!r} (model {model_id!r})",
                code="no_provider",
                details={"model": model_id},
            )
        if self.default is None or self.default not in self.adapters:
            raise ProviderError(
                f"No provider registered for unprefixed model {model_id!r}",
                code="no_provider",
                details={"model": model_id},
            )
        return self.default, self.adapters[self.default], model_id

    async def invoke(
        self,
        request: ProviderRequest,
        *,
        on_stream_text: Callable[[str], Any] | None = None,
        signal: Any = None,
        on_fallback: FallbackCallback | None = None,
    ) -> ProviderResponse:
        """
        Invoke the first candidate that succeeds.

        Args:
            request: Canonical request; ``model`` may be a fallback list
            on_stream_text: Receives text deltas when ``request.stream``
            signal: AbortSignal raced against the call
            on_fallback: Called as (failed_model, next_model, error)

        Raises:
            ProviderError: every candidate failed (carries the last error)
            RunCanceled: the signal fired while a call was in flight
        """
        candidates = request.candidates
        if not candidates:
            raise ProviderError("No model configured", code="no_provider")

        last_error: DeckrunError | None = None
        for i, model_id in enumerate(candidates):
            try:
                return await self._invoke_one(model_id, request, on_stream_text, signal)
            except (RunCanceled, GuardrailExceeded, asyncio.CancelledError):
                raise
            except DeckrunError as e:
                last_error = e
            except Exception as e:
                logger.error(
                    "provider_call_failed",
                    model=model_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                last_error = ProviderError(
                    f"{type(e).__name__}: {e}", details={"model": model_id}
                )

            if i + 1 < len(candidates):
                next_model = candidates[i + 1]
                logger.warning(
                    "provider_fallback",
                    failed_model=model_id,
                    next_model=next_model,
                    error=last_error.message,
                )
                if on_fallback is not None:
                    on_fallback(model_id, next_model, last_error)

        if len(candidates) == 1 and isinstance(last_error, ProviderError):
            raise last_error
        raise ProviderError(
            f"All {len(candidates)} model candidates failed; last error: {last_error.message}",
            code=last_error.code if isinstance(last_error, ProviderError) else "provider_error",
            details={"candidates": candidates, "last_error": last_error.to_dict()},
        ) from last_error

    async def _invoke_one(
        self,
        model_id: str,
        request: ProviderRequest,
        on_stream_text: Callable[[str], Any] | None,
        signal: Any,
    ) -> ProviderResponse:
        prefix, adapter, name = self.route(model_id)
        started = time.monotonic()

        async def call() -> ProviderResponse:
            if request.stream:
                accumulator = StreamAccumulator(on_stream_text)
                async for chunk in adapter.arun_stream(name, request.messages, request.tools, request.params):
                    accumulator.add(chunk)
                return accumulator.build(model=name, provider=prefix)
            return await adapter.arun(name, request.messages, request.tools, request.params)

        response = await race_signal(call(), signal)
        updates: dict[str, Any] = {"provider": prefix, "model": name}
        if response.metrics is None:
            updates["metrics"] = ResponseMetrics(duration_ms=(time.monotonic() - started) * 1000)
        return response.model_copy(update=updates)


async def race_signal(coro, signal: Any):
    """
    Await ``coro`` unless ``signal`` aborts first.

    Raises:
        RunCanceled: the signal fired; the in-flight task is canceled
    """
    if signal is None:
        return await coro
    if signal.is_aborted():
        if inspect.iscoroutine(coro):
            coro.close()
        raise signal.error()

    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise
    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task
    raise signal.error()


__all__ = ["ProviderDispatcher", "race_signal"]
