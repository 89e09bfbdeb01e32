"""
Tool/action router.

Resolves a model-issued tool call against a deck's ToolTable, validates the
arguments against the target's input schema, dispatches to an action deck
(through the engine-provided runner) or an external tool, and wraps the
outcome into a ToolEnvelope. Failures become envelopes with status >= 400
so the calling model can react.
"""

import asyncio
from typing import Any, Awaitable, Callable

from deckrun.domain.envelopes import EndSignal, RespondEnvelope, ToolCall, ToolEnvelope, ToolSource
from deckrun.domain.errors import DeckrunError, ToolResolutionError
from deckrun.tools.base import ToolContext
from deckrun.tools.table import ToolEntry, ToolKind, ToolTable
from deckrun.utils.logging import get_logger
from deckrun.utils.schema import to_jsonable, validate_input, validate_value

logger = get_logger(__name__)

ActionRunner = Callable[[ToolEntry, Any, ToolCall], Awaitable[ToolEnvelope]]


class ToolRouter:
    """Routes one invocation's tool calls and returns envelopes."""

    def __init__(
        self,
        table: ToolTable,
        *,
        run_id: str,
        deck: str,
        action_call_id: str,
        depth: int,
        run_action: ActionRunner,
        signal: Any = None,
    ):
        self.table = table
        self.run_id = run_id
        self.deck = deck
        self.action_call_id = action_call_id
        self.depth = depth
        self.run_action = run_action
        self.signal = signal

    def envelope(self, call: ToolCall, **fields: Any) -> ToolEnvelope:
        return ToolEnvelope(
            run_id=self.run_id,
            action_call_id=call.id,
            parent_action_call_id=self.action_call_id,
            source=ToolSource(deck=self.deck, action_name=call.name),
            **fields,
        )

    def error_envelope(self, call: ToolCall, error: DeckrunError, **fields: Any) -> ToolEnvelope:
        fields.setdefault("meta", error.details or None)
        return self.envelope(
            call,
            status=error.status,
            message=error.message,
            code=error.code,
            **fields,
        )

    def result_envelope(self, call: ToolCall, result: Any) -> ToolEnvelope:
        """Wrap a successful return value, honoring envelope-shaped results."""
        if isinstance(result, ToolEnvelope):
            return result
        if isinstance(result, (RespondEnvelope, EndSignal)):
            return self.envelope(
                call,
                status=result.status or 200,
                payload=to_jsonable(result.payload),
                message=result.message,
                code=result.code,
                meta=result.meta,
            )
        return self.envelope(call, status=200, payload=to_jsonable(result))

    async def route(self, call: ToolCall) -> ToolEnvelope:
        """
        Execute a single tool call.

        Args:
            call: Normalized tool call

        Returns:
            ToolEnvelope: Result envelope (never raises for tool-level failures)
        """
        entry = self.table.lookup(call.name)
        if entry is None or entry.kind == ToolKind.SYNTHETIC:
            logger.warning("unknown_tool", deck=self.deck, tool=call.name, tool_call_id=call.id)
            return self.error_envelope(
                call, ToolResolutionError(f"Unknown action or tool: {call.name}")
            )

        try:
            args = validate_input(entry.input_schema, call.args)
        except DeckrunError as e:
            logger.info("tool_args_invalid", deck=self.deck, tool=call.name, error=e.message)
            return self.error_envelope(call, e)

        if entry.kind == ToolKind.ACTION:
            return await self.run_action(entry, args, call)
        return await self._run_external(entry, args, call)

    async def route_batch(self, calls: list[ToolCall]) -> list[ToolEnvelope]:
        """
        Execute multiple tool calls concurrently.

        Results come back in request order. If one call raises (cancellation,
        run timeout) the remaining calls are cancelled before it propagates.
        """
        tasks = [asyncio.ensure_future(self.route(call)) for call in calls]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_external(self, entry: ToolEntry, args: Any, call: ToolCall) -> ToolEnvelope:
        context = ToolContext(
            run_id=self.run_id,
            action_call_id=self.action_call_id,
            tool_call_id=call.id,
            deck=self.deck,
            depth=self.depth,
            signal=self.signal,
        )
        try:
            logger.debug("executing_tool", tool_name=call.name, tool_call_id=call.id)
            result = await entry.tool.execute(args, context)
        except DeckrunError as e:
            return self.error_envelope(call, e)
        except Exception as e:
            logger.error(
                "tool_execution_exception",
                tool_name=call.name,
                error=str(e),
                exc_info=True,
            )
            return self.envelope(
                call,
                status=500,
                message=str(e),
                code="tool_handler_error",
            )

        envelope = self.result_envelope(call, result)
        if entry.output_schema is not None and not envelope.is_error:
            try:
                envelope.payload = validate_value(entry.output_schema, envelope.payload)
            except DeckrunError as e:
                return self.error_envelope(call, e)
        logger.debug("tool_execution_completed", tool_name=call.name, status=envelope.status)
        return envelope


__all__ = ["ActionRunner", "ToolRouter"]
