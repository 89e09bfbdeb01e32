"""
Runtime module - execution engine and its supporting infrastructure.

This module contains:
- ExecutionEngine: Runs a deck tree under guardrails and returns a RunResult
- ExecutionContext: Handle passed to compute steps
- HandlerSupervisor: Busy, idle and error handler scheduling
- GuardrailTracker: Depth, pass and timeout enforcement
- TraceEmitter / Wire: Trace event delivery
- AbortSignal: Cooperative cancellation token
"""

from deckrun.runtime.context import ExecutionContext
from deckrun.runtime.control import AbortSignal
from deckrun.runtime.engine import ExecutionEngine, ModelProvider, RunScope
from deckrun.runtime.guardrails import GuardrailTracker
from deckrun.runtime.handlers import HandlerSupervisor, IdleController
from deckrun.runtime.tracing import TraceEmitter, TraceSink
from deckrun.runtime.wire import Wire

__all__ = [
    "ExecutionEngine",
    "ExecutionContext",
    "ModelProvider",
    "RunScope",
    "AbortSignal",
    "GuardrailTracker",
    "HandlerSupervisor",
    "IdleController",
    "TraceEmitter",
    "TraceSink",
    "Wire",
]
