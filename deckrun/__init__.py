"""
Deckrun - guardrail-enforced recursive deck execution.

Top-level exports for easy access to core functionality.
"""

# Engine
from deckrun.runtime import AbortSignal, ExecutionContext, ExecutionEngine, Wire

# Decks
from deckrun.decks import DeckRegistry, DeckResolver

# Domain
from deckrun.domain import (
    ActionDeckRef,
    Card,
    DeckDefinition,
    DeckrunError,
    EndSignal,
    GuardrailExceeded,
    GuardrailOverrides,
    Guardrails,
    HandlerConfig,
    HandlersConfig,
    InvocationStatus,
    ModelParams,
    ProviderError,
    RespondEnvelope,
    RunCanceled,
    RunResult,
    SavedState,
    ToolEnvelope,
    TraceEvent,
    TraceEventType,
    ValidationError,
    load_state,
    save_state,
)

# Providers
from deckrun.llm import AnthropicModel, Model, OpenAIModel, ProviderDispatcher, ScriptedModel, ScriptedReply

# Tools
from deckrun.tools import ExternalTool, FunctionTool, tool

# Config
from deckrun.config import settings

__version__ = "0.1.0"

__all__ = [
    # Engine
    "ExecutionEngine",
    "ExecutionContext",
    "AbortSignal",
    "Wire",
    # Decks
    "DeckRegistry",
    "DeckResolver",
    "DeckDefinition",
    "Card",
    "ActionDeckRef",
    "ModelParams",
    "HandlerConfig",
    "HandlersConfig",
    # Domain
    "Guardrails",
    "GuardrailOverrides",
    "InvocationStatus",
    "RunResult",
    "ToolEnvelope",
    "RespondEnvelope",
    "EndSignal",
    "TraceEvent",
    "TraceEventType",
    "SavedState",
    "load_state",
    "save_state",
    # Errors
    "DeckrunError",
    "ValidationError",
    "GuardrailExceeded",
    "ProviderError",
    "RunCanceled",
    # Providers
    "Model",
    "OpenAIModel",
    "AnthropicModel",
    "ScriptedModel",
    "ScriptedReply",
    "ProviderDispatcher",
    # Tools
    "ExternalTool",
    "FunctionTool",
    "tool",
    # Config
    "settings",
]
