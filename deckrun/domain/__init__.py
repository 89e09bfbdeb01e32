"""
Domain module - Pure domain models shared by every layer.
"""

# Errors
from .errors import (
    DeckLoadError,
    DeckrunError,
    GuardrailExceeded,
    HandlerError,
    ProviderError,
    RunCanceled,
    ToolResolutionError,
    UserFail,
    ValidationError,
)

# Execution models
from .models import (
    DeckKind,
    GuardrailOverrides,
    Guardrails,
    Invocation,
    InvocationStatus,
    Run,
    RunResult,
    new_id,
)

# Deck configuration
from .deck import (
    ActionDeckRef,
    Card,
    DeckDefinition,
    HandlerConfig,
    HandlersConfig,
    LoadedDeck,
    ModelParams,
)

# Envelopes
from .envelopes import EndSignal, RespondEnvelope, ToolCall, ToolEnvelope, ToolSource

# Provider shapes
from .provider import (
    FinishReason,
    ProviderRequest,
    ProviderResponse,
    ResponseMetrics,
    Usage,
    normalize_usage,
)

# Events and state
from .events import TraceEvent, TraceEventType
from .state import SavedState, load_state, save_state

__all__ = [
    # Errors
    "DeckrunError",
    "ValidationError",
    "GuardrailExceeded",
    "ProviderError",
    "ToolResolutionError",
    "DeckLoadError",
    "HandlerError",
    "UserFail",
    "RunCanceled",
    # Models
    "new_id",
    "DeckKind",
    "InvocationStatus",
    "GuardrailOverrides",
    "Guardrails",
    "Invocation",
    "Run",
    "RunResult",
    # Deck
    "ModelParams",
    "HandlerConfig",
    "HandlersConfig",
    "ActionDeckRef",
    "Card",
    "DeckDefinition",
    "LoadedDeck",
    # Envelopes
    "ToolCall",
    "ToolSource",
    "ToolEnvelope",
    "RespondEnvelope",
    "EndSignal",
    # Provider
    "FinishReason",
    "Usage",
    "normalize_usage",
    "ResponseMetrics",
    "ProviderRequest",
    "ProviderResponse",
    # Events / state
    "TraceEventType",
    "TraceEvent",
    "SavedState",
    "load_state",
    "save_state",
]
