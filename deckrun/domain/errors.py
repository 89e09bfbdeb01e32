"""
Error taxonomy for deck execution.

Every error carries a machine-readable ``code`` and an HTTP-like ``status``
so that a failing child invocation can be surfaced to its parent as a
tool-result envelope instead of aborting the whole run.
"""

from typing import Any


class DeckrunError(Exception):
    """Base exception for all engine errors."""

    code: str = "internal_error"
    status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": type(self).__name__,
            "code": self.code,
            "status": self.status,
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(DeckrunError):
    """Input or output did not match the declared schema."""

    code = "validation_error"
    status = 422


class GuardrailExceeded(DeckrunError):
    """Depth, pass or timeout budget breached."""

    code = "guardrail_exceeded"
    status = 429

    def __init__(self, message: str, *, limit: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.limit = limit
        self.details.setdefault("limit", limit)


class ProviderError(DeckrunError):
    """Backend invocation failed, including an exhausted fallback list."""

    code = "provider_error"
    status = 502


class ToolResolutionError(DeckrunError):
    """Unknown, ambiguous or reserved tool name."""

    code = "unknown_tool"
    status = 404


class DeckLoadError(ToolResolutionError):
    """A deck definition violates a load-time rule."""

    code = "reserved_tool_name"
    status = 400


class HandlerError(DeckrunError):
    """A busy/idle/error handler failed. Never escapes the supervisor."""

    code = "handler_error"
    status = 500


class UserFail(DeckrunError):
    """Explicit failure raised from compute code via ctx.fail()."""

    code = "user_fail"
    status = 500


class RunCanceled(DeckrunError):
    """The run's cancellation token fired."""

    code = "canceled"
    status = 499


__all__ = [
    "DeckrunError",
    "ValidationError",
    "GuardrailExceeded",
    "ProviderError",
    "ToolResolutionError",
    "DeckLoadError",
    "HandlerError",
    "UserFail",
    "RunCanceled",
]
