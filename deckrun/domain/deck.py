"""
Deck configuration models.

A DeckDefinition is what an author registers; a LoadedDeck is the resolved,
cached record the engine consumes (cards merged, tool table built).
"""

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import DeckKind, GuardrailOverrides


class ModelParams(BaseModel):
    """
    Model parameters declared by a model-backed deck.

    ``model`` may be a single identifier or a prioritized fallback list.
    Identifiers may carry a provider prefix, e.g. ``openai/gpt-4o-mini``.
    """

    model_config = ConfigDict(protected_namespaces=())

    model: str | list[str] | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)

    def candidates(self, default: str | None = None) -> list[str]:
        if isinstance(self.model, list):
            return [m for m in self.model if m]
        if self.model:
            return [self.model]
        return [default] if default else []

    def sampling(self) -> dict[str, Any]:
        return self.model_dump(exclude={"model"}, exclude_none=True)


class HandlerConfig(BaseModel):
    """A handler deck plus its timer settings."""

    deck: str
    delay_ms: int | None = Field(default=None, ge=0)
    repeat_ms: int | None = Field(default=None, ge=1)
    label: str | None = None


class HandlersConfig(BaseModel):
    on_busy: HandlerConfig | None = None
    on_idle: HandlerConfig | None = None
    on_error: HandlerConfig | None = None


class ActionDeckRef(BaseModel):
    """A child deck exposed to the model as a callable tool."""

    name: str
    deck: str
    description: str | None = None
    label: str | None = None


class Card(BaseModel):
    """
    Reusable fragment merged into a deck at load time.

    Fragments contribute prompt text, schema fields, action decks and
    external tools. The deck's own declarations win on field collisions.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    prompt: str | None = None
    input_fragment: type[BaseModel] | None = None
    output_fragment: type[BaseModel] | None = None
    action_decks: list[ActionDeckRef] = Field(default_factory=list)
    tools: list[Any] = Field(default_factory=list)


class DeckDefinition(BaseModel):
    """
    Author-facing deck declaration.

    Exactly one of ``model_params`` / ``compute_step`` decides the kind; a
    deck with neither is a model deck served by the default model.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ref: str
    label: str | None = None
    prompt: str | None = None
    input_schema: type[BaseModel] | None = None
    output_schema: type[BaseModel] | None = None
    model_params: ModelParams | None = None
    compute_step: Callable[..., Any] | None = None
    action_decks: list[ActionDeckRef] = Field(default_factory=list)
    tools: list[Any] = Field(default_factory=list)
    cards: list[Card] = Field(default_factory=list)
    handlers: HandlersConfig | None = None
    guardrails: GuardrailOverrides | None = None
    respond: bool = False
    allow_end: bool = False

    @model_validator(mode="after")
    def _check_kind(self) -> "DeckDefinition":
        if self.model_params is not None and self.compute_step is not None:
            raise ValueError(
                f"Deck {self.ref} declares both model_params and compute_step"
            )
        return self

    @property
    def kind(self) -> DeckKind:
        return DeckKind.COMPUTE if self.compute_step is not None else DeckKind.MODEL


class LoadedDeck(BaseModel):
    """Resolved deck record: schemas merged, tool table built, cached."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ref: str
    kind: DeckKind
    label: str | None = None
    prompt: str | None = None
    input_schema: type[BaseModel] | None = None
    output_schema: type[BaseModel] | None = None
    model_params: ModelParams | None = None
    compute_step: Callable[..., Any] | None = None
    handlers: HandlersConfig = Field(default_factory=HandlersConfig)
    guardrails: GuardrailOverrides | None = None
    respond: bool = False
    allow_end: bool = False

    # deckrun.tools.table.ToolTable
    tool_table: Any = Field(default=None, exclude=True)
    warnings: list[str] = Field(default_factory=list)


__all__ = [
    "ModelParams",
    "HandlerConfig",
    "HandlersConfig",
    "ActionDeckRef",
    "Card",
    "DeckDefinition",
    "LoadedDeck",
]
