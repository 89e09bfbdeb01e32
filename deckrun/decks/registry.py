"""
In-memory deck registry.

Responsibilities:
- Validate tool/action names when a deck is registered
- Merge card fragments into each deck's effective prompt and schemas
- Build the deck's ToolTable
- Cache resolved decks so nothing is recomputed per invocation
"""

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, create_model

from deckrun.domain.deck import ActionDeckRef, DeckDefinition, HandlersConfig, LoadedDeck
from deckrun.domain.errors import DeckLoadError, ToolResolutionError
from deckrun.tools.base import ExternalTool
from deckrun.tools.synthetic import validate_tool_name
from deckrun.tools.table import ToolTable
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class DeckResolver(Protocol):
    """Supplies a fully resolved deck record per reference."""

    def resolve(self, ref: str) -> LoadedDeck: ...


def merge_schemas(
    name: str, fragments: list[type[BaseModel] | None]
) -> type[BaseModel] | None:
    """
    Deterministic field union of schema fragments.

    Later fragments win on collisions, so callers pass the most specific
    fragment last. A single fragment is returned as-is.
    """
    present = [f for f in fragments if f is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]

    fields: dict[str, Any] = {}
    for fragment in present:
        for field_name, info in fragment.model_fields.items():
            fields[field_name] = (info.annotation, info)
    return create_model(name, **fields)


def _model_name(ref: str, suffix: str) -> str:
    cleaned = "".join(part.capitalize() for part in ref.replace("/", "_").replace(".", "_").split("_"))
    return f"{cleaned or 'Deck'}{suffix}"


class DeckRegistry:
    """
    Deck resolver backed by a dict of registered definitions.

    Examples:
        >>> registry = DeckRegistry()
        >>> registry.register(DeckDefinition(ref="echo", compute_step=echo))
        >>> loaded = registry.resolve("echo")
    """

    def __init__(self, definitions: list[DeckDefinition] | None = None):
        self._definitions: dict[str, DeckDefinition] = {}
        self._cache: dict[str, LoadedDeck] = {}
        self._schemas: dict[str, tuple[type[BaseModel] | None, type[BaseModel] | None]] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: DeckDefinition) -> DeckDefinition:
        """
        Register a deck, enforcing load-time naming rules.

        Raises:
            DeckLoadError: reserved prefix or duplicate action name
            ToolResolutionError: malformed tool name
        """
        actions, tools = self._collect(definition)

        seen: set[str] = set()
        for action in actions:
            validate_tool_name(action.name, kind="action")
            if action.name in seen:
                raise DeckLoadError(
                    f"Deck {definition.ref} declares action {action.name!r} twice",
                    code="duplicate_action",
                    details={"deck": definition.ref, "name": action.name},
                )
            seen.add(action.name)
        for ext in tools:
            validate_tool_name(ext.name, kind="tool")

        self._definitions[definition.ref] = definition
        self._cache.clear()
        self._schemas.clear()
        logger.debug("deck_registered", deck=definition.ref, kind=definition.kind.value)
        return definition

    def get(self, ref: str) -> DeckDefinition:
        definition = self._definitions.get(ref)
        if definition is None:
            raise ToolResolutionError(
                f"Unknown deck: {ref}", code="unknown_deck", details={"deck": ref}
            )
        return definition

    def __contains__(self, ref: object) -> bool:
        return ref in self._definitions

    def resolve(self, ref: str) -> LoadedDeck:
        cached = self._cache.get(ref)
        if cached is not None:
            return cached

        definition = self.get(ref)
        input_schema, output_schema = self._effective_schemas(definition)
        actions, tools = self._collect(definition)

        action_schemas = [
            (action, self._effective_schemas(self.get(action.deck))[0]) for action in actions
        ]
        table, warnings = ToolTable.build(
            definition.ref,
            respond=definition.respond,
            allow_end=definition.allow_end,
            actions=action_schemas,
            tools=tools,
        )

        prompts = [definition.prompt] + [card.prompt for card in definition.cards]
        loaded = LoadedDeck(
            ref=definition.ref,
            kind=definition.kind,
            label=definition.label,
            prompt="\n\n".join(p.strip() for p in prompts if p and p.strip()) or None,
            input_schema=input_schema,
            output_schema=output_schema,
            model_params=definition.model_params,
            compute_step=definition.compute_step,
            handlers=definition.handlers or HandlersConfig(),
            guardrails=definition.guardrails,
            respond=definition.respond,
            allow_end=definition.allow_end,
            tool_table=table,
            warnings=warnings,
        )
        self._cache[ref] = loaded
        logger.debug("deck_resolved", deck=ref, tools=table.names, warnings=len(warnings))
        return loaded

    def _collect(
        self, definition: DeckDefinition
    ) -> tuple[list[ActionDeckRef], list[ExternalTool]]:
        actions = [a for card in definition.cards for a in card.action_decks]
        actions.extend(definition.action_decks)
        tools = [t for card in definition.cards for t in card.tools]
        tools.extend(definition.tools)
        return actions, tools

    def _effective_schemas(
        self, definition: DeckDefinition
    ) -> tuple[type[BaseModel] | None, type[BaseModel] | None]:
        cached = self._schemas.get(definition.ref)
        if cached is not None:
            return cached

        cards = definition.cards
        input_schema = merge_schemas(
            _model_name(definition.ref, "Input"),
            [c.input_fragment for c in cards] + [definition.input_schema],
        )
        output_schema = merge_schemas(
            _model_name(definition.ref, "Output"),
            [c.output_fragment for c in cards] + [definition.output_schema],
        )
        self._schemas[definition.ref] = (input_schema, output_schema)
        return input_schema, output_schema


__all__ = ["DeckResolver", "DeckRegistry", "merge_schemas"]
