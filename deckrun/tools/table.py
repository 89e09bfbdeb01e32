"""
ToolTable - the one ordered lookup a deck's tool calls resolve against.

Built once at deck-load time. Order: synthetic tools, then action decks,
then external tools. An external tool sharing a name with an action deck is
shadowed (dropped) and a warning is recorded.
"""

from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict

from deckrun.domain.deck import ActionDeckRef
from deckrun.tools.base import ExternalTool
from deckrun.tools.synthetic import END_TOOL, RESPOND_TOOL, end_definition, respond_definition
from deckrun.utils.logging import get_logger

logger = get_logger(__name__)


class ToolKind(str, Enum):
    SYNTHETIC = "synthetic"
    ACTION = "action"
    EXTERNAL = "external"


class ToolEntry(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    kind: ToolKind
    definition: dict[str, Any]
    input_schema: type[BaseModel] | None = None
    output_schema: type[BaseModel] | None = None
    action: ActionDeckRef | None = None
    tool: ExternalTool | None = None


class ToolTable:
    """Ordered name -> ToolEntry mapping."""

    def __init__(self, entries: list[ToolEntry] | None = None):
        self._entries: dict[str, ToolEntry] = {}
        for entry in entries or []:
            self._entries[entry.name] = entry

    @classmethod
    def build(
        cls,
        deck: str,
        *,
        respond: bool = False,
        allow_end: bool = False,
        actions: list[tuple[ActionDeckRef, type[BaseModel] | None]] | None = None,
        tools: list[ExternalTool] | None = None,
    ) -> tuple["ToolTable", list[str]]:
        """
        Build the table for one deck.

        Args:
            deck: Deck reference, used in warnings
            respond: Expose the respond tool
            allow_end: Expose the end tool
            actions: Action decks paired with the child's effective input schema
            tools: External tools

        Returns:
            (table, warnings)
        """
        entries: list[ToolEntry] = []
        warnings: list[str] = []

        if respond:
            entries.append(
                ToolEntry(name=RESPOND_TOOL, kind=ToolKind.SYNTHETIC, definition=respond_definition())
            )
        if allow_end:
            entries.append(
                ToolEntry(name=END_TOOL, kind=ToolKind.SYNTHETIC, definition=end_definition())
            )

        action_names: set[str] = set()
        for action, input_schema in actions or []:
            action_names.add(action.name)
            entries.append(
                ToolEntry(
                    name=action.name,
                    kind=ToolKind.ACTION,
                    definition=_action_definition(action, input_schema),
                    input_schema=input_schema,
                    action=action,
                )
            )

        for ext in tools or []:
            if ext.name in action_names:
                message = f"External tool {ext.name!r} is shadowed by an action deck of the same name"
                logger.warning("tool_shadowed", deck=deck, tool=ext.name)
                warnings.append(message)
                continue
            entries.append(
                ToolEntry(
                    name=ext.name,
                    kind=ToolKind.EXTERNAL,
                    definition=ext.to_openai_schema(),
                    input_schema=ext.input_schema,
                    output_schema=ext.output_schema,
                    tool=ext,
                )
            )

        return cls(entries), warnings

    def lookup(self, name: str) -> ToolEntry | None:
        return self._entries.get(name)

    def definitions(self) -> list[dict[str, Any]]:
        return [entry.definition for entry in self._entries.values()]

    @property
    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[ToolEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ToolTable({self.names})"


def _action_definition(action: ActionDeckRef, input_schema: type[BaseModel] | None) -> dict[str, Any]:
    if input_schema is None:
        parameters: dict[str, Any] = {"type": "object", "properties": {}}
    else:
        parameters = input_schema.model_json_schema()
        parameters.pop("title", None)
    return {
        "type": "function",
        "function": {
            "name": action.name,
            "description": action.description or action.label or "",
            "parameters": parameters,
        },
    }


__all__ = ["ToolKind", "ToolEntry", "ToolTable"]
