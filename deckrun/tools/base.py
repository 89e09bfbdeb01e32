"""
External tool hook contract.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict


class ToolContext(BaseModel):
    """What an external tool sees about the call site."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    action_call_id: str
    tool_call_id: str
    deck: str
    depth: int = 0
    signal: Any = None


class ExternalTool(ABC):
    """
    Base class for tools implemented by the host rather than by a deck.

    Subclasses set ``name`` (and optionally ``description``,
    ``input_schema``, ``output_schema``) and implement ``execute``.
    """

    name: str
    description: str = ""
    input_schema: type[BaseModel] | None = None
    output_schema: type[BaseModel] | None = None

    @abstractmethod
    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any:
        """Run the tool with already-validated arguments."""

    def parameters(self) -> dict[str, Any]:
        if self.input_schema is None:
            return {"type": "object", "properties": {}}
        schema = self.input_schema.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters(),
            },
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = ["ExternalTool", "ToolContext"]
