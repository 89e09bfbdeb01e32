import inspect
from typing import Any, Callable, get_type_hints

from pydantic import BaseModel, create_model

from deckrun.tools.base import ExternalTool, ToolContext

# Parameters the router fills in itself
_INJECTED = ("self", "cls", "context")


class FunctionTool(ExternalTool):
    def __init__(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        output_schema: type[BaseModel] | None = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description or inspect.getdoc(func) or ""
        self.input_schema = self._create_args_schema(func)
        self.output_schema = output_schema
        self._wants_context = "context" in inspect.signature(func).parameters

    def _create_args_schema(self, func: Callable) -> type[BaseModel]:
        """Dynamically create a Pydantic model from function signature."""
        sig = inspect.signature(func)
        type_hints = get_type_hints(func)

        fields = {}
        for param_name, param in sig.parameters.items():
            if param_name in _INJECTED:
                continue

            annotation = type_hints.get(param_name, Any)
            default = param.default

            if default is inspect.Parameter.empty:
                fields[param_name] = (annotation, ...)
            else:
                fields[param_name] = (annotation, default)

        return create_model(f"{self.name}Args", **fields)

    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any:
        kwargs = dict(args)
        if self._wants_context:
            kwargs["context"] = context
        if inspect.iscoroutinefunction(self.func):
            return await self.func(**kwargs)
        return self.func(**kwargs)


__all__ = ["FunctionTool"]
