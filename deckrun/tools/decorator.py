"""
Tool decorator
"""

from typing import Callable

from pydantic import BaseModel

from .local import FunctionTool


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    output_schema: type[BaseModel] | None = None,
):
    """
    Decorator to convert a function into a FunctionTool.

    Usable bare (``@tool``) or with options (``@tool(name="lookup")``).

    Args:
        func: The function to decorate

    Returns:
        FunctionTool instance
    """

    def wrap(f: Callable) -> FunctionTool:
        return FunctionTool(f, name=name, description=description, output_schema=output_schema)

    if func is not None:
        return wrap(func)
    return wrap
