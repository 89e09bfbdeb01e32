"""
Tools module - tool table, synthetic tools, external tool hooks and routing.
"""

from .base import ExternalTool, ToolContext
from .decorator import tool
from .local import FunctionTool
from .router import ToolRouter
from .synthetic import (
    COMPLETE_TOOL,
    END_TOOL,
    INIT_TOOL,
    RESERVED_PREFIX,
    RESPOND_TOOL,
    SYNTHETIC_TOOLS,
    validate_tool_name,
)
from .table import ToolEntry, ToolKind, ToolTable

__all__ = [
    "ExternalTool",
    "ToolContext",
    "FunctionTool",
    "tool",
    "ToolRouter",
    "ToolEntry",
    "ToolKind",
    "ToolTable",
    "RESERVED_PREFIX",
    "INIT_TOOL",
    "RESPOND_TOOL",
    "COMPLETE_TOOL",
    "END_TOOL",
    "SYNTHETIC_TOOLS",
    "validate_tool_name",
]
