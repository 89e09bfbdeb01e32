"""
LLM providers module.

This module contains the backend adapters and the dispatcher:
- Model: Abstract base class
- OpenAIModel: OpenAI chat completions
- AnthropicModel: Anthropic messages API
- ScriptedModel: Deterministic replies for tests and replays
- ProviderDispatcher: Prefix routing and fallback lists
"""

from .anthropic import AnthropicModel
from .base import Model, StreamChunk
from .dispatcher import ProviderDispatcher, race_signal
from .normalize import StreamAccumulator, ToolCallAccumulator, build_response, map_finish_reason
from .openai import OpenAIModel
from .scripted import ScriptedModel, ScriptedReply

__all__ = [
    "Model",
    "StreamChunk",
    "OpenAIModel",
    "AnthropicModel",
    "ScriptedModel",
    "ScriptedReply",
    "ProviderDispatcher",
    "race_signal",
    "StreamAccumulator",
    "ToolCallAccumulator",
    "build_response",
    "map_finish_reason",
]
