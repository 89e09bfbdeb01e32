"""
Shared fixtures: an isolated settings object, a registry and an engine
factory wired to scripted models.
"""

import pytest

from deckrun.config import DeckrunSettings
from deckrun.decks import DeckRegistry
from deckrun.llm import ProviderDispatcher, ScriptedModel
from deckrun.runtime import ExecutionEngine


@pytest.fixture
def test_settings():
    return DeckrunSettings(
        _env_file=None,
        max_depth=3,
        max_passes=10,
        timeout_ms=5_000,
        status_delay_ms=800,
        default_model="scripted/test-model",
    )


@pytest.fixture
def registry():
    return DeckRegistry()


@pytest.fixture
def make_engine(registry, test_settings):
    """Build an engine around one scripted model registered as ``scripted``."""

    def factory(model: ScriptedModel, **adapters) -> ExecutionEngine:
        dispatcher = ProviderDispatcher({"scripted": model, **adapters}, default="scripted")
        return ExecutionEngine(registry, dispatcher, test_settings)

    return factory
