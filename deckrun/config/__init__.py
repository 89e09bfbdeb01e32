"""
Configuration for deckrun.

Global settings come from environment variables (DECKRUN_ prefix).
"""

from deckrun.config.settings import DeckrunSettings, settings

__all__ = ["DeckrunSettings", "settings"]
