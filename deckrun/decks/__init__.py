from .registry import DeckRegistry, DeckResolver, merge_schemas

__all__ = ["DeckRegistry", "DeckResolver", "merge_schemas"]
