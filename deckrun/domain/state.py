"""
Resumable run snapshot.

Best-effort local persistence only: a missing or corrupt file loads as None.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from deckrun.utils.logging import get_logger

from .events import TraceEvent

logger = get_logger(__name__)


class SavedState(BaseModel):
    """Root message history plus metadata needed to resume a run."""

    run_id: str
    messages: list[dict[str, Any]] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)
    traces: list[TraceEvent] = Field(default_factory=list)
    handler_meta: dict[str, Any] = Field(default_factory=dict)


def load_state(path: str | Path) -> SavedState | None:
    path = Path(path)
    if not path.exists():
        return None
    try:
        return SavedState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        logger.warning("state_load_failed", path=str(path), error=str(e))
        return None


def save_state(path: str | Path, state: SavedState) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(state.model_dump_json(indent=2), encoding="utf-8")


__all__ = ["SavedState", "load_state", "save_state"]
