"""
Schema validation helpers shared by the router and the engine.

Schemas are pydantic model classes. Validated values are returned in their
JSON-compatible form so they can travel through message history unchanged.
"""

import json
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from deckrun.domain.errors import ValidationError


def _summarize(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def validate_value(
    schema: type[BaseModel],
    value: Any,
    *,
    what: str = "output",
    code: str = "validation_error",
    status: int = 422,
) -> Any:
    """
    Validate ``value`` against ``schema`` and return the JSON-compatible result.

    Strings are parsed as JSON first, so a model that replies with a JSON
    document validates against a structured schema.

    Raises:
        ValidationError: value does not match the schema
    """
    try:
        if isinstance(value, schema):
            validated = value
        elif isinstance(value, BaseModel):
            validated = schema.model_validate(value.model_dump())
        elif isinstance(value, (str, bytes)):
            validated = schema.model_validate_json(value)
        else:
            validated = schema.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {what} for {schema.__name__}: {e.error_count()} error(s)",
            code=code,
            status=status,
            details={"errors": _summarize(e)},
        ) from e
    return validated.model_dump(mode="json")


def validate_input(schema: type[BaseModel] | None, value: Any) -> Any:
    """Validate call arguments or deck input; failures are 400 invalid_input."""
    if schema is None:
        return to_jsonable(value)
    return validate_value(schema, value, what="input", code="invalid_input", status=400)


def coerce_root_output(value: Any) -> str:
    """Best-effort string coercion for a root deck without an output schema."""
    if isinstance(value, str):
        return value
    return json.dumps(to_jsonable(value), ensure_ascii=False)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


__all__ = ["validate_value", "validate_input", "coerce_root_output", "to_jsonable"]
