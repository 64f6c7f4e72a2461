"""Turn pydantic validation into the application's :class:`ValidationError`.

Pydantic already evaluates every field before failing, so a single
``model_validate`` call yields the complete list of violations.
"""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

import pydantic
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from repairflow.core.exceptions import FieldViolation, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _field_path(loc: tuple[Any, ...]) -> str:
    parts = [to_camel(p) if isinstance(p, str) and "_" in p else str(p) for p in loc]
    return ".".join(parts) or "request"


def violations_from(exc: pydantic.ValidationError) -> list[FieldViolation]:
    violations: list[FieldViolation] = []
    for err in exc.errors(include_url=False):
        message = err.get("msg", "Invalid value")
        # Strip pydantic's "Value error, " prefix from custom validator messages
        if err.get("type") == "value_error" and message.startswith("Value error, "):
            message = message[len("Value error, "):]
        violations.append(FieldViolation(_field_path(tuple(err.get("loc", ()))), message))
    return violations


def validate_command(model: type[ModelT], data: Mapping[str, Any] | BaseModel, **context: Any) -> ModelT:
    """Validate *data* against *model*; raise with every violation at once.

    Keyword arguments are exposed to validators through ``info.context``
    (e.g. ``now`` for temporal rules, ``tier`` for tier-bounded limits).
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=False)
    if not isinstance(data, Mapping):
        raise ValidationError.single("request", "Request body must be an object")
    try:
        return model.model_validate(dict(data), context=context)
    except pydantic.ValidationError as exc:
        raise ValidationError(violations_from(exc)) from exc
