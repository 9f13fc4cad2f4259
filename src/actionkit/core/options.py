"""Decoding helpers shared by connector option models."""

from __future__ import annotations

from typing import Annotated, Any, Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from .errors import ActionError, InvalidActionError, InvalidResourceError

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]

M = TypeVar("M", bound=BaseModel)


class OptionsModel(BaseModel):
    """Base for resource and action option shapes (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )


def _summarise(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def decode(
    model: Type[M],
    data: Mapping[str, Any] | None,
    *,
    error: Type[ActionError] = InvalidResourceError,
) -> M:
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise error(f"expected a mapping, got {type(data).__name__}")
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise error(_summarise(exc)) from exc


def decode_resource(model: Type[M], data: Mapping[str, Any] | None) -> M:
    return decode(model, data, error=InvalidResourceError)


def decode_action(model: Type[M], data: Mapping[str, Any] | None) -> M:
    return decode(model, data, error=InvalidActionError)


def pairs_to_dict(items: Any) -> dict[str, Any]:
    """Collapse ``[{key, value}, ...]`` into a mapping, skipping blank keys."""
    out: dict[str, Any] = {}
    if isinstance(items, Mapping):
        return {str(k): v for k, v in items.items() if k != ""}
    for item in items or []:
        if not isinstance(item, Mapping):
            continue
        key = item.get("key")
        if key in (None, ""):
            continue
        out[str(key)] = item.get("value")
    return out


__all__ = [
    "NonEmptyStr",
    "OptionsModel",
    "decode",
    "decode_resource",
    "decode_action",
    "pairs_to_dict",
]
