"""``{{ name }}`` placeholder rendering against an action context."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


def stringify(value: Any, *, json_escape: bool = False) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, str):
        if json_escape:
            return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return value
    if value is None:
        return "null"
    return json.dumps(value, separators=(",", ":"), default=str)


def placeholder_name(raw: str) -> str:
    return re.sub(r"\s+", "", raw)


def render_template(text: str, context: Mapping[str, Any] | None, *, json_escape: bool = False) -> str:
    """Substitute known placeholders; unknown ones are left as written."""
    if not text or not context:
        return text

    def _sub(match: re.Match) -> str:
        name = placeholder_name(match.group(1))
        if name not in context:
            return match.group(0)
        return stringify(context[name], json_escape=json_escape)

    return _PLACEHOLDER.sub(_sub, text)


def exact_placeholder(text: Any) -> str | None:
    """Return the variable name when ``text`` is exactly one placeholder."""
    if not isinstance(text, str):
        return None
    match = _PLACEHOLDER.fullmatch(text.strip())
    if not match:
        return None
    return placeholder_name(match.group(1))


def to_bind_params(text: str, context: Mapping[str, Any] | None) -> tuple[str, dict[str, Any]]:
    """Rewrite placeholders into ``:pN`` named binds and collect their values."""
    params: dict[str, Any] = {}
    context = context or {}

    def _sub(match: re.Match) -> str:
        name = placeholder_name(match.group(1))
        if name not in context:
            return match.group(0)
        key = f"p{len(params)}"
        params[key] = context[name]
        return f":{key}"

    return _PLACEHOLDER.sub(_sub, text), params


__all__ = ["render_template", "stringify", "exact_placeholder", "to_bind_params", "placeholder_name"]
