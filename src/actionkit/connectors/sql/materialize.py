"""Turn SQL cursors into lists of row mappings."""

from __future__ import annotations

import json
import uuid
from collections import Counter
from typing import Any, Iterable, List

from ...core.results import Row

SAMPLE_ROWS = 100


def convert_value(value: Any) -> Any:
    """Decode byte strings as UTF-8 text and render driver UUID objects in canonical form.

    pg8000 and pyodbc hand UUID columns back as ``uuid.UUID``; raw bytes are
    always treated as text, whatever their length.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def column_names(cursor: Any) -> List[str]:
    keys = getattr(cursor, "keys", None)
    if callable(keys):
        return [str(k) for k in keys()]
    description = getattr(cursor, "description", None) or []
    return [str(d[0]) for d in description]


def dedupe_columns(names: Iterable[str]) -> List[str]:
    """Suffix every occurrence of a repeated column name with _0, _1, ..."""
    names = list(names)
    counts = Counter(names)
    seen: Counter = Counter()
    out = []
    for name in names:
        if counts[name] > 1:
            out.append(f"{name}_{seen[name]}")
            seen[name] += 1
        else:
            out.append(name)
    return out


def rows_to_mappings(cursor: Any) -> List[Row]:
    """Materialise every row of ``cursor`` as ``{column: value}`` in cursor order.

    Accepts DB-API cursors (``description``) and SQLAlchemy results (``keys()``).
    """
    columns = dedupe_columns(column_names(cursor))
    rows: List[Row] = []
    for raw in cursor:
        rows.append({col: convert_value(val) for col, val in zip(columns, tuple(raw))})
    return rows


def estimate_size(rows: List[Row]) -> int:
    """Approximate serialised size from a sample of the first rows."""
    if not rows:
        return 0
    sample = rows[:SAMPLE_ROWS]
    sample_size = len(json.dumps(sample, default=str))
    return int(sample_size / len(sample) * len(rows))


__all__ = ["convert_value", "column_names", "dedupe_columns", "rows_to_mappings", "estimate_size", "SAMPLE_ROWS"]
