"""Serialization of stored rows for export."""

from __future__ import annotations

import csv
import io
import json
from typing import Any

from ..errors import PersistenceQueryFailure

FORMATS = ("json", "csv")


def to_json(rows_by_kind: dict[str, list[dict[str, Any]]]) -> str:
    """One object with an array of typed rows per kind."""
    return json.dumps(rows_by_kind, indent=2)


def to_csv(rows_by_kind: dict[str, list[dict[str, Any]]]) -> str:
    """Flatten every kind into one table.

    The first column is ``kind``; the remaining columns are the union of
    all row keys in first-seen order.  Cells a kind does not have are empty.
    """
    columns: list[str] = ["kind"]
    for rows in rows_by_kind.values():
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, restval="", lineterminator="\n")
    writer.writeheader()
    for kind, rows in rows_by_kind.items():
        for row in rows:
            writer.writerow({"kind": kind, **row})
    return buf.getvalue()


def render(fmt: str, rows_by_kind: dict[str, list[dict[str, Any]]]) -> str:
    fmt = fmt.lower()
    if fmt == "json":
        return to_json(rows_by_kind)
    if fmt == "csv":
        return to_csv(rows_by_kind)
    raise PersistenceQueryFailure(f"Unsupported export format {fmt!r} (expected one of {FORMATS})")
