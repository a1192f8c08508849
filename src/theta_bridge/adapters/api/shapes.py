"""
Payload shape detection and conversion to canonical rows.

The V3 terminal answers the same logical query in several layouts depending on
endpoint and ``format``:

* canonical rows: ``{"header": {"format": [...]}, "response": [[...], ...]}``
* columnar: ``{"date": [...], "open": [...]}``, one equal-length list per column
* nested contract/data: ``{"response": [{"contract": {...}, "data": [{...}, ...]}]}``
* flat object list: ``{"response": [{...}, {...}]}``

Each converter returns a fresh canonical dictionary. Detection helpers never
raise on unexpected input; they simply report ``False``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

CanonicalRows = Dict[str, Any]


def canonical(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> CanonicalRows:
    return {"header": {"format": list(columns)}, "response": [list(row) for row in rows]}


def empty_rows() -> CanonicalRows:
    return canonical([], [])


def is_row_format(data: Any) -> bool:
    if not isinstance(data, Mapping):
        return False
    header = data.get("header")
    return isinstance(header, Mapping) and isinstance(header.get("format"), list) and isinstance(data.get("response"), list)


def is_columnar(data: Any) -> bool:
    """Object whose every value is a list of the same length, with no row-format keys."""

    if not isinstance(data, Mapping) or not data:
        return False
    if "header" in data or "response" in data:
        return False
    columns = list(data.values())
    if not all(isinstance(column, list) for column in columns):
        return False
    return len({len(column) for column in columns}) == 1


def columnar_to_rows(data: Mapping[str, Sequence[Any]]) -> CanonicalRows:
    """Pivot columns into rows. Zero-length columns give :func:`empty_rows`, with no header columns."""

    columns = list(data.keys())
    if not columns:
        return empty_rows()
    row_count = len(data[columns[0]])
    if row_count == 0:
        return empty_rows()
    return canonical(columns, ([data[column][index] for column in columns] for index in range(row_count)))


def _response_list(data: Any) -> Optional[List[Any]]:
    if not isinstance(data, Mapping):
        return None
    response = data.get("response")
    return response if isinstance(response, list) else None


def is_nested_contract_list(data: Any) -> bool:
    """``response`` is a non-empty list whose first entry carries a ``data`` list."""

    entries = _response_list(data)
    if not entries:
        return False
    first = entries[0]
    return isinstance(first, Mapping) and isinstance(first.get("data"), list)


def iter_nested_rows(data: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
    for entry in data.get("response") or []:
        if not isinstance(entry, Mapping):
            continue
        for row in entry.get("data") or []:
            if isinstance(row, Mapping):
                yield row


def nested_to_rows(data: Mapping[str, Any]) -> CanonicalRows:
    """Concatenate every nested ``data`` row; columns come from the first row object seen."""

    columns: List[str] = []
    rows: List[List[Any]] = []
    for row in iter_nested_rows(data):
        if not columns:
            columns = list(row.keys())
        rows.append([row.get(column) for column in columns])
    return canonical(columns, rows)


def is_object_list(data: Any, *, allow_empty: bool = False, require_key: Optional[str] = None) -> bool:
    entries = _response_list(data)
    if entries is None:
        return False
    if not entries:
        return allow_empty
    first = entries[0]
    if not isinstance(first, Mapping):
        return False
    return require_key is None or require_key in first


def object_list_to_rows(data: Mapping[str, Any]) -> CanonicalRows:
    entries = [entry for entry in data.get("response") or [] if isinstance(entry, Mapping)]
    if not entries:
        return empty_rows()
    columns = list(entries[0].keys())
    return canonical(columns, ([entry.get(column) for column in columns] for entry in entries))


def compact_date(value: Any) -> str:
    """``2024-01-05`` -> ``20240105``; purely textual."""

    return str(value).replace("-", "")


def split_timestamp(value: Any) -> Tuple[Optional[int], Optional[int]]:
    """
    Split ``YYYY-MM-DDTHH:MM:SS[.fff]`` into ``(YYYYMMDD, ms_of_day)``.

    The split is textual so an offset-less exchange timestamp is never
    reinterpreted in another timezone. A missing time part yields ``0``.
    A missing or unparseable timestamp yields ``(None, None)`` so one bad
    row never fails the whole response.
    """

    if value is None:
        return None, None
    text = str(value).strip()
    separator = "T" if "T" in text else " "
    date_part, _, time_part = text.partition(separator)
    try:
        date_int = int(compact_date(date_part))
        if not time_part:
            return date_int, 0
        pieces = re.split(r"[Z+-]", time_part, maxsplit=1)[0].split(":")
        hours = int(pieces[0])
        minutes = int(pieces[1]) if len(pieces) > 1 else 0
        seconds_text = pieces[2] if len(pieces) > 2 else "0"
        whole, _, fraction = seconds_text.partition(".")
        millis = int((fraction + "000")[:3]) if fraction else 0
        ms_of_day = ((hours * 60 + minutes) * 60 + int(whole)) * 1000 + millis
    except ValueError:
        return None, None
    return date_int, ms_of_day
