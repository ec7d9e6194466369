"""Row adapters that map spreadsheet and pasted exports onto the raw API shape.

Both adapters take rows that were already split into cells; reading workbook
files or HTML tables happens upstream of this module.
"""
from __future__ import annotations

import hashlib
import json
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .normalizer import (
    CHANNEL_FIELD,
    CHECKIN_FIELD,
    CHECKOUT_FIELD,
    CREATED_FIELD,
    ID_FIELD,
    STATUS_FIELD,
    parse_moment,
)

# Column positions of the property-management "reservations" list export.
PASTE_COLUMNS = {
    ID_FIELD: 1,
    CREATED_FIELD: 4,
    CHECKIN_FIELD: 6,
    CHECKOUT_FIELD: 7,
    "nights": 8,
    "balance": 9,
    STATUS_FIELD: 10,
    CHANNEL_FIELD: 11,
}

# Column positions of the spreadsheet export; it carries no reservation id or departure date.
SPREADSHEET_COLUMNS = {
    CHECKIN_FIELD: 23,
    "nights": 25,
    "balance": 27,
    CREATED_FIELD: 32,
    CHANNEL_FIELD: 33,
    STATUS_FIELD: 35,
}


def _cell(row: Sequence[Any], index: int) -> Any:
    if index >= len(row):
        return None
    value = row[index]
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _row_signature(payload: Dict[str, Any]) -> str:
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:16]


def paste_line_to_raw(line: str | Sequence[Any]) -> Optional[Dict[str, Any]]:
    """Map one pasted table line (tab separated, or pre-split cells) to a raw record."""
    cells: Sequence[Any] = line.split("\t") if isinstance(line, str) else line
    if len(cells) <= max(PASTE_COLUMNS.values()):
        return None
    raw = {key: _cell(cells, index) for key, index in PASTE_COLUMNS.items()}
    if raw[ID_FIELD] is None or raw[CREATED_FIELD] is None:
        return None
    return raw


def paste_text_to_raw(text: str) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        raw = paste_line_to_raw(line)
        if raw is not None:
            records.append(raw)
    return records


def spreadsheet_row_to_raw(row: Sequence[Any]) -> Optional[Dict[str, Any]]:
    """Map one spreadsheet data row to a raw record.

    The departure date is derived from arrival plus the nights column and the
    reservation id is a digest of the row's booking fields, so re-importing
    the same export upserts instead of duplicating.
    """
    if not row or len(row) <= max(SPREADSHEET_COLUMNS.values()) - 2:
        return None
    raw: Dict[str, Any] = {key: _cell(row, index) for key, index in SPREADSHEET_COLUMNS.items()}
    if raw[CREATED_FIELD] is None or raw[CHECKIN_FIELD] is None:
        return None
    try:
        nights = int(float(raw.get("nights") or 0))
    except (TypeError, ValueError):
        nights = 0
    try:
        raw[CHECKOUT_FIELD] = (parse_moment(raw[CHECKIN_FIELD]) + timedelta(days=max(nights, 0))).date()
    except (TypeError, ValueError, OverflowError):
        raw[CHECKOUT_FIELD] = None
    raw[ID_FIELD] = f"sheet-{_row_signature(raw)}"
    return raw


def spreadsheet_rows_to_raw(rows: Iterable[Sequence[Any]], *, skip_header: bool = True) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for index, row in enumerate(rows):
        if skip_header and index == 0:
            continue
        raw = spreadsheet_row_to_raw(row)
        if raw is not None:
            records.append(raw)
    return records
