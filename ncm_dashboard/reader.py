"""Turn an uploaded spreadsheet into normalized NCM records."""

from __future__ import annotations

from typing import Any, Optional

from ncm_dashboard.codec import coerce_field_input
from ncm_dashboard.errors import ParseError
from ncm_dashboard.fields import EXPECTED_FIELDS, collapse_whitespace, is_blank, to_logical_name
from ncm_dashboard.loader import load_rows
from ncm_dashboard.log import get_logger

HEADER_SCAN_ROWS = 3
EMPTY_SHEET_MESSAGE = "A planilha está vazia"

logger = get_logger("reader")

_HEADER_MARKERS = [field.lower() for field in EXPECTED_FIELDS] + ["ncm", "cest"]


def _row_is_empty(row: list[Any]) -> bool:
    return all(is_blank(cell) for cell in row)


def _looks_like_header(row: list[Any]) -> bool:
    cells = [collapse_whitespace(cell).lower() for cell in row if not is_blank(cell)]
    joined = " ".join(cells)
    return any(marker in joined or marker in cells for marker in _HEADER_MARKERS)


def detect_header_row(rows: list[list[Any]]) -> int:
    """Index of the header row among the first few rows; 0 when none qualifies."""
    for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        if not row or _row_is_empty(row):
            continue
        if _looks_like_header(row):
            return index
    return 0


def _build_record(row: list[Any], logical_headers: list[str]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for position, field in enumerate(logical_headers):
        if not field:
            continue
        value = row[position] if position < len(row) else None
        record[field] = coerce_field_input(field, value)
    for field in EXPECTED_FIELDS:
        record.setdefault(field, "")
    return record


def parse_rows(raw_rows: list[list[Any]], sheet_name: Optional[str] = None) -> dict:
    if not raw_rows:
        raise ParseError(EMPTY_SHEET_MESSAGE)

    header_index = detect_header_row(raw_rows)
    raw_headers = [
        "" if cell is None else str(cell)
        for cell in raw_rows[header_index]
    ]
    logical_headers = [to_logical_name(cell) for cell in raw_headers]
    present = set(logical_headers)
    missing_fields = [field for field in EXPECTED_FIELDS if field not in present]

    rows: list[dict[str, Any]] = []
    dropped = 0
    for raw_row in raw_rows[header_index + 1:]:
        record = _build_record(raw_row, logical_headers)
        if all(is_blank(value) for value in record.values()):
            dropped += 1
            continue
        rows.append(record)

    logger.info(
        "Parsed sheet %s: header_row=%d rows=%d blank_dropped=%d missing=%s",
        sheet_name,
        header_index,
        len(rows),
        dropped,
        ",".join(missing_fields) or "none",
    )
    return {
        "headers": [header for header in logical_headers if header],
        "raw_headers": raw_headers,
        "rows": rows,
        "sheet_name": sheet_name,
        "missing_fields": missing_fields,
        "header_row_index": header_index,
    }


def parse(file_bytes: bytes, filename: str) -> dict:
    """
    Parse an uploaded .xls/.xlsx/.csv file.

    Returns a dict with headers, raw_headers, rows, sheet_name,
    missing_fields and header_row_index. Raises ParseError when the
    file is unsupported, unreadable or has no rows.
    """
    loaded = load_rows(file_bytes, filename)
    return parse_rows(loaded["rows"], loaded["sheet_name"])
