"""Spreadsheet export of dashboard records."""

from __future__ import annotations

import io
from datetime import date
from typing import Any, Iterable, Optional

import pandas as pd

from ncm_dashboard.codec import format_datetime_br
from ncm_dashboard.fields import EXPECTED_FIELDS, TIMESTAMP_FIELDS

EXPORT_SHEET_NAME = "Dados"


def export_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"dados_exportados_{day.isoformat()}.xlsx"


def _export_row(record: dict[str, Any]) -> dict[str, Any]:
    row = dict(record)
    for key in TIMESTAMP_FIELDS:
        if key in row:
            row[key] = format_datetime_br(row[key])
    return row


def export_records(records: Iterable[dict[str, Any]]) -> bytes:
    rows = [_export_row(record) for record in records]
    frame = pd.DataFrame(rows)
    if frame.empty:
        frame = pd.DataFrame(columns=EXPECTED_FIELDS)
    else:
        leading = [field for field in EXPECTED_FIELDS if field in frame.columns]
        frame = frame[leading + [column for column in frame.columns if column not in leading]]

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=EXPORT_SHEET_NAME)
    return buffer.getvalue()
