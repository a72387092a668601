"""
loader.py — Raw row decoding for uploaded NCM spreadsheets

Supports: .csv .xlsx .xls

Public API:
    result = load_rows(file_bytes, "planilha.xlsx")
    rows   = result["rows"]

Result dict keys:
    rows              — list of raw rows (lists), blank cells as None
    sheet_name        — first sheet name (file stem for CSV)
    sheet_names       — every sheet name in the workbook; [sheet_name] for CSV
    detected_format   — "csv", "xlsx" or "xls"
    detected_encoding — encoding name for CSV; None for workbooks
    delimiter         — delimiter char for CSV; None otherwise
    warnings          — list of warning strings
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from pathlib import Path
from typing import Any

import chardet
import pandas as pd

from ncm_dashboard.errors import ParseError
from ncm_dashboard.log import get_logger

TEXT_FORMATS  = {".csv"}
EXCEL_FORMATS = {".xlsx", ".xls"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS

UNSUPPORTED_FORMAT_MESSAGE = "Por favor, selecione um arquivo Excel (.xls, .xlsx) ou CSV"

logger = get_logger("loader")


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> tuple[str, float]:
    result = chardet.detect(raw)
    detected = result.get("encoding") or "utf-8"
    confidence = round(result.get("confidence") or 0.0, 2)
    return detected, confidence


def _read_text_safely(raw: bytes, preferred_encoding: str) -> tuple[str, int]:
    """
    Decode raw bytes line-by-line.

    Each line tries UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement. Returns the text and the number of
    lines that needed the lossy fallback.
    """
    decoded_lines: list[str] = []
    lossy = 0
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
            lossy += 1
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines), lossy


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_delimiter(text: str) -> str:
    """
    Infer the CSV delimiter from sample lines.

    csv.Sniffer goes first; when it gives up, each candidate is scored by
    column-count consistency and width. Brazilian exports use ";" a lot.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in [",", ";", "\t", "|"]:
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if not rows:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = (mode_width * 2.0) + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _load_text(raw: bytes, filename: str) -> dict:
    encoding, confidence = _detect_encoding(raw)
    text, lossy = _read_text_safely(raw, encoding)
    delimiter = _detect_delimiter(text)

    rows = [
        [_blank_to_none(cell) for cell in row]
        for row in csv.reader(io.StringIO(text), delimiter=delimiter)
    ]
    # csv.reader yields [] for blank lines; keep them so row positions survive.
    warnings: list[str] = []
    if lossy:
        warnings.append(f"{lossy} line(s) had undecodable bytes and were read with replacement characters.")

    sheet_name = Path(filename).stem or "CSV"
    return {
        "rows":              rows,
        "sheet_name":        sheet_name,
        "sheet_names":       [sheet_name],
        "detected_format":   "csv",
        "detected_encoding": encoding,
        "encoding_confidence": confidence,
        "delimiter":         delimiter,
        "warnings":          warnings,
    }


def _load_excel(raw: bytes, suffix: str) -> dict:
    engine = "xlrd" if suffix == ".xls" else "openpyxl"
    try:
        workbook = pd.ExcelFile(io.BytesIO(raw), engine=engine)
    except ImportError as exc:
        raise ParseError(
            f"Reading {suffix} files needs an optional dependency: {exc}. "
            "Install with: pip install 'ncm-dashboard[excel-legacy]'"
        ) from exc
    except Exception as exc:
        raise ParseError(f"Could not open {suffix} workbook: {exc}") from exc

    sheet_names = [str(name) for name in workbook.sheet_names]
    if not sheet_names:
        raise ParseError("A planilha está vazia")

    try:
        frame = workbook.parse(sheet_name=0, header=None, dtype=object)
    except Exception as exc:
        raise ParseError(f"Could not read sheet '{sheet_names[0]}': {exc}") from exc

    rows = [[_blank_to_none(cell) for cell in record] for record in frame.itertuples(index=False, name=None)]
    return {
        "rows":              rows,
        "sheet_name":        sheet_names[0],
        "sheet_names":       sheet_names,
        "detected_format":   suffix.lstrip("."),
        "detected_encoding": None,
        "delimiter":         None,
        "warnings":          [],
    }


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def is_supported_filename(filename: str) -> bool:
    return Path(filename).suffix.lower() in ALL_FORMATS


def load_rows(file_bytes: bytes, filename: str) -> dict:
    """
    Decode the first sheet of an uploaded file into raw rows.

    Raises ParseError for unsupported extensions and unreadable content.
    """
    suffix = Path(filename).suffix.lower()
    if suffix not in ALL_FORMATS:
        raise ParseError(UNSUPPORTED_FORMAT_MESSAGE)

    if suffix in TEXT_FORMATS:
        result = _load_text(file_bytes, filename)
    else:
        result = _load_excel(file_bytes, suffix)

    logger.info(
        "Loaded %s: format=%s sheet=%s rows=%d",
        filename,
        result["detected_format"],
        result["sheet_name"],
        len(result["rows"]),
    )
    return result


def load_path(path: Path | str) -> dict:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return load_rows(path.read_bytes(), path.name)
