"""
codec.py — Spreadsheet serial dates, percent ratios and pt-BR display text.

Serial dates count days from the 1899-12-30 epoch (25569 days before the Unix
epoch). Serials >= 60 carry a +1 shift for the fictitious 1900-02-29, and the
shift is applied on encode and removed on decode so both directions agree.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

import pandas as pd

from ncm_dashboard.fields import (
    LAST_UPDATE_FIELD,
    NCM_FIELD,
    NUMERIC_FIELDS,
    RATIO_FIELDS,
    TIMESTAMP_FIELDS,
    is_blank,
)

UNIX_EPOCH = date(1970, 1, 1)
UNIX_EPOCH_SERIAL = 25569
LEAP_BUG_THRESHOLD = 60
EMPTY_DISPLAY = "-"

_NUMBER_PREFIX = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")


# ── Serial dates ─────────────────────────────────────────────────────────────

def date_to_serial(value: date) -> int:
    if isinstance(value, datetime):
        value = value.date()
    days = (value - UNIX_EPOCH).days + UNIX_EPOCH_SERIAL
    if days >= LEAP_BUG_THRESHOLD:
        days += 1
    return days


def serial_from_parts(year: int, month0: int, day: int) -> int:
    """Encode a calendar date given a 0-based month, as form date pickers report it."""
    return date_to_serial(date(year, month0 + 1, day))


def serial_to_datetime(days: float) -> datetime:
    """Decode a serial into a naive local datetime pinned at noon."""
    days = float(days)
    if days >= LEAP_BUG_THRESHOLD:
        days -= 1
    calendar_day = UNIX_EPOCH + timedelta(days=math.floor(days) - UNIX_EPOCH_SERIAL)
    return datetime(calendar_day.year, calendar_day.month, calendar_day.day, 12)


def serial_to_date(days: float) -> date:
    return serial_to_datetime(days).date()


def today_serial() -> int:
    return date_to_serial(date.today())


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Turn a serial, date or store timestamp into a datetime; None for blanks."""
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 12)
    if hasattr(value, "to_datetime"):
        return value.to_datetime()
    number = parse_number(value)
    if number is None:
        return None
    return serial_to_datetime(number)


def date_input_to_serial(value: Any) -> Any:
    """Serial for a form or cell value; blank -> "" and unparseable text unchanged."""
    if is_blank(value):
        return ""
    if isinstance(value, pd.Timestamp):
        return date_to_serial(value.to_pydatetime())
    if isinstance(value, (date, datetime)):
        return date_to_serial(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) if float(value).is_integer() else value
    text = str(value).strip()
    for pattern in ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%d %H:%M:%S"):
        try:
            return date_to_serial(datetime.strptime(text, pattern))
        except ValueError:
            continue
    number = parse_number(text)
    if number is not None and number.is_integer():
        return int(number)
    return value


def serial_to_input(value: Any) -> str:
    """ISO date string for a date input widget, "" when the value is not a date."""
    moment = coerce_datetime(value)
    return moment.strftime("%Y-%m-%d") if moment else ""


# ── Numbers and percents ─────────────────────────────────────────────────────

def parse_number(value: Any) -> Optional[float]:
    """Parse a number the way users type it: "93", "93,5", "18%", "1.234,56"."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace("%", "").replace(" ", "")
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def leading_float(value: Any) -> float:
    """Leading numeric prefix of a value, 0 when there is none."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 0.0 if math.isnan(value) else float(value)
    match = _NUMBER_PREFIX.match(str(value if value is not None else ""))
    return float(match.group(0)) if match else 0.0


def percent_input_to_ratio(value: Any) -> Any:
    """Values above 1 are whole percents and get divided by 100; the rest are ratios."""
    if is_blank(value):
        return ""
    number = parse_number(value)
    if number is None:
        return value
    return number / 100 if number > 1 else number


def ratio_to_input_text(value: Any) -> str:
    """Editable text for a stored ratio, kept in ratio units: 0.0065 -> "0.0065"."""
    if is_blank(value):
        return ""
    number = parse_number(value)
    if number is None:
        return str(value)
    return format(number, ".10f").rstrip("0").rstrip(".") or "0"


def percent_text_to_ratio(text: Any) -> Any:
    if is_blank(text) or str(text).strip() == EMPTY_DISPLAY:
        return ""
    number = parse_number(text)
    return text if number is None else number / 100


def numeric_input(value: Any) -> Any:
    if is_blank(value):
        return ""
    number = parse_number(value)
    return value if number is None else number


def coerce_field_input(field: str, value: Any) -> Any:
    """Apply the storage coercion for one field; import, edit and create all use this."""
    if field == LAST_UPDATE_FIELD:
        return date_input_to_serial(value)
    if field in RATIO_FIELDS:
        return percent_input_to_ratio(value)
    if field in NUMERIC_FIELDS:
        return numeric_input(value)
    if field == NCM_FIELD and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)) if float(value).is_integer() else str(value)
    if value is None:
        return ""
    return value


# ── Display ──────────────────────────────────────────────────────────────────

def ratio_to_percent_text(value: Any) -> str:
    if is_blank(value):
        return EMPTY_DISPLAY
    number = parse_number(value)
    if number is None:
        return str(value)
    return f"{number * 100:.2f}".replace(".", ",") + "%"


def format_ncm(value: Any) -> str:
    digits = re.sub(r"\D", "", "" if value is None else str(value))
    if len(digits) < 8:
        return digits
    return f"{digits[:4]}.{digits[4:6]}.{digits[6:8]}"


def format_decimal(number: float, min_digits: int = 2, max_digits: int = 4) -> str:
    text = f"{number:,.{max_digits}f}"
    whole, fraction = text.split(".")
    fraction = fraction.rstrip("0")
    fraction = fraction + "0" * (min_digits - len(fraction))
    return whole.replace(",", ".") + "," + fraction


def format_date_br(value: Any) -> str:
    moment = coerce_datetime(value)
    return moment.strftime("%d/%m/%Y") if moment else EMPTY_DISPLAY


def format_datetime_br(value: Any) -> str:
    moment = coerce_datetime(value)
    return moment.strftime("%d/%m/%Y %H:%M:%S") if moment else ""


def format_cell(field: str, value: Any) -> str:
    if field == NCM_FIELD:
        return format_ncm(value) or EMPTY_DISPLAY
    if field == LAST_UPDATE_FIELD:
        return format_date_br(value)
    if field in TIMESTAMP_FIELDS:
        return format_datetime_br(value) or EMPTY_DISPLAY
    if field in RATIO_FIELDS:
        return ratio_to_percent_text(value)
    if field in NUMERIC_FIELDS:
        number = parse_number(value)
        if number is None:
            return EMPTY_DISPLAY if is_blank(value) else str(value)
        return EMPTY_DISPLAY if number == 0 else format_decimal(number)
    if is_blank(value):
        return EMPTY_DISPLAY
    return str(value)
