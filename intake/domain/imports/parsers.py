"""
Value parsers that coerce a raw cell into a typed value.

Every parser is total: it never raises and returns either a typed value or
``None``. Parsers branch on the cell's ``CellKind`` tag instead of relying on
implicit coercion of whatever the spreadsheet reader returned.
"""
from __future__ import annotations

from datetime import date, time, timedelta
import logging
import re
from typing import Any, Dict, Optional

import pandas as pd

from intake.core.config import settings
from intake.domain.imports.cells import CellKind, to_cell

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_failure_stats: dict = {}

EXCEL_EPOCH = date(1899, 12, 30)
# Serials outside this window are almost certainly plain amounts, not dates.
MIN_DATE_SERIAL = 1
MAX_DATE_SERIAL = 2958465  # 9999-12-31

_DAY_FIRST_PATTERN = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_ISO_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$")
_CLOCK_PATTERN = re.compile(r"^(-)?(\d{1,3}):([0-5]?\d)(?::([0-5]\d))?$")
_EUROPEAN_PATTERN = re.compile(r"^-?\d{1,3}(\.\d{3})+,\d+$")
_COMMA_DECIMAL_PATTERN = re.compile(r"^-?\d+,\d+$")
_CURRENCY_PATTERN = re.compile(r"(€|\$|£|eur\b|euro\b|usd\b)", re.IGNORECASE)

MONTHS_NL: Dict[str, int] = {
    "januari": 1, "jan": 1,
    "februari": 2, "feb": 2,
    "maart": 3, "mrt": 3, "mar": 3,
    "april": 4, "apr": 4,
    "mei": 5,
    "juni": 6, "jun": 6,
    "juli": 7, "jul": 7,
    "augustus": 8, "aug": 8,
    "september": 9, "sept": 9, "sep": 9,
    "oktober": 10, "okt": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

MONTHS_EN = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

# Dutch month words rewritten to English before free-form date parsing.
_NL_TO_EN_MONTH = {
    "januari": "january", "februari": "february", "maart": "march", "mrt": "mar",
    "mei": "may", "juni": "june", "juli": "july", "augustus": "august",
    "oktober": "october", "okt": "oct",
}
_NL_WEEKDAYS = re.compile(
    r"\b(maandag|dinsdag|woensdag|donderdag|vrijdag|zaterdag|zondag|ma|di|wo|do|vr|za|zo)\b\.?,?",
    re.IGNORECASE,
)


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.debug("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse messages after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _from_serial(serial: float) -> Optional[date]:
    if not (MIN_DATE_SERIAL <= serial <= MAX_DATE_SERIAL):
        return None
    return EXCEL_EPOCH + timedelta(days=int(serial))


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _translate_dutch_date(text: str) -> str:
    translated = _NL_WEEKDAYS.sub(" ", text.lower())
    for dutch, english in _NL_TO_EN_MONTH.items():
        translated = re.sub(rf"\b{dutch}\b", english, translated)
    return " ".join(translated.split())


def parse_date(value: Any, *, log_context: Optional[str] = None) -> Optional[date]:
    """
    Parse a spreadsheet value into a ``datetime.date``.

    Supports:
    - native date/datetime cells
    - spreadsheet date serials (days since 1899-12-30)
    - DD/MM/YYYY (also with '-' or '.' separators)
    - YYYY-MM-DD, optionally followed by a time component
    - free-form text via pandas, with Dutch month and weekday names understood

    Structurally valid but impossible dates such as 31/02/2024 return None
    without falling through to free-form parsing.
    """
    cell = to_cell(value)
    try:
        if cell.kind is CellKind.DATE:
            return cell.value
        if cell.kind is CellKind.NUMBER:
            return _from_serial(cell.value)
        if cell.kind is not CellKind.TEXT:
            return None

        text = cell.value.strip()

        match = _DAY_FIRST_PATTERN.match(text)
        if match:
            day, month, year = (int(part) for part in match.groups())
            return _safe_date(year, month, day)

        match = _ISO_PATTERN.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return _safe_date(year, month, day)

        if re.fullmatch(r"\d+(\.\d+)?", text):
            return _from_serial(float(text))

        parsed = pd.to_datetime(
            _translate_dutch_date(text),
            dayfirst=settings.date_default_dayfirst,
            errors="raise",
        )
        if parsed is pd.NaT:
            return None
        return parsed.date()
    except Exception as exc:
        _record_parse_failure(cell.value, log_context, exc)
        return None


def _strip_number_text(text: str) -> Optional[str]:
    cleaned = _CURRENCY_PATTERN.sub("", text)
    cleaned = re.sub(r"\s+", "", cleaned).replace("%", "")
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.endswith("-") and cleaned[:-1].replace(",", "").replace(".", "").isdigit():
        negative = True
        cleaned = cleaned[:-1]
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if not cleaned:
        return None
    if negative and not cleaned.startswith("-"):
        cleaned = f"-{cleaned}"
    return cleaned


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a locale-ambiguous number.

    European formatting is assumed when a comma acts as the decimal mark after
    dot thousands separators (``1.234,56``) or when a single comma-decimal
    appears on its own (``12,5``). Everything else treats commas as thousands
    separators (``1,234.56``). An input such as ``1,234`` therefore parses as
    1.234; downstream consumers rely on that bias.
    """
    cell = to_cell(value)
    if cell.kind is CellKind.NUMBER:
        return cell.value
    if cell.kind is not CellKind.TEXT:
        return None

    cleaned = _strip_number_text(cell.value)
    if cleaned is None:
        return None

    if _EUROPEAN_PATTERN.match(cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif _COMMA_DECIMAL_PATTERN.match(cleaned):
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        return float(cleaned)
    except ValueError:
        return None


def _time_to_hours(value: Any) -> Optional[float]:
    if isinstance(value, timedelta):
        return value.total_seconds() / 3600
    if isinstance(value, time):
        return value.hour + value.minute / 60 + value.second / 3600
    return None


def parse_hours(value: Any) -> Optional[float]:
    """Parse a duration in hours from ``H:MM`` / ``H:MM:SS`` clock notation or a plain number."""
    cell = to_cell(value)
    if cell.kind is CellKind.TIME:
        return _time_to_hours(cell.value)
    if cell.kind is CellKind.TEXT:
        match = _CLOCK_PATTERN.match(cell.value.strip())
        if match:
            sign, hours, minutes, seconds = match.groups()
            total = int(hours) + int(minutes) / 60 + int(seconds or 0) / 3600
            return -total if sign else total
    return parse_number(cell)


def parse_month(value: Any) -> Optional[int]:
    """Parse a month given as a Dutch or English name, an abbreviation, or 1-12."""
    cell = to_cell(value)
    if cell.kind is CellKind.DATE:
        return cell.value.month
    if cell.kind is CellKind.NUMBER:
        number = cell.value
        if float(number).is_integer() and 1 <= int(number) <= 12:
            return int(number)
        return None
    if cell.kind is not CellKind.TEXT:
        return None

    text = cell.value.strip().lower().rstrip(".")
    if not text:
        return None
    if text.isdigit():
        month = int(text)
        return month if 1 <= month <= 12 else None
    if text in MONTHS_NL:
        return MONTHS_NL[text]
    if len(text) >= 3:
        for index, name in enumerate(MONTHS_EN, start=1):
            if name.startswith(text):
                return index
    return None


def parse_year(value: Any) -> Optional[int]:
    number = parse_number(value)
    if number is None or not float(number).is_integer():
        return None
    year = int(number)
    if settings.year_min <= year <= settings.year_max:
        return year
    return None


def parse_text(value: Any) -> Optional[str]:
    return to_cell(value).as_text()


def make_json_safe(value: Any) -> Any:
    """Convert raw or parsed values into JSON friendly primitives."""
    cell = to_cell(value)
    if cell.kind is CellKind.EMPTY:
        return None
    if cell.kind is CellKind.NUMBER:
        return int(cell.value) if float(cell.value).is_integer() else cell.value
    if cell.kind is CellKind.DATE:
        return cell.value.isoformat()
    if cell.kind is CellKind.TIME:
        return str(cell.value)
    return cell.as_text()
