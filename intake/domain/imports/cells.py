"""
Tagged representation of raw spreadsheet cells.

Spreadsheet readers hand back an untyped mix of strings, ints, floats,
timestamps, times and NaN markers. Parsers never inspect those Python types
directly: every value is first classified into a ``Cell`` whose ``kind`` tells
the parser which branch to take.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
import math
import numbers
from typing import Any, Optional

import pandas as pd


class CellKind(str, Enum):
    EMPTY = "empty"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TIME = "time"


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    def as_text(self) -> Optional[str]:
        """Render the cell as trimmed text, or None when empty."""
        if self.kind is CellKind.EMPTY:
            return None
        if self.kind is CellKind.NUMBER and float(self.value).is_integer():
            return str(int(self.value))
        if self.kind is CellKind.DATE:
            return self.value.isoformat()
        text = str(self.value).strip()
        return text or None


EMPTY_CELL = Cell(CellKind.EMPTY)


def to_cell(value: Any) -> Cell:
    """Classify a raw reader value into a tagged ``Cell``."""
    if isinstance(value, Cell):
        return value
    if value is None:
        return EMPTY_CELL
    if isinstance(value, bool):
        return Cell(CellKind.TEXT, str(value))
    if value is pd.NaT:
        return EMPTY_CELL
    if isinstance(value, pd.Timestamp):
        return Cell(CellKind.DATE, value.date())
    if isinstance(value, datetime):
        return Cell(CellKind.DATE, value.date())
    if isinstance(value, date):
        return Cell(CellKind.DATE, value)
    if isinstance(value, (time, timedelta, pd.Timedelta)):
        return Cell(CellKind.TIME, value)
    if isinstance(value, numbers.Real):
        as_float = float(value)
        if math.isnan(as_float) or math.isinf(as_float):
            return EMPTY_CELL
        return Cell(CellKind.NUMBER, as_float)
    text = str(value)
    if not text.strip():
        return EMPTY_CELL
    return Cell(CellKind.TEXT, text)


def is_populated(value: Any) -> bool:
    return not to_cell(value).is_empty


def cell_text(value: Any) -> Optional[str]:
    return to_cell(value).as_text()
