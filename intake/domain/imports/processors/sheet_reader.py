import csv
import io
from io import StringIO
import logging
import os
from typing import Any, BinaryIO, List, Optional, Tuple, Union

import pandas as pd

from intake.domain.imports.errors import SheetReadError

logger = logging.getLogger(__name__)

SheetSource = Union[bytes, str, os.PathLike, BinaryIO]

_XLSX_MAGIC = b"PK"
_XLS_MAGIC = b"\xd0\xcf\x11\xe0"
_CSV_DELIMITERS = ",;\t|"


def _load_bytes(source: SheetSource, file_name: Optional[str]) -> Tuple[bytes, Optional[str]]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), file_name
    if isinstance(source, (str, os.PathLike)):
        path = os.fspath(source)
        try:
            with open(path, "rb") as handle:
                return handle.read(), file_name or os.path.basename(path)
        except OSError as exc:
            raise SheetReadError(f"Unable to open '{path}': {exc}") from exc
    content = source.read()
    if isinstance(content, str):
        content = content.encode("utf-8")
    return content, file_name or getattr(source, "name", None)


def detect_file_type(content: bytes, file_name: Optional[str] = None) -> str:
    """Return 'excel' or 'csv', preferring the file extension when there is one."""
    if file_name:
        extension = os.path.splitext(file_name)[1].lower()
        if extension in (".xlsx", ".xlsm", ".xls"):
            return "excel"
        if extension in (".csv", ".txt"):
            return "csv"
    if content.startswith(_XLSX_MAGIC) or content.startswith(_XLS_MAGIC):
        return "excel"
    return "csv"


def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content.decode("latin-1")


def _read_csv_rows(content: bytes) -> List[List[Any]]:
    """
    Read CSV rows as-is, without assuming a header or a fixed column count.

    Provider exports put short title lines above the table, so rows are read
    with ``csv.reader`` rather than a frame that expects equal-width lines.
    """
    text_content = _decode(content)
    sample = text_content[:8192]
    try:
        delimiter = csv.Sniffer().sniff(sample, delimiters=_CSV_DELIMITERS).delimiter
    except csv.Error:
        # Title lines above the table defeat the sniffer
        delimiter = max(_CSV_DELIMITERS, key=sample.count)
    rows = [list(row) for row in csv.reader(StringIO(text_content), delimiter=delimiter)]
    logger.info(f"Read {len(rows)} raw CSV rows (delimiter {delimiter!r})")
    return rows


def _read_excel_rows(content: bytes) -> List[List[Any]]:
    try:
        df_raw = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, engine="openpyxl")
    except Exception:
        try:
            df_raw = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None)
        except Exception as exc:
            raise SheetReadError(f"Unable to read workbook: {exc}") from exc

    df_raw = df_raw.astype(object).where(df_raw.notna(), None)
    rows = df_raw.values.tolist()
    logger.info(f"Read {len(rows)} raw rows from the first worksheet")
    return rows


def read_first_sheet(source: SheetSource, file_name: Optional[str] = None) -> List[List[Any]]:
    """
    Return the first sheet of a workbook (or the CSV table) as a row matrix.

    Args:
        source: File content as bytes, a filesystem path, or a binary file object
        file_name: Original file name, used to pick the reader

    Returns:
        List of rows, each a list of raw cell values (None for empty cells)
    """
    content, file_name = _load_bytes(source, file_name)
    if not content:
        raise SheetReadError("The file is empty")

    file_type = detect_file_type(content, file_name)
    if file_type == "excel":
        return _read_excel_rows(content)
    try:
        return _read_csv_rows(content)
    except csv.Error as exc:
        raise SheetReadError(f"Unable to read CSV: {exc}") from exc
