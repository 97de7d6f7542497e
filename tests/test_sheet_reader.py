import io

import pandas as pd
import pytest

from intake.domain.imports.errors import SheetReadError
from intake.domain.imports.processors.sheet_reader import detect_file_type, read_first_sheet


def _workbook_bytes(*sheets):
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, rows in sheets:
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
    return buffer.getvalue()


def test_reads_only_the_first_worksheet():
    content = _workbook_bytes(
        ("Export", [["Omzet per product", None], ["Datum", "Omzet"], ["15/03/2024", 12.5]]),
        ("Totals", [["Totaal", 999]]),
    )

    rows = read_first_sheet(content, "export.xlsx")

    assert rows == [["Omzet per product", None], ["Datum", "Omzet"], ["15/03/2024", 12.5]]


def test_excel_is_detected_without_a_file_name():
    content = _workbook_bytes(("Export", [["Datum", "Omzet"]]))
    assert detect_file_type(content) == "excel"
    assert read_first_sheet(io.BytesIO(content)) == [["Datum", "Omzet"]]


def test_semicolon_csv_with_decimal_commas():
    content = b"Datum;Omzet;Product\n15/03/2024;12,50;Cola\n16/03/2024;8,00;Fanta\n"

    rows = read_first_sheet(content, "export.csv")

    assert rows == [
        ["Datum", "Omzet", "Product"],
        ["15/03/2024", "12,50", "Cola"],
        ["16/03/2024", "8,00", "Fanta"],
    ]


def test_csv_with_short_preamble_lines_keeps_every_row():
    content = b"Omzet per product\nDatum,Omzet,Product\n15/03/2024,5,Cola\n"

    rows = read_first_sheet(content, "export.csv")

    assert rows == [["Omzet per product"], ["Datum", "Omzet", "Product"], ["15/03/2024", "5", "Cola"]]


def test_csv_falls_back_to_windows_encoding():
    content = b"Datum;Omzet\n15/03/2024;\x805\n"
    rows = read_first_sheet(content, "export.csv")
    assert rows[1] == ["15/03/2024", "€5"]


def test_reads_from_a_path(tmp_path):
    path = tmp_path / "export.csv"
    path.write_text("Datum,Omzet,Product\n15/03/2024,5,Cola\n", encoding="utf-8")

    assert read_first_sheet(path)[0] == ["Datum", "Omzet", "Product"]
    assert read_first_sheet(str(path))[1] == ["15/03/2024", "5", "Cola"]


def test_missing_path_raises(tmp_path):
    with pytest.raises(SheetReadError):
        read_first_sheet(tmp_path / "missing.xlsx")


def test_empty_file_raises():
    with pytest.raises(SheetReadError):
        read_first_sheet(b"", "export.csv")


def test_corrupt_workbook_raises():
    with pytest.raises(SheetReadError):
        read_first_sheet(b"PK\x03\x04not really a workbook", "export.xlsx")


@pytest.mark.parametrize(
    "content, file_name, expected",
    [
        (b"a,b", "export.XLSX", "excel"),
        (b"a,b", "export.xls", "excel"),
        (b"PK\x03\x04", "export.csv", "csv"),
        (b"\xd0\xcf\x11\xe0rest", None, "excel"),
        (b"a;b", None, "csv"),
    ],
)
def test_detect_file_type(content, file_name, expected):
    assert detect_file_type(content, file_name) == expected
