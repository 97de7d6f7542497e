import argparse

import pytest
from sqlalchemy import create_engine, select

from intake.console import _parse_metadata, build_parser, main
from intake.db.models import BorkSalesData
from intake.db.session import set_engine

SALES_CSV = "Omzet per product\nDatum;Product;Aantal;Omzet\n15/03/2024;Cola;2;12,50\n16/03/2024;Fanta;1;8\n"


@pytest.fixture(autouse=True)
def reset_engine():
    yield
    set_engine(None)


@pytest.fixture
def sales_csv(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text(SALES_CSV, encoding="utf-8")
    return path


def test_analyze_detects_profile(sales_csv, capsys):
    assert main(["analyze", str(sales_csv)]) == 0

    out = capsys.readouterr().out
    assert "bork_sales" in out
    assert "Datum" in out


def test_import_writes_rows(sales_csv, tmp_path):
    url = f"sqlite:///{tmp_path / 'intake.db'}"

    exit_code = main(
        [
            "--database-url",
            url,
            "import",
            str(sales_csv),
            "--profile",
            "bork_sales",
            "--location-id",
            "loc-1",
            "--run-id",
            "cli-run",
            "--create-tables",
        ]
    )

    assert exit_code == 0
    engine = create_engine(url)
    with engine.connect() as conn:
        stored = conn.execute(select(BorkSalesData.__table__.c.product_name)).scalars().all()
    engine.dispose()
    assert stored == ["Cola", "Fanta"]


def test_unrecognizable_file_exits_with_error(tmp_path, capsys):
    path = tmp_path / "junk.csv"
    path.write_text("Xq17,Zv22,Wk35,Jp48\n1,2,3,4\n", encoding="utf-8")

    assert main(["analyze", str(path)]) == 1
    assert "Import failed" in capsys.readouterr().out


def test_parse_metadata():
    assert _parse_metadata(["date=2024-05-01", " location_name = Bar Bea "]) == {
        "date": "2024-05-01",
        "location_name": "Bar Bea",
    }
    assert _parse_metadata([]) == {}


def test_parse_metadata_rejects_malformed_pairs():
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_metadata(["2024-05-01"])


def test_profile_choices_are_restricted():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["import", "x.csv", "--profile", "shopify"])
