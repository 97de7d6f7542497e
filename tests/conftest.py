"""
Pytest configuration and fixtures for the import engine tests.

Database tests run against in-memory SQLite with every engine table created
up front, so no external database is needed.
"""

import pytest
from sqlalchemy import create_engine

from intake.db.models import create_all_tables


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with all engine tables."""
    engine = create_engine("sqlite:///:memory:")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def bork_rows():
    """A point-of-sale export with a report preamble above the header."""
    return [
        ["Omzet per product", None, None, None, None, None],
        ["Gegenereerd op 01-05-2024 08:00", None, None, None, None, None],
        [None, None, None, None, None, None],
        ["Datum", "Product", "Categorie", "Aantal", "Prijs", "Omzet"],
        ["15/03/2024", "Cola", "Dranken", "2", "2,50", "5,00"],
        ["15/03/2024", "Tosti", "Keuken", "1", "4,75", "4,75"],
        [None, None, None, None, None, None],
        ["16/03/2024", "Bier", "Dranken", "3", "3,20", "9,60"],
    ]


@pytest.fixture
def pnl_rows():
    """A ledger export whose January line for account 4000 is split in two."""
    return [
        ["Jaar", "Maand", "Grootboekrekening", "Categorie", "Subcategorie", "Bedrag"],
        [2024, "jan", "4000", "Omzet", "Keuken", "1.000,00"],
        [2024, "jan", "4000", "Omzet", "Keuken", "250,50"],
        [2024, "feb", "4000", "Omzet", "Keuken", "100"],
    ]
