import json
import logging

import pytest

from intake.core.config import Settings, settings
from intake.core.logging_config import configure_logging
from intake.domain.imports import synonyms
from intake.domain.imports.synonyms import FieldKind, load_synonym_table


@pytest.fixture
def fresh_synonyms():
    load_synonym_table.cache_clear()
    yield
    load_synonym_table.cache_clear()


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("INTAKE_BATCH_SIZE", "50")
    monkeypatch.setenv("INTAKE_MIN_RECOGNITION_RATE", "0.4")

    configured = Settings()

    assert configured.batch_size == 50
    assert configured.min_recognition_rate == 0.4
    assert configured.header_scan_rows == 50


def test_default_synonym_table_is_shared(fresh_synonyms):
    assert load_synonym_table() is load_synonym_table()
    assert load_synonym_table().kind_of("date") is FieldKind.DATE


def test_synonym_table_from_file(tmp_path, monkeypatch, fresh_synonyms):
    path = tmp_path / "synonyms.json"
    path.write_text(
        json.dumps(
            {
                "fields": {
                    "date": {"kind": "date", "synonyms": ["Boekdatum"]},
                    "revenue": {"kind": "number", "synonyms": ["Netto omzet"]},
                },
                "metadata_blacklist": ["Periode"],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(synonyms.settings, "synonyms_path", str(path))

    table = load_synonym_table()

    assert table.field_names() == ("date", "revenue")
    assert table.normalized_synonyms("revenue") == ("netto omzet",)
    assert table.metadata_blacklist == ("Periode",)
    assert settings.synonyms_path == str(path)


def test_logging_defaults_to_configured_level(monkeypatch):
    monkeypatch.setattr(settings, "log_level", "info")

    configure_logging(force=True)

    assert logging.getLogger("intake").level == logging.INFO
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("intake.domain.imports.parsers").level == logging.WARNING


def test_debug_logging_opens_noisy_loggers():
    configure_logging("debug", force=True)
    try:
        assert logging.getLogger("intake").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.DEBUG
    finally:
        configure_logging("INFO", force=True)


def test_configure_logging_runs_once():
    configure_logging("INFO", force=True)
    configure_logging("DEBUG")
    assert logging.getLogger("intake").level == logging.INFO
