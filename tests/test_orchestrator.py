from datetime import date

import pytest
from sqlalchemy import insert, select

from intake.db.models import BorkSalesData, EitjeLaborHours, Location, PowerBIPnLData
from intake.domain.imports.analyzer import analyze_sheet
from intake.domain.imports.batch_persister import InsertOutcome
from intake.domain.imports.entities import LocationDirectory
from intake.domain.imports.errors import HeaderRecognitionError, InvalidTransitionError, MissingRequiredFieldsError
from intake.domain.imports.history import (
    MAPPING_SNAPSHOT,
    ROW_REJECTION,
    InMemoryAuditLogger,
    get_audit_entries,
    get_run,
)
from intake.domain.imports.orchestrator import ImportRun, RunState, aggregate_by_natural_key, run
from intake.domain.imports.profiles import BORK_SALES, POWERBI_PNL
from intake.domain.imports.schemas import ErrorType, PendingRecord, ProcessingResult


def _stored(engine, model, run_id):
    table = model.__table__
    with engine.connect() as conn:
        return conn.execute(select(table).where(table.c.import_id == run_id).order_by(table.c.id)).mappings().all()


class RecordingInserter:
    def __init__(self, audit=None):
        self.audit = audit
        self.batches = []

    def insert_many(self, table, records):
        if self.audit is not None:
            assert self.audit.of_type(MAPPING_SNAPSHOT), "mapping snapshot must be logged before rows are written"
        self.batches.append((table, list(records)))
        return InsertOutcome(True)


def test_scenario_a_imports_without_errors(engine):
    rows = [
        ["Datum", "Omzet", "Product"],
        ["15/03/2024", "12,50", "Cola"],
        ["16/03/2024", "8", "Fanta"],
    ]

    result = run(rows, "run-a", "loc-1", "bork_sales", engine=engine)

    assert result.processed_count == 2
    assert result.skipped_count == 0
    assert result.errors == []
    stored = _stored(engine, BorkSalesData, "run-a")
    assert [(row["date"], row["product_name"], row["revenue"]) for row in stored] == [
        (date(2024, 3, 15), "Cola", 12.5),
        (date(2024, 3, 16), "Fanta", 8.0),
    ]
    assert all(row["location_id"] == "loc-1" for row in stored)

    tracked = get_run("run-a", engine)
    assert tracked["state"] == "persisted"
    assert tracked["processed_count"] == 2
    assert tracked["header_row_index"] == 0

    snapshots = get_audit_entries("run-a", MAPPING_SNAPSHOT, engine)
    assert len(snapshots) == 1
    assert snapshots[0]["payload"]["mapping"] == {"date": "Datum", "revenue": "Omzet", "product_name": "Product"}


def test_preamble_noise_and_raw_data(engine, bork_rows):
    result = run(bork_rows, "run-pos", "loc-1", BORK_SALES, engine=engine)

    assert result.processed_count == 3
    assert result.skipped_count == 1
    stored = _stored(engine, BorkSalesData, "run-pos")
    assert [row["quantity"] for row in stored] == [2.0, 1.0, 3.0]
    assert stored[0]["category"] == "Dranken"


def test_scenario_b_invalid_date_is_a_row_error(engine):
    rows = [
        ["Datum", "Omzet", "Product"],
        ["15/03/2024", "12,50", "Cola"],
        ["31/02/2024", "4,75", "Tosti"],
        ["16/03/2024", "8", "Fanta"],
    ]

    result = run(rows, "run-b", "loc-1", "bork_sales", engine=engine)

    assert result.processed_count == 2
    assert result.skipped_count == 1
    assert len(result.errors) == 1
    assert "31/02/2024" in result.errors[0].reason
    assert result.errors[0].row_index == 2

    rejections = get_audit_entries("run-b", ROW_REJECTION, engine)
    assert len(rejections) == 1
    assert rejections[0]["row_index"] == 2
    assert rejections[0]["field"] == "date"


def test_ledger_duplicates_are_summed_on_every_run(engine, pnl_rows):
    for run_id in ("pnl-1", "pnl-2"):
        result = run(pnl_rows, run_id, "loc-1", "powerbi_pnl", engine=engine)

        assert result.processed_count == 3
        assert result.skipped_count == 0
        stored = _stored(engine, PowerBIPnLData, run_id)
        assert [(row["month"], row["gl_account"], row["amount"]) for row in stored] == [
            (1, "4000", pytest.approx(1250.5)),
            (2, "4000", pytest.approx(100.0)),
        ]


def test_sales_duplicates_are_not_aggregated():
    records = [
        PendingRecord(row_index=1, values={"location_id": "l", "date": "d", "product_name": "Cola", "revenue": 1.0}),
        PendingRecord(row_index=2, values={"location_id": "l", "date": "d", "product_name": "Cola", "revenue": 1.0}),
    ]
    assert len(aggregate_by_natural_key(records, BORK_SALES)) == 2


def test_aggregation_tracks_merged_rows():
    values = {"location_id": "l", "year": 2024, "month": 1, "gl_account": "4000"}
    records = [
        PendingRecord(row_index=1, values=dict(values, amount=10.0)),
        PendingRecord(row_index=2, values=dict(values, gl_account="4100", amount=1.0)),
        PendingRecord(row_index=3, values=dict(values, gl_account=" 4000 ", amount=5.5)),
    ]
    merged = aggregate_by_natural_key(records, POWERBI_PNL)

    assert len(merged) == 2
    assert merged[0].values["amount"] == pytest.approx(15.5)
    assert merged[0].merged_rows == [3]
    assert merged[0].source_row_count == 2


def test_missing_required_field_aborts_before_rows(engine):
    rows = [["Datum", "Product", "Aantal", "Prijs"], ["15/03/2024", "Cola", "2", "2,50"]]

    with pytest.raises(MissingRequiredFieldsError) as exc_info:
        run(rows, "run-missing", "loc-1", "bork_sales", engine=engine)

    assert exc_info.value.missing_required == ["revenue"]
    assert get_run("run-missing", engine)["state"] == "failed"
    assert _stored(engine, BorkSalesData, "run-missing") == []
    assert get_audit_entries("run-missing", engine=engine) == []


def test_metadata_satisfies_required_field(engine):
    rows = [["Product", "Omzet"], ["Cola", "5"]]

    result = run(rows, "run-meta", "loc-1", "bork_sales", metadata={"date": "2024-05-01"}, engine=engine)

    assert result.processed_count == 1
    assert _stored(engine, BorkSalesData, "run-meta")[0]["date"] == date(2024, 5, 1)


def test_recognition_guard_fails_the_run(engine):
    rows = [["Xq17", "Zv22", "Wk35", "Jp48"], [1, 2, 3, 4]]

    with pytest.raises(HeaderRecognitionError):
        run(rows, "run-guard", None, "bork_sales", engine=engine)

    tracked = get_run("run-guard", engine)
    assert tracked["state"] == "failed"
    assert "0 of 4" in tracked["error_message"]


def test_per_row_locations_are_resolved(engine):
    with engine.begin() as conn:
        conn.execute(insert(Location.__table__), [{"id": "loc-vk", "name": "Van Kinsbergen"}])
    rows = [
        ["Uren export", None, None, None, None],
        ["Datum", "Locatie", "Medewerker", "Uren", "Loonkosten"],
        ["01-05-2024", "Van Kinsbergen", "Jan", "7:30", "120,50"],
        ["01-05-2024", "Onbekend", "Piet", "8:00", "100"],
    ]

    result = run(rows, "run-labor", None, "eitje_labor", engine=engine)

    assert result.processed_count == 1
    assert result.skipped_count == 1
    assert result.errors[0].error_type is ErrorType.ENTITY_RESOLUTION
    stored = _stored(engine, EitjeLaborHours, "run-labor")
    assert stored[0]["location_id"] == "loc-vk"
    assert stored[0]["hours"] == pytest.approx(7.5)
    assert stored[0]["labor_cost"] == pytest.approx(120.5)


def test_snapshot_precedes_persistence_with_injected_collaborators():
    audit = InMemoryAuditLogger()
    inserter = RecordingInserter(audit)
    rows = [["Datum", "Omzet", "Product", "Kassa"], ["15/03/2024", "5", "Cola", "K1"]]

    result = run(rows, "run-fake", "loc-1", "bork_sales", inserter=inserter, audit=audit, track=False)

    assert result.processed_count == 1
    table, records = inserter.batches[0]
    assert table == "bork_sales_data"
    assert set(records[0]) == {"import_id", "location_id", "created_at", "raw_data", "date", "revenue", "product_name"}
    assert records[0]["raw_data"] == {"Kassa": "K1"}
    assert audit.entries[0]["entry_type"] == MAPPING_SNAPSHOT


def test_cancelled_run_writes_nothing():
    audit = InMemoryAuditLogger()
    inserter = RecordingInserter()
    rows = [["Datum", "Omzet", "Product"], ["15/03/2024", "5", "Cola"]]

    result = run(rows, "run-cancel", "loc-1", "bork_sales", inserter=inserter, audit=audit, cancel=lambda: True, track=False)

    assert result.cancelled
    assert result.processed_count == 0
    assert result.skipped_count == 1
    assert inserter.batches == []


def test_result_is_immutable():
    result = ProcessingResult(run_id="r", processed_count=1, skipped_count=0)
    with pytest.raises(Exception):
        result.processed_count = 2


def test_run_state_machine():
    import_run = ImportRun("r", BORK_SALES)
    assert import_run.state is RunState.ANALYZING

    with pytest.raises(InvalidTransitionError):
        import_run.transition(RunState.PROCESSING)

    import_run.transition(RunState.MAPPED)
    with pytest.raises(InvalidTransitionError):
        import_run.fail("too late")

    import_run.transition(RunState.PROCESSING)
    import_run.finish(ProcessingResult(run_id="r", processed_count=0, skipped_count=0))
    assert import_run.history == [RunState.ANALYZING, RunState.MAPPED, RunState.PROCESSING, RunState.PERSISTED]

    with pytest.raises(InvalidTransitionError):
        import_run.transition(RunState.PROCESSING)


def test_accepted_mapping_is_read_only():
    import_run = ImportRun("r", BORK_SALES)
    rows = [["Datum", "Omzet", "Product"]]
    analysis = analyze_sheet(rows, BORK_SALES)
    mapping = import_run.accept_mapping(analysis, analysis.proposed_mapping)

    with pytest.raises(TypeError):
        mapping["date"] = "Omzet"
    assert import_run.state is RunState.MAPPED


class JanuaryRejectingInserter:
    def __init__(self):
        self.inserted = []

    def insert_many(self, table, records):
        if any(record["month"] == 1 for record in records):
            return InsertOutcome(False, "CHECK constraint failed: amount")
        self.inserted.extend(records)
        return InsertOutcome(True)


def test_rejected_ledger_total_reports_each_summed_row(pnl_rows):
    audit = InMemoryAuditLogger()
    inserter = JanuaryRejectingInserter()

    result = run(pnl_rows, "pnl-rejected", "loc-1", "powerbi_pnl", inserter=inserter, audit=audit, track=False)

    assert result.processed_count == 1
    assert result.skipped_count == 2
    assert [error.row_index for error in result.errors] == [1, 2]
    assert all(error.error_type is ErrorType.INSERT_FAILED for error in result.errors)
    assert len(audit.of_type(ROW_REJECTION)) == 2
    assert [record["month"] for record in inserter.inserted] == [2]


class RejectionLogDown(InMemoryAuditLogger):
    def log_rejections(self, run_id, profile, errors):
        raise RuntimeError("audit down")


def test_rejection_log_failure_still_finishes_the_run(engine):
    rows = [
        ["Datum", "Omzet", "Product"],
        ["15/03/2024", "12,50", "Cola"],
        ["31/02/2024", "4,75", "Tosti"],
    ]

    result = run(rows, "run-audit-down", "loc-1", "bork_sales", audit=RejectionLogDown(), engine=engine)

    assert result.processed_count == 1
    assert len(result.errors) == 1
    assert get_run("run-audit-down", engine)["state"] == "persisted"
    assert len(_stored(engine, BorkSalesData, "run-audit-down")) == 1


def test_unavailable_location_directory_fails_before_processing(engine, monkeypatch):
    def unavailable(engine):
        raise RuntimeError("locations table unavailable")

    monkeypatch.setattr(LocationDirectory, "from_engine", staticmethod(unavailable))
    rows = [
        ["Datum", "Locatie", "Medewerker", "Uren"],
        ["01-05-2024", "Van Kinsbergen", "Jan", "7:30"],
    ]

    with pytest.raises(RuntimeError):
        run(rows, "run-no-locations", None, "eitje_labor", engine=engine)

    tracked = get_run("run-no-locations", engine)
    assert tracked["state"] == "failed"
    assert "locations table unavailable" in tracked["error_message"]
    assert get_audit_entries("run-no-locations", engine=engine) == []
    assert _stored(engine, EitjeLaborHours, "run-no-locations") == []
