from intake.domain.imports.history import (
    MAPPING_SNAPSHOT,
    ROW_REJECTION,
    InMemoryAuditLogger,
    SqlAuditLogger,
    complete_run_tracking,
    get_audit_entries,
    get_run,
    start_run_tracking,
    update_run_state,
)
from intake.domain.imports.schemas import ErrorType, RowValidationError


def test_run_tracking_lifecycle(engine):
    start_run_tracking("run-1", "bork_sales", "bork_sales_data", "analyzing", "loc-1", "export.xlsx", engine=engine)
    update_run_state("run-1", "mapped", engine=engine, header_row_index=3)
    complete_run_tracking("run-1", "persisted", 10, 8, 2, 1, engine=engine)

    tracked = get_run("run-1", engine)
    assert tracked["state"] == "persisted"
    assert tracked["header_row_index"] == 3
    assert (tracked["total_rows"], tracked["processed_count"], tracked["skipped_count"], tracked["error_count"]) == (
        10,
        8,
        2,
        1,
    )
    assert tracked["file_name"] == "export.xlsx"
    assert tracked["started_at"] is not None
    assert tracked["completed_at"] is not None


def test_unknown_run_is_none(engine):
    assert get_run("nope", engine) is None


def test_sql_audit_log_is_ordered_and_truncates_values(engine):
    audit = SqlAuditLogger(engine)
    audit.log_mapping_snapshot("run-1", "bork_sales", {"mapping": {"date": "Datum"}})
    audit.log_rejections(
        "run-1",
        "bork_sales",
        [
            RowValidationError(row_index=4, reason="Invalid date", field="date", value="x" * 600, original_row=["x"]),
            RowValidationError(row_index=7, reason="Unknown location", error_type=ErrorType.ENTITY_RESOLUTION),
        ],
    )
    audit.log_rejections("run-1", "bork_sales", [])

    entries = get_audit_entries("run-1", engine=engine)
    assert [entry["entry_type"] for entry in entries] == [MAPPING_SNAPSHOT, ROW_REJECTION, ROW_REJECTION]
    assert entries[0]["payload"] == {"mapping": {"date": "Datum"}}

    rejections = get_audit_entries("run-1", ROW_REJECTION, engine)
    assert [entry["row_index"] for entry in rejections] == [4, 7]
    assert len(rejections[0]["value"]) == 500
    assert rejections[0]["value"].endswith("...")
    assert rejections[0]["payload"] == {"error_type": "coercion", "original_row": ["x"]}
    assert rejections[1]["payload"]["error_type"] == ErrorType.ENTITY_RESOLUTION.value


def test_audit_entries_are_scoped_to_their_run(engine):
    audit = SqlAuditLogger(engine)
    audit.log_mapping_snapshot("run-1", "bork_sales", {})
    audit.log_mapping_snapshot("run-2", "bork_sales", {})

    assert len(get_audit_entries("run-1", engine=engine)) == 1


def test_in_memory_audit_logger():
    audit = InMemoryAuditLogger()
    audit.log_mapping_snapshot("run-1", "bork_sales", {"mapping": {}})
    audit.log_rejections("run-1", "bork_sales", [RowValidationError(row_index=2, reason="bad")])

    assert len(audit.of_type(MAPPING_SNAPSHOT)) == 1
    assert audit.of_type(ROW_REJECTION)[0]["row_index"] == 2
