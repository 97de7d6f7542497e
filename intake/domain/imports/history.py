"""
Import run tracking and the append-only audit trail.

Every run gets one row in ``import_runs`` that follows its lifecycle, and the
``import_audit_log`` table receives the accepted mapping snapshot plus one
entry per rejected row. Audit entries are only ever inserted.
"""
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from intake.db.models import ImportAuditEntry, ImportRunRecord
from intake.db.session import get_engine
from intake.domain.imports.schemas import RowValidationError

logger = logging.getLogger(__name__)

MAPPING_SNAPSHOT = "mapping_snapshot"
ROW_REJECTION = "row_rejection"
MAX_VALUE_LENGTH = 500


class AuditLogger(Protocol):
    def log_mapping_snapshot(self, run_id: str, profile: str, snapshot: Dict[str, Any]) -> None:
        ...

    def log_rejections(self, run_id: str, profile: str, errors: Sequence[RowValidationError]) -> None:
        ...


def _truncate(value: Any) -> Optional[str]:
    if value is None:
        return None
    text_value = str(value)
    if len(text_value) > MAX_VALUE_LENGTH:
        return text_value[: MAX_VALUE_LENGTH - 3] + "..."
    return text_value


class SqlAuditLogger:
    """Writes audit entries to ``import_audit_log``."""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_engine()

    def log_mapping_snapshot(self, run_id: str, profile: str, snapshot: Dict[str, Any]) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(ImportAuditEntry.__table__),
                    {
                        "run_id": run_id,
                        "profile": profile,
                        "entry_type": MAPPING_SNAPSHOT,
                        "payload": snapshot,
                        "created_at": datetime.now(timezone.utc),
                    },
                )
            logger.info(f"Recorded mapping snapshot for run {run_id}")
        except Exception as e:
            logger.error(f"Error recording mapping snapshot: {str(e)}")
            raise

    def log_rejections(self, run_id: str, profile: str, errors: Sequence[RowValidationError]) -> None:
        """Batch insert one audit entry per rejected row."""
        if not errors:
            return
        now = datetime.now(timezone.utc)
        batch_data = [
            {
                "run_id": run_id,
                "profile": profile,
                "entry_type": ROW_REJECTION,
                "row_index": error.row_index,
                "field": error.field,
                "value": _truncate(error.value),
                "reason": error.reason,
                "payload": {"error_type": error.error_type.value, "original_row": error.original_row},
                "created_at": now,
            }
            for error in errors
        ]
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(ImportAuditEntry.__table__), batch_data)
            logger.info(f"Recorded {len(errors)} row rejections for run {run_id}")
        except Exception as e:
            logger.error(f"Error recording row rejections: {str(e)}")
            raise


class InMemoryAuditLogger:
    """Keeps audit entries in a list; used when no database audit trail is wanted."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def log_mapping_snapshot(self, run_id: str, profile: str, snapshot: Dict[str, Any]) -> None:
        self.entries.append({"run_id": run_id, "profile": profile, "entry_type": MAPPING_SNAPSHOT, "payload": snapshot})

    def log_rejections(self, run_id: str, profile: str, errors: Sequence[RowValidationError]) -> None:
        for error in errors:
            self.entries.append(
                {
                    "run_id": run_id,
                    "profile": profile,
                    "entry_type": ROW_REJECTION,
                    "row_index": error.row_index,
                    "reason": error.reason,
                }
            )

    def of_type(self, entry_type: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.entries if entry["entry_type"] == entry_type]


def start_run_tracking(
    run_id: str,
    profile: str,
    target_table: str,
    state: str,
    target_entity_id: Optional[str] = None,
    file_name: Optional[str] = None,
    engine: Optional[Engine] = None,
) -> None:
    """
    Start tracking a new import run.

    Args:
        run_id: Identifier of the run (caller supplied)
        profile: Import profile name
        target_table: Table the run writes to
        state: Initial lifecycle state
        target_entity_id: Owning entity of the run, if any
        file_name: Name of the imported file
    """
    engine = engine or get_engine()
    try:
        with engine.begin() as conn:
            conn.execute(
                insert(ImportRunRecord.__table__),
                {
                    "run_id": run_id,
                    "profile": profile,
                    "target_table": target_table,
                    "target_entity_id": target_entity_id,
                    "file_name": file_name,
                    "state": state,
                    "started_at": datetime.now(timezone.utc),
                },
            )
        logger.info(f"Started run tracking: {run_id}")
    except Exception as e:
        logger.error(f"Error starting run tracking: {str(e)}")
        raise


def update_run_state(
    run_id: str,
    state: str,
    engine: Optional[Engine] = None,
    **fields: Any,
) -> None:
    """Move a tracked run to ``state`` and store any extra columns given."""
    engine = engine or get_engine()
    values = {"state": state, **fields}
    try:
        with engine.begin() as conn:
            conn.execute(
                update(ImportRunRecord.__table__)
                .where(ImportRunRecord.__table__.c.run_id == run_id)
                .values(**values)
            )
        logger.info(f"Updated run {run_id} to state '{state}'")
    except Exception as e:
        logger.error(f"Error updating run state: {str(e)}")
        raise


def complete_run_tracking(
    run_id: str,
    state: str,
    total_rows: int,
    processed_count: int,
    skipped_count: int,
    error_count: int,
    error_message: Optional[str] = None,
    engine: Optional[Engine] = None,
) -> None:
    """Store the final statistics and outcome of a run."""
    update_run_state(
        run_id,
        state,
        engine=engine,
        total_rows=total_rows,
        processed_count=processed_count,
        skipped_count=skipped_count,
        error_count=error_count,
        error_message=error_message,
        completed_at=datetime.now(timezone.utc),
    )


def get_run(run_id: str, engine: Optional[Engine] = None) -> Optional[Dict[str, Any]]:
    engine = engine or get_engine()
    with engine.connect() as conn:
        row = conn.execute(
            select(ImportRunRecord.__table__).where(ImportRunRecord.__table__.c.run_id == run_id)
        ).mappings().first()
    return dict(row) if row else None


def get_audit_entries(
    run_id: str,
    entry_type: Optional[str] = None,
    engine: Optional[Engine] = None,
) -> List[Dict[str, Any]]:
    """Return the audit entries of a run in insertion order."""
    engine = engine or get_engine()
    table = ImportAuditEntry.__table__
    query = select(table).where(table.c.run_id == run_id)
    if entry_type:
        query = query.where(table.c.entry_type == entry_type)
    with engine.connect() as conn:
        rows = conn.execute(query.order_by(table.c.id)).mappings().all()
    return [dict(row) for row in rows]
