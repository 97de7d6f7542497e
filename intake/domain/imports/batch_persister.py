"""
Batch persistence with bisection retry.

Records are inserted in fixed-size batches. When the database rejects a
batch it is split at its midpoint and each half is retried, until the failing
records are isolated and logged one by one. Ranges are kept on an explicit
worklist so pathological all-fail batches never deepen the call stack.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from intake.core.config import settings
from intake.db.models import TARGET_MODELS
from intake.db.session import get_engine
from intake.domain.imports.schemas import ErrorType, PendingRecord, RowValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertOutcome:
    success: bool
    error: Optional[str] = None


class RecordInserter(Protocol):
    def insert_many(self, table: str, records: List[Dict[str, Any]]) -> InsertOutcome:
        ...


class SqlAlchemyInserter:
    """
    Inserts records into one of the target tables in a single transaction.

    A batch is all-or-nothing: any database error rolls the transaction back
    and is reported as a failed ``InsertOutcome`` instead of being raised.
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_engine()

    def insert_many(self, table: str, records: List[Dict[str, Any]]) -> InsertOutcome:
        model = TARGET_MODELS.get(table)
        if model is None:
            raise ValueError(f"Unknown target table '{table}'")
        if not records:
            return InsertOutcome(True)
        # executemany compiles one statement, so every row needs the same keys
        columns = sorted({key for record in records for key in record})
        rows = [{column: record.get(column) for column in columns} for record in records]
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(model.__table__), rows)
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc).splitlines()[0]
            logger.debug("Insert of %d records into %s failed: %s", len(records), table, message)
            return InsertOutcome(False, message)
        return InsertOutcome(True)


@dataclass
class PersistOutcome:
    inserted: int = 0
    inserted_rows: int = 0  # source rows behind the inserted records
    errors: List[RowValidationError] = field(default_factory=list)
    batches: int = 0
    insert_calls: int = 0
    cancelled: bool = False


def _insert_failures(record: PendingRecord, table: str, error: Optional[str]) -> List[RowValidationError]:
    """One error per source row behind ``record``, merged rows included."""
    reason = f"Insert into '{table}' failed: {error or 'unknown database error'}"
    failures = [
        RowValidationError(
            row_index=record.row_index,
            reason=reason,
            original_row=record.original_row,
            error_type=ErrorType.INSERT_FAILED,
        )
    ]
    for merged_index in record.merged_rows:
        failures.append(
            RowValidationError(
                row_index=merged_index,
                reason=f"{reason} (summed into row {record.row_index + 1})",
                error_type=ErrorType.INSERT_FAILED,
            )
        )
    return failures


def _persist_batch(
    batch: Sequence[PendingRecord],
    table: str,
    inserter: RecordInserter,
    outcome: PersistOutcome,
) -> None:
    worklist: List[Tuple[int, int]] = [(0, len(batch))]
    while worklist:
        start, end = worklist.pop()
        records = [pending.values for pending in batch[start:end]]
        outcome.insert_calls += 1
        result = inserter.insert_many(table, records)

        if result.success:
            outcome.inserted += end - start
            outcome.inserted_rows += sum(pending.source_row_count for pending in batch[start:end])
            continue

        if end - start == 1:
            failures = _insert_failures(batch[start], table, result.error)
            logger.warning(
                "Row %d rejected by the database (%d source rows): %s",
                failures[0].row_number,
                len(failures),
                result.error,
            )
            outcome.errors.extend(failures)
            continue

        mid = (start + end) // 2
        logger.info("Batch range [%d, %d) rejected; retrying halves", start, end)
        # LIFO: push the right half first so the left half is retried first.
        worklist.append((mid, end))
        worklist.append((start, mid))


def persist_records(
    records: Sequence[PendingRecord],
    table: str,
    inserter: RecordInserter,
    batch_size: Optional[int] = None,
    *,
    cancel: Optional[Callable[[], bool]] = None,
) -> PersistOutcome:
    """
    Insert ``records`` into ``table`` in batches of ``batch_size``.

    Of N records with exactly K that the database rejects, N-K are inserted
    and exactly K ``insert_failed`` errors are returned, in row order,
    whatever the batch size or the position of the bad records. Batches that
    were already committed stay committed when ``cancel`` stops the run.
    """
    batch_size = settings.batch_size if batch_size is None else batch_size
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    outcome = PersistOutcome()
    for start in range(0, len(records), batch_size):
        if cancel is not None and cancel():
            logger.info("Persistence cancelled after %d batches", outcome.batches)
            outcome.cancelled = True
            break
        batch = records[start:start + batch_size]
        outcome.batches += 1
        _persist_batch(batch, table, inserter, outcome)

    logger.info(
        "Persisted %d/%d records into %s (%d batches, %d insert calls, %d failed)",
        outcome.inserted,
        len(records),
        table,
        outcome.batches,
        outcome.insert_calls,
        len(outcome.errors),
    )
    return outcome
