"""
Import orchestration: one file, one profile, one run.

The run moves through ``analyzing -> mapped -> processing -> persisted``.
Only analysis can fail the run; once the mapping is accepted every problem is
row-local and ends up in the result's error list.
"""
from enum import Enum
import logging
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.engine import Engine

from intake.core.config import settings
from intake.db.session import get_engine
from intake.domain.imports.analyzer import analyze_sheet
from intake.domain.imports.batch_persister import RecordInserter, SqlAlchemyInserter, persist_records
from intake.domain.imports.entities import CachedEntityResolver, EntityResolver, LocationDirectory
from intake.domain.imports.errors import (
    HeaderRecognitionError,
    InvalidTransitionError,
    MissingRequiredFieldsError,
    SheetReadError,
)
from intake.domain.imports.history import (
    AuditLogger,
    SqlAuditLogger,
    complete_run_tracking,
    start_run_tracking,
    update_run_state,
)
from intake.domain.imports.parsers import make_json_safe
from intake.domain.imports.processors.sheet_reader import read_first_sheet
from intake.domain.imports.profiles import LOCATION_FIELD, ImportProfile, get_profile
from intake.domain.imports.record_builder import SYSTEM_FIELDS
from intake.domain.imports.row_processor import process_rows
from intake.domain.imports.schemas import AnalysisResult, PendingRecord, ProcessingResult

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    ANALYZING = "analyzing"
    MAPPED = "mapped"
    PROCESSING = "processing"
    PERSISTED = "persisted"
    FAILED = "failed"


_TRANSITIONS = {
    RunState.ANALYZING: (RunState.MAPPED, RunState.FAILED),
    RunState.MAPPED: (RunState.PROCESSING,),
    RunState.PROCESSING: (RunState.PERSISTED,),
    RunState.PERSISTED: (),
    RunState.FAILED: (),
}


class ImportRun:
    """Lifecycle of a single import run."""

    def __init__(
        self,
        run_id: str,
        profile: ImportProfile,
        target_entity_id: Optional[str] = None,
        file_name: Optional[str] = None,
        on_transition: Optional[Callable[["ImportRun", RunState], None]] = None,
    ):
        self.run_id = run_id
        self.profile = profile
        self.target_entity_id = target_entity_id
        self.file_name = file_name
        self.state = RunState.ANALYZING
        self.history: List[RunState] = [RunState.ANALYZING]
        self.analysis: Optional[AnalysisResult] = None
        self.mapping: Optional[Mapping[str, str]] = None
        self.error_message: Optional[str] = None
        self.result: Optional[ProcessingResult] = None
        self._on_transition = on_transition

    def transition(self, target: RunState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, target.value)
        logger.debug("Run %s: %s -> %s", self.run_id, self.state.value, target.value)
        self.state = target
        self.history.append(target)
        if self._on_transition is not None:
            self._on_transition(self, target)

    def accept_mapping(self, analysis: AnalysisResult, mapping: Mapping[str, str]) -> Mapping[str, str]:
        """Freeze the mapping the run will use from here on."""
        self.analysis = analysis
        self.mapping = MappingProxyType(dict(mapping))
        self.transition(RunState.MAPPED)
        return self.mapping

    def fail(self, message: str) -> None:
        self.error_message = message
        self.transition(RunState.FAILED)

    def finish(self, result: ProcessingResult) -> ProcessingResult:
        self.result = result
        self.transition(RunState.PERSISTED)
        return result


class _RunTracker:
    """Mirrors run transitions into the ``import_runs`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def start(self, run: ImportRun) -> None:
        start_run_tracking(
            run.run_id,
            run.profile.name,
            run.profile.target_table,
            run.state.value,
            target_entity_id=run.target_entity_id,
            file_name=run.file_name,
            engine=self.engine,
        )

    def __call__(self, run: ImportRun, state: RunState) -> None:
        if state is RunState.FAILED:
            update_run_state(run.run_id, state.value, engine=self.engine, error_message=run.error_message)
        elif state is RunState.PERSISTED:
            result = run.result
            complete_run_tracking(
                run.run_id,
                state.value,
                total_rows=result.processed_count + result.skipped_count,
                processed_count=result.processed_count,
                skipped_count=result.skipped_count,
                error_count=len(result.errors),
                engine=self.engine,
            )
        else:
            fields = {}
            if state is RunState.MAPPED and run.analysis is not None:
                fields["header_row_index"] = run.analysis.header_row_index
            update_run_state(run.run_id, state.value, engine=self.engine, **fields)


def _mapping_snapshot(
    run: ImportRun,
    analysis: AnalysisResult,
    mapping: Mapping[str, str],
    metadata: Mapping[str, Any],
) -> Dict[str, Any]:
    return {
        "profile": run.profile.name,
        "target_table": run.profile.target_table,
        "target_entity_id": run.target_entity_id,
        "file_name": run.file_name,
        "header_row_index": analysis.header_row_index,
        "headers": analysis.headers,
        "mapping": dict(mapping),
        "confidence": analysis.confidence,
        "recognition_rate": analysis.recognition_rate,
        "missing_required": analysis.missing_required,
        "metadata": {key: make_json_safe(value) for key, value in metadata.items()},
        "sample_rows": [[make_json_safe(value) for value in row] for row in analysis.sample_rows],
    }


def _persistable_columns(profile: ImportProfile, mapping: Mapping[str, str], metadata: Mapping[str, Any]) -> List[str]:
    fields = [field for field in profile.all_fields if field in mapping or field in metadata]
    columns = list(SYSTEM_FIELDS) + [field for field in fields if field != LOCATION_FIELD]
    if not settings.store_raw_data:
        columns.remove("raw_data")
    return columns


def trim_records(records: Sequence[PendingRecord], columns: Sequence[str]) -> List[PendingRecord]:
    """Keep only ``columns`` on every record, filling absent ones with None."""
    for pending in records:
        pending.values = {column: pending.values.get(column) for column in columns}
    return list(records)


def _natural_key_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def aggregate_by_natural_key(records: Sequence[PendingRecord], profile: ImportProfile) -> List[PendingRecord]:
    """
    Merge records that share the profile's natural key by summing ``sum_field``.

    The first record of each key keeps its position and values; later records
    only contribute their amount and their row index.
    """
    if not profile.aggregate_duplicates:
        return list(records)

    merged: Dict[tuple, PendingRecord] = {}
    for pending in records:
        key = tuple(_natural_key_value(pending.values.get(field)) for field in profile.natural_key)
        existing = merged.get(key)
        if existing is None:
            merged[key] = pending
            continue
        existing.values[profile.sum_field] = (existing.values.get(profile.sum_field) or 0) + (
            pending.values.get(profile.sum_field) or 0
        )
        existing.merged_rows.append(pending.row_index)
        existing.merged_rows.extend(pending.merged_rows)

    folded = len(records) - len(merged)
    if folded:
        logger.info(
            "Aggregated %d duplicate rows on natural key (%s)",
            folded,
            ", ".join(profile.natural_key),
        )
    return list(merged.values())


def run(
    file,
    run_id: str,
    target_entity_id: Optional[str],
    profile,
    mapping: Optional[Dict[str, str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    inserter: Optional[RecordInserter] = None,
    resolver: Optional[EntityResolver] = None,
    audit: Optional[AuditLogger] = None,
    cancel: Optional[Callable[[], bool]] = None,
    file_name: Optional[str] = None,
    engine: Optional[Engine] = None,
    track: bool = True,
) -> ProcessingResult:
    """
    Import the first sheet of ``file`` into the profile's target table.

    Args:
        file: Spreadsheet bytes, a path, a binary file object or an already
            read row matrix.
        run_id: Identifier stamped on every inserted record (``import_id``).
        target_entity_id: Owning entity (location) for profiles without a
            per-row location column.
        profile: ``ImportProfile`` or registered profile name.
        mapping: Caller-approved mapping (field -> header) replacing the
            proposal.
        metadata: File-level field values used when the sheet lacks the field.
        inserter / resolver / audit: Collaborators; default to the database
            backed implementations on ``engine``.
        cancel: Polled between rows and between batches; a truthy return
            stops the run with ``cancelled=True``.
        track: Record the run lifecycle in ``import_runs``.

    Raises:
        HeaderRecognitionError: The header could not be recognized, or the
            accepted mapping misses required fields (``MissingRequiredFieldsError``).
        SheetReadError: The file is not a readable spreadsheet.
    """
    start_time = time.time()
    profile = get_profile(profile)
    metadata = dict(metadata or {})

    if engine is None and (track or inserter is None or audit is None or (profile.per_row_entity and resolver is None)):
        engine = get_engine()

    tracker = _RunTracker(engine) if track else None
    import_run = ImportRun(run_id, profile, target_entity_id, file_name, on_transition=tracker)
    if tracker is not None:
        tracker.start(import_run)

    try:
        rows = file if isinstance(file, list) else read_first_sheet(file, file_name)
        analysis = analyze_sheet(rows, profile, mapping_override=mapping)
        missing = [field for field in analysis.missing_required if field not in metadata]
        if missing:
            raise MissingRequiredFieldsError(
                mapped_count=len(analysis.proposed_mapping),
                populated_count=analysis.populated_header_count,
                missing_required=missing,
                header_row_index=analysis.header_row_index,
            )
    except (HeaderRecognitionError, SheetReadError) as exc:
        logger.error(f"Run {run_id} failed during analysis: {exc}")
        import_run.fail(str(exc))
        raise

    audit = audit or SqlAuditLogger(engine)
    run_resolver = None
    try:
        if profile.per_row_entity:
            run_resolver = CachedEntityResolver(resolver or LocationDirectory.from_engine(engine))
        snapshot = _mapping_snapshot(import_run, analysis, analysis.proposed_mapping, metadata)
        audit.log_mapping_snapshot(run_id, profile.name, snapshot)
    except Exception as exc:
        logger.error(f"Run {run_id} failed before processing: {exc}")
        import_run.fail(str(exc))
        raise

    accepted = import_run.accept_mapping(analysis, analysis.proposed_mapping)
    import_run.transition(RunState.PROCESSING)

    header_row_index = analysis.header_row_index
    data_rows = rows[header_row_index + 1:]
    reverse_mapping = {header: field for field, header in accepted.items()}

    processed = process_rows(
        data_rows,
        analysis.headers,
        reverse_mapping,
        profile,
        run_id,
        header_row_index,
        location_id=target_entity_id,
        metadata=metadata,
        resolver=run_resolver,
        cancel=cancel,
    )

    errors = list(processed.errors)
    processed_count = 0
    cancelled = processed.cancelled

    if not cancelled:
        records = trim_records(processed.valid_records, _persistable_columns(profile, accepted, metadata))
        records = aggregate_by_natural_key(records, profile)
        persisted = persist_records(
            records,
            profile.target_table,
            inserter or SqlAlchemyInserter(engine),
            settings.batch_size,
            cancel=cancel,
        )
        errors.extend(persisted.errors)
        processed_count = persisted.inserted_rows
        cancelled = persisted.cancelled

    errors.sort(key=lambda error: error.row_index)
    try:
        audit.log_rejections(run_id, profile.name, errors)
    except Exception as exc:
        # Rows are already committed; the run still completes with its result
        logger.error(f"Run {run_id}: could not record {len(errors)} rejections in the audit log: {exc}")

    result = ProcessingResult(
        run_id=run_id,
        processed_count=processed_count,
        skipped_count=len(data_rows) - processed_count,
        errors=errors,
        cancelled=cancelled,
    )
    import_run.finish(result)

    logger.info(
        "Run %s (%s) finished in %.2fs: %d processed, %d skipped, %d errors%s",
        run_id,
        profile.name,
        time.time() - start_time,
        result.processed_count,
        result.skipped_count,
        len(result.errors),
        " (cancelled)" if result.cancelled else "",
    )
    return result
