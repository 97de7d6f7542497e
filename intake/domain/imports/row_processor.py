"""
Row processor: turns every data row below the header into a pending record or
exactly one validation error.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence

from intake.domain.imports.cells import is_populated
from intake.domain.imports.entities import EntityResolver
from intake.domain.imports.parsers import make_json_safe
from intake.domain.imports.profiles import LOCATION_FIELD, ImportProfile
from intake.domain.imports.record_builder import build_record, mapped_columns
from intake.domain.imports.schemas import ErrorType, PendingRecord, RowValidationError
from intake.domain.imports.synonyms import SynonymTable

logger = logging.getLogger(__name__)


@dataclass
class RowProcessingResult:
    valid_records: List[PendingRecord] = field(default_factory=list)
    errors: List[RowValidationError] = field(default_factory=list)
    skipped_noise: int = 0
    cancelled: bool = False


def _merge_errors(errors: List[RowValidationError], row_index: int, original_row: List[Any]) -> RowValidationError:
    """Collapse the field errors of one row into the single error logged for it."""
    first = errors[0]
    if len(errors) == 1:
        return first.model_copy(update={"row_index": row_index, "original_row": original_row})
    return RowValidationError(
        row_index=row_index,
        reason="; ".join(error.reason for error in errors),
        field=", ".join(error.field for error in errors if error.field) or None,
        value=first.value,
        original_row=original_row,
        error_type=first.error_type,
    )


def _is_noise(row: Sequence[Any], columns: Sequence[int]) -> bool:
    return not any(index < len(row) and is_populated(row[index]) for index in columns)


def process_rows(
    data_rows: Sequence[Sequence[Any]],
    headers: Sequence[Optional[str]],
    reverse_mapping: Mapping[str, str],
    profile: ImportProfile,
    import_id: str,
    header_row_index: int,
    location_id: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    resolver: Optional[EntityResolver] = None,
    *,
    cancel: Optional[Callable[[], bool]] = None,
    table: Optional[SynonymTable] = None,
) -> RowProcessingResult:
    """
    Build a record for every data row.

    Rows whose mapped columns are all empty are counted as noise and skipped
    without an error. For per-row entity profiles the captured location label
    is resolved through ``resolver``; a missing or unknown label rejects the
    row. Every rejected row produces exactly one ``RowValidationError`` whose
    ``row_index`` is the 0-based position in the sheet.
    """
    result = RowProcessingResult()
    bound_columns = list(mapped_columns(headers, reverse_mapping))

    if profile.per_row_entity and resolver is None:
        raise ValueError(f"Profile '{profile.name}' requires an entity resolver")

    for offset, row in enumerate(data_rows):
        if cancel is not None and cancel():
            logger.info("Run %s cancelled after %d data rows", import_id, offset)
            result.cancelled = True
            break

        row_index = header_row_index + 1 + offset
        row = list(row)
        if _is_noise(row, bound_columns):
            result.skipped_noise += 1
            continue

        original_row = [make_json_safe(value) for value in row]
        built = build_record(
            row,
            headers,
            reverse_mapping,
            profile,
            import_id,
            location_id,
            defaults=metadata,
            table=table,
        )
        errors = list(built.errors)

        if profile.per_row_entity and not errors:
            label = built.entity_label
            if not label:
                errors.append(
                    RowValidationError(
                        reason=f"Missing {LOCATION_FIELD.replace('_', ' ')}",
                        field=LOCATION_FIELD,
                        error_type=ErrorType.ENTITY_RESOLUTION,
                    )
                )
            else:
                entity_id = resolver.resolve(label)
                if entity_id is None:
                    errors.append(
                        RowValidationError(
                            reason=f"Unknown location '{label}'",
                            field=LOCATION_FIELD,
                            value=label,
                            error_type=ErrorType.ENTITY_RESOLUTION,
                        )
                    )
                else:
                    built.record["location_id"] = entity_id

        if errors:
            error = _merge_errors(errors, row_index, original_row)
            logger.warning("Row %d rejected: %s", error.row_number, error.reason)
            result.errors.append(error)
            continue

        result.valid_records.append(PendingRecord(row_index=row_index, values=built.record, original_row=original_row))

    logger.info(
        "Processed %d data rows: %d valid, %d rejected, %d noise",
        len(data_rows),
        len(result.valid_records),
        len(result.errors),
        result.skipped_noise,
    )
    return result
