"""
Record builder: one raw row plus the accepted mapping -> one persistable record.

Every mapped column is converted with the parser that matches its field kind.
A conversion failure on a required field marks the record incomplete but never
stops the remaining fields from being filled, and ``build_record`` itself never
raises.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from intake.core.config import settings
from intake.domain.imports.cells import to_cell
from intake.domain.imports.parsers import (
    make_json_safe,
    parse_date,
    parse_hours,
    parse_month,
    parse_number,
    parse_text,
    parse_year,
)
from intake.domain.imports.profiles import LOCATION_FIELD, ImportProfile
from intake.domain.imports.schemas import ErrorType, RowValidationError
from intake.domain.imports.synonyms import FieldKind, SynonymTable, load_synonym_table

logger = logging.getLogger(__name__)

SYSTEM_FIELDS = ("import_id", "location_id", "created_at", "raw_data")

_KIND_LABELS = {
    FieldKind.DATE: "date",
    FieldKind.NUMBER: "number",
    FieldKind.DURATION: "hours",
    FieldKind.MONTH: "month",
    FieldKind.YEAR: "year",
    FieldKind.TEXT: "text",
    FieldKind.ENTITY: "text",
}


@dataclass
class BuiltRecord:
    record: Dict[str, Any]
    errors: List[RowValidationError] = field(default_factory=list)
    is_complete: bool = True
    entity_label: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)
    mapped_value_count: int = 0  # populated cells in mapped columns


def _parser_for(kind: FieldKind, field_name: str) -> Callable[[Any], Any]:
    if kind is FieldKind.DATE:
        return lambda value: parse_date(value, log_context=field_name)
    if kind is FieldKind.NUMBER:
        return parse_number
    if kind is FieldKind.DURATION:
        return parse_hours
    if kind is FieldKind.MONTH:
        return parse_month
    if kind is FieldKind.YEAR:
        return parse_year
    return parse_text


def convert_value(value: Any, field_name: str, table: Optional[SynonymTable] = None) -> Any:
    """Convert a raw value with the parser registered for the field's kind."""
    table = table or load_synonym_table()
    return _parser_for(table.kind_of(field_name), field_name)(value)


def _coercion_error(field_name: str, kind: FieldKind, value: Any, detail: Optional[str] = None) -> RowValidationError:
    label = _KIND_LABELS.get(kind, "value")
    reason = f"Invalid {label} value '{value}' for field '{field_name}'"
    if detail:
        reason = f"{reason}: {detail}"
    return RowValidationError(
        reason=reason,
        field=field_name,
        value=make_json_safe(value),
        error_type=ErrorType.COERCION,
    )


def _raw_key(header: Optional[str], column_index: int) -> str:
    return header if header is not None else f"column_{column_index + 1}"


def mapped_columns(headers: Sequence[Optional[str]], reverse_mapping: Mapping[str, str]) -> Dict[int, str]:
    """
    Column index -> canonical field for the columns the mapping binds.

    Only the first column carrying a mapped header text is bound; repeated
    header texts further right are treated as unmapped.
    """
    bound: Dict[int, str] = {}
    seen = set()
    for column_index, header in enumerate(headers or []):
        field_name = reverse_mapping.get(header) if header is not None else None
        if field_name is None or field_name in seen:
            continue
        seen.add(field_name)
        bound[column_index] = field_name
    return bound


def build_record(
    row: Sequence[Any],
    headers: Sequence[Optional[str]],
    reverse_mapping: Mapping[str, str],
    profile: ImportProfile,
    import_id: str,
    location_id: Optional[str] = None,
    *,
    defaults: Optional[Mapping[str, Any]] = None,
    table: Optional[SynonymTable] = None,
) -> BuiltRecord:
    """
    Convert one data row into a record for ``profile.target_table``.

    Args:
        row: Raw cell values in column order.
        headers: Raw header texts in column order (None for blank header cells).
        reverse_mapping: Header text -> canonical field.
        profile: The profile whose required fields decide completeness.
        import_id: Run identifier stamped onto the record.
        location_id: Owning entity id, if known up front.
        defaults: Field values used when the sheet does not supply the field
            (file-level metadata such as a report date).

    Returns:
        A ``BuiltRecord``. ``location_name`` is captured as ``entity_label``
        rather than written into ``record``.
    """
    record: Dict[str, Any] = {
        "import_id": import_id,
        "location_id": location_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    built = BuiltRecord(record=record)

    try:
        table = table or load_synonym_table()
        failed_fields = set()
        required = set(profile.required_fields)
        row = list(row or [])
        headers = list(headers or [])
        bound = mapped_columns(headers, reverse_mapping)

        for column_index in range(max(len(row), len(headers))):
            header = headers[column_index] if column_index < len(headers) else None
            value = row[column_index] if column_index < len(row) else None
            cell = to_cell(value)
            field_name = bound.get(column_index)

            if field_name is None:
                if not cell.is_empty and settings.store_raw_data:
                    key = _raw_key(header, column_index)
                    if key in built.raw_data or header in reverse_mapping:
                        key = f"{key} ({column_index + 1})"
                    built.raw_data[key] = make_json_safe(cell)
                continue

            if cell.is_empty:
                continue
            built.mapped_value_count += 1

            kind = table.kind_of(field_name)
            try:
                converted = _parser_for(kind, field_name)(cell)
            except Exception as exc:  # parsers are total; this guards custom tables
                logger.debug("Unexpected conversion failure for '%s': %s", field_name, exc)
                converted = None
                detail = str(exc)
            else:
                detail = None

            if converted is None:
                if field_name in required:
                    failed_fields.add(field_name)
                    built.errors.append(_coercion_error(field_name, kind, cell.as_text(), detail))
                elif settings.store_raw_data:
                    built.raw_data[_raw_key(header, column_index)] = make_json_safe(cell)
                continue

            if field_name == LOCATION_FIELD:
                built.entity_label = converted
                continue
            record[field_name] = converted

        for field_name, default in (defaults or {}).items():
            if field_name in SYSTEM_FIELDS or field_name not in profile.all_fields:
                continue
            if field_name == LOCATION_FIELD:
                if built.entity_label is None:
                    built.entity_label = parse_text(default)
                continue
            if record.get(field_name) is None and field_name not in failed_fields:
                converted = convert_value(default, field_name, table)
                if converted is not None:
                    record[field_name] = converted

        for field_name in profile.required_fields:
            if field_name == LOCATION_FIELD or field_name in failed_fields:
                continue
            if record.get(field_name) is None:
                built.errors.append(
                    RowValidationError(
                        reason=f"Missing required field '{field_name}'",
                        field=field_name,
                        error_type=ErrorType.MISSING_REQUIRED,
                    )
                )
    except Exception as exc:
        logger.warning("Record construction failed unexpectedly: %s", exc)
        built.errors.append(
            RowValidationError(reason=f"Row could not be converted: {exc}", error_type=ErrorType.COERCION)
        )

    if settings.store_raw_data and built.raw_data:
        record["raw_data"] = built.raw_data
    built.is_complete = not built.errors
    return built
