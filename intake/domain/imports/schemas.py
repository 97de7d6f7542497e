from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    COERCION = "coercion"
    MISSING_REQUIRED = "missing_required"
    ENTITY_RESOLUTION = "entity_resolution"
    INSERT_FAILED = "insert_failed"


class RowValidationError(BaseModel):
    """A rejected row (or field) with enough context to audit and fix it."""
    row_index: int = -1  # 0-based index into the sheet; -1 until the row processor assigns it
    reason: str
    field: Optional[str] = None
    value: Optional[Any] = None
    original_row: List[Any] = Field(default_factory=list)
    error_type: ErrorType = ErrorType.COERCION

    @property
    def row_number(self) -> int:
        """1-based spreadsheet row number, as shown by spreadsheet applications."""
        return self.row_index + 1


class MappingProposal(BaseModel):
    mapping: Dict[str, str] = Field(default_factory=dict)  # canonical field -> header
    confidence: Dict[str, float] = Field(default_factory=dict)
    strategies: Dict[str, str] = Field(default_factory=dict)  # canonical field -> how it was matched


class AnalysisResult(BaseModel):
    """Snapshot of every mapping decision, taken before any data is written."""
    model_config = ConfigDict(frozen=True)

    profile: str
    header_row_index: int
    headers: List[Optional[str]]
    normalized_headers: List[str]
    proposed_mapping: Dict[str, str]
    confidence: Dict[str, float]
    sample_rows: List[List[Any]]
    required_fields: List[str]
    optional_fields: List[str]
    missing_required: List[str]
    recognition_rate: float
    populated_header_count: int


class ProcessingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    processed_count: int
    skipped_count: int
    errors: List[RowValidationError] = Field(default_factory=list)
    cancelled: bool = False


@dataclass
class PendingRecord:
    """A coerced row waiting to be persisted, keyed back to its sheet row."""
    row_index: int
    values: Dict[str, Any]
    original_row: List[Any] = field(default_factory=list)
    merged_rows: List[int] = field(default_factory=list)  # rows folded in by natural key aggregation

    @property
    def source_row_count(self) -> int:
        return 1 + len(self.merged_rows)
