"""
Header row inference for loosely structured spreadsheet exports.

Provider exports often start with report titles, generation timestamps and
filter summaries before the real header row. Each row in the scan window is
scored as a header candidate; metadata rows are excluded outright.
"""
from dataclasses import dataclass
import logging
import re
from typing import Any, List, Optional, Sequence

from intake.core.config import settings
from intake.domain.imports.cells import cell_text
from intake.domain.imports.matcher import match_field
from intake.domain.imports.synonyms import SynonymTable, load_synonym_table, normalize_header

logger = logging.getLogger(__name__)

LONG_CELL_LENGTH = 50
LONG_CELL_PENALTY = 20
RECOGNIZED_BONUS = 8
HEADER_PATTERN_BONUS = 5
POPULATED_CELL_WEIGHT = 2
UNIQUE_VALUES_BONUS = 5

MIN_POPULATED_CELLS = 4
MIN_RECOGNIZED_FIELDS = 3
MIN_ROW_RECOGNITION_RATE = 0.5

_HEADER_PATTERN = re.compile(
    r"^[▲▼]?\s*(datum|date|naam|name|omzet|revenue|uren|hours|team|kosten|cost|groep|"
    r"productiviteit|loonkosten|jaar|maand|bedrag|locatie|location)",
    re.IGNORECASE,
)


@dataclass
class HeaderCandidate:
    row_index: int
    score: float
    populated_count: int
    recognized_count: int
    is_metadata: bool = False

    @property
    def recognition_rate(self) -> float:
        return self.recognized_count / self.populated_count if self.populated_count else 0.0

    @property
    def is_eligible(self) -> bool:
        return (
            not self.is_metadata
            and self.populated_count >= MIN_POPULATED_CELLS
            and self.recognition_rate >= MIN_ROW_RECOGNITION_RATE
            and self.recognized_count >= MIN_RECOGNIZED_FIELDS
        )


def _is_recognized(normalized: str, table: SynonymTable) -> bool:
    for field in table.field_names():
        if match_field(normalized, field, table) > settings.match_threshold:
            return True
    return False


def score_row(row: Sequence[Any], row_index: int, table: Optional[SynonymTable] = None) -> HeaderCandidate:
    """Score a single row as a header candidate."""
    table = table or load_synonym_table()
    score = 0.0
    populated = 0
    recognized = 0
    unique_values = set()

    for value in list(row)[: settings.header_scan_max_columns]:
        text = cell_text(value)
        if text is None:
            continue

        if any(phrase in text for phrase in table.metadata_blacklist):
            return HeaderCandidate(row_index, float("-inf"), populated, recognized, is_metadata=True)

        if len(text) > LONG_CELL_LENGTH:
            score -= LONG_CELL_PENALTY

        if _is_recognized(normalize_header(text), table):
            recognized += 1
            score += RECOGNIZED_BONUS

        if _HEADER_PATTERN.match(text):
            score += HEADER_PATTERN_BONUS

        cleaned = re.sub(r"^[▲▼]\s*", "", text)
        if cleaned:
            populated += 1
            unique_values.add(cleaned.lower())

    score += populated * POPULATED_CELL_WEIGHT
    if populated and len(unique_values) == populated:
        score += UNIQUE_VALUES_BONUS

    return HeaderCandidate(row_index, score, populated, recognized)


def scan_header_candidates(
    rows: Sequence[Sequence[Any]],
    table: Optional[SynonymTable] = None,
) -> List[HeaderCandidate]:
    """Score every non-empty row in the scan window."""
    table = table or load_synonym_table()
    candidates = []
    for index, row in enumerate(list(rows)[: settings.header_scan_rows]):
        if not row:
            continue
        candidates.append(score_row(row, index, table))
    return candidates


def detect_header_row(rows: Sequence[Sequence[Any]], table: Optional[SynonymTable] = None) -> int:
    """
    Return the index of the most plausible header row.

    A row is eligible when it has at least 4 populated cells, at least 3 of
    them recognized as canonical fields and a recognition rate of 50% or more.
    The highest scoring eligible row wins; ties go to the earliest row. When no
    row is eligible, row 0 is returned and the analyzer's recognition guard
    decides whether the sheet can be imported at all.
    """
    candidates = scan_header_candidates(rows, table)
    best: Optional[HeaderCandidate] = None

    for candidate in candidates:
        if candidate.is_metadata:
            logger.debug("Row %d skipped: metadata blacklist match", candidate.row_index)
            continue
        if not candidate.is_eligible:
            if candidate.populated_count >= MIN_POPULATED_CELLS:
                logger.debug(
                    "Row %d skipped: %d/%d recognized (%.0f%%)",
                    candidate.row_index,
                    candidate.recognized_count,
                    candidate.populated_count,
                    candidate.recognition_rate * 100,
                )
            continue
        if best is None or candidate.score > best.score:
            best = candidate

    if best is None:
        logger.info("No eligible header row in the first %d rows; defaulting to row 0", settings.header_scan_rows)
        return 0

    logger.info(
        "Selected header row %d (score %.0f, %d/%d recognized)",
        best.row_index,
        best.score,
        best.recognized_count,
        best.populated_count,
    )
    return best.row_index
