"""
Sheet analysis: header detection plus mapping, with a recognition guard.

The analysis result is an immutable snapshot that can be reviewed (and the
mapping overridden) before anything is written.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from intake.core.config import settings
from intake.domain.imports.cells import cell_text
from intake.domain.imports.errors import HeaderRecognitionError
from intake.domain.imports.header_detector import detect_header_row
from intake.domain.imports.mapping_builder import build_mapping, missing_required_fields
from intake.domain.imports.profiles import PROFILES, ImportProfile, get_profile
from intake.domain.imports.schemas import AnalysisResult
from intake.domain.imports.synonyms import SynonymTable, load_synonym_table, normalize_header

logger = logging.getLogger(__name__)


def _header_texts(row: Sequence[Any]) -> List[Optional[str]]:
    return [cell_text(value) for value in row]


def analyze_sheet(
    rows: Sequence[Sequence[Any]],
    profile,
    mapping_override: Optional[Dict[str, str]] = None,
    table: Optional[SynonymTable] = None,
) -> AnalysisResult:
    """
    Detect the header row and propose a mapping for ``profile``.

    Args:
        rows: The sheet's full row matrix.
        profile: An ``ImportProfile`` or a registered profile name.
        mapping_override: Caller-approved mapping (field -> header). When given,
            it replaces the proposal; headers it names that are not in the
            header row do not count as mapped.
        table: Synonym table; defaults to the process-wide table.

    Raises:
        HeaderRecognitionError: fewer than ``settings.min_recognition_rate``
            of the populated header cells are mapped.
    """
    profile = get_profile(profile)
    table = table or load_synonym_table()

    header_row_index = detect_header_row(rows, table) if rows else 0
    raw_headers = _header_texts(rows[header_row_index]) if rows else []
    populated_headers = [h for h in raw_headers if h is not None]

    if mapping_override is not None:
        present = set(populated_headers)
        mapping = {field: header for field, header in mapping_override.items() if header in present}
        confidence = {field: 1.0 for field in mapping}
    else:
        proposal = build_mapping(raw_headers, profile, table)
        mapping = dict(proposal.mapping)
        confidence = dict(proposal.confidence)

    mapped_count = len(set(mapping.values()))
    populated_count = len(populated_headers)
    recognition_rate = mapped_count / populated_count if populated_count else 0.0
    missing = missing_required_fields(profile, mapping)

    if recognition_rate < settings.min_recognition_rate:
        logger.warning(
            "Recognition guard rejected sheet for profile '%s': %d/%d headers mapped, missing %s",
            profile.name,
            mapped_count,
            populated_count,
            missing,
        )
        raise HeaderRecognitionError(
            mapped_count=mapped_count,
            populated_count=populated_count,
            missing_required=missing,
            header_row_index=header_row_index,
        )

    data_rows = rows[header_row_index + 1:] if rows else []
    sample_rows = [list(row) for row in data_rows[: settings.sample_row_count]]

    logger.info(
        "Analysis for profile '%s': header row %d, %d/%d headers mapped (%.0f%%)",
        profile.name,
        header_row_index,
        mapped_count,
        populated_count,
        recognition_rate * 100,
    )

    return AnalysisResult(
        profile=profile.name,
        header_row_index=header_row_index,
        headers=raw_headers,
        normalized_headers=[normalize_header(h) for h in raw_headers],
        proposed_mapping=mapping,
        confidence=confidence,
        sample_rows=sample_rows,
        required_fields=list(profile.required_fields),
        optional_fields=list(profile.optional_fields),
        missing_required=missing,
        recognition_rate=recognition_rate,
        populated_header_count=populated_count,
    )


def detect_profile(
    rows: Sequence[Sequence[Any]],
    profiles: Optional[Sequence[ImportProfile]] = None,
    table: Optional[SynonymTable] = None,
) -> ImportProfile:
    """
    Pick the profile whose required fields map best onto the sheet's header row.

    Profiles are ranked by the share of required fields mapped, then by mean
    mapping confidence. Raises ``HeaderRecognitionError`` when no profile maps
    a single required field.
    """
    table = table or load_synonym_table()
    candidates = list(profiles or PROFILES.values())
    header_row_index = detect_header_row(rows, table) if rows else 0
    headers = _header_texts(rows[header_row_index]) if rows else []

    best_profile: Optional[ImportProfile] = None
    best_key = (0.0, 0.0)
    for profile in candidates:
        proposal = build_mapping(headers, profile, table)
        required_hits = [f for f in profile.required_fields if f in proposal.mapping]
        coverage = len(required_hits) / len(profile.required_fields)
        mean_confidence = (
            sum(proposal.confidence[f] for f in required_hits) / len(required_hits) if required_hits else 0.0
        )
        key = (coverage, mean_confidence)
        logger.debug("Profile '%s' scored coverage=%.2f confidence=%.2f", profile.name, *key)
        if key > best_key:
            best_key = key
            best_profile = profile

    if best_profile is None:
        populated = len([h for h in headers if h is not None])
        raise HeaderRecognitionError(
            mapped_count=0,
            populated_count=populated,
            missing_required=[],
            header_row_index=header_row_index,
            message="Could not match the sheet to any import profile",
        )

    logger.info("Detected import profile '%s'", best_profile.name)
    return best_profile
