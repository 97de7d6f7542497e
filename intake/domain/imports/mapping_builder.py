"""
Mapping builder: canonical field -> spreadsheet header.

Uses multiple strategies, in order:
1. Synonym matching (exact, substring, edit distance) per field
2. Positional templates for profiles with a known fixed column layout
3. Loose token matching of the field name against header tokens
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from intake.core.config import settings
from intake.domain.imports.cells import cell_text
from intake.domain.imports.matcher import match_field
from intake.domain.imports.profiles import ImportProfile
from intake.domain.imports.schemas import MappingProposal
from intake.domain.imports.synonyms import SynonymTable, load_synonym_table, normalize_header

logger = logging.getLogger(__name__)

TEMPLATE_CONFIDENCE = 0.6
LOOSE_MATCH_CONFIDENCE = 0.55
# Below this mean first-pass confidence a fixed layout is trusted over the header text.
LOW_CONFIDENCE_CEILING = 0.6


def _populated_headers(headers: Sequence[Any]) -> List[str]:
    return [text for text in (cell_text(h) for h in headers) if text is not None]


def _synonym_pass(
    fields: Sequence[str],
    headers: List[str],
    table: SynonymTable,
    proposal: MappingProposal,
    claimed: set,
) -> None:
    for field in fields:
        best_header: Optional[str] = None
        best_confidence = 0.0
        for header in headers:
            if header in claimed:
                continue
            confidence = match_field(normalize_header(header), field, table)
            if confidence > best_confidence:
                best_header = header
                best_confidence = confidence
        if best_header is not None and best_confidence > settings.match_threshold:
            proposal.mapping[field] = best_header
            proposal.confidence[field] = best_confidence
            proposal.strategies[field] = "synonym"
            claimed.add(best_header)
            logger.debug("Mapped '%s' -> '%s' (confidence %.2f)", field, best_header, best_confidence)


def _template_pass(
    profile: ImportProfile,
    headers: List[str],
    proposal: MappingProposal,
    claimed: set,
) -> bool:
    template = profile.positional_template
    if not template or len(headers) != len(template):
        return False

    mean_confidence = (
        sum(proposal.confidence.values()) / len(proposal.confidence) if proposal.confidence else 0.0
    )
    if proposal.mapping and mean_confidence >= LOW_CONFIDENCE_CEILING:
        return False

    applied = False
    for field, header in zip(template, headers):
        if field in proposal.mapping or header in claimed:
            continue
        proposal.mapping[field] = header
        proposal.confidence[field] = TEMPLATE_CONFIDENCE
        proposal.strategies[field] = "template"
        claimed.add(header)
        applied = True
    if applied:
        logger.info("Applied positional template for profile '%s'", profile.name)
    return applied


def _loose_pass(
    fields: Sequence[str],
    headers: List[str],
    proposal: MappingProposal,
    claimed: set,
) -> None:
    for field in fields:
        if field in proposal.mapping:
            continue
        field_tokens = [token for token in field.split("_") if len(token) >= 2]
        for header in headers:
            if header in claimed:
                continue
            header_tokens = normalize_header(header).split()
            if any(token in header_token or header_token in token
                   for token in field_tokens
                   for header_token in header_tokens
                   if len(header_token) >= 2):
                proposal.mapping[field] = header
                proposal.confidence[field] = LOOSE_MATCH_CONFIDENCE
                proposal.strategies[field] = "loose"
                claimed.add(header)
                logger.info("Loose match for required field '%s' -> '%s'", field, header)
                break


def missing_required_fields(profile: ImportProfile, mapping: Dict[str, Any]) -> List[str]:
    return [field for field in profile.required_fields if not mapping.get(field)]


def build_mapping(
    headers: Sequence[Any],
    profile: ImportProfile,
    table: Optional[SynonymTable] = None,
) -> MappingProposal:
    """
    Build the field mapping for a profile from a header row.

    Required fields are matched before optional ones and a header is never
    claimed twice. Fallback strategies only run while a required field is
    still unmapped.
    """
    table = table or load_synonym_table()
    populated = _populated_headers(headers)
    proposal = MappingProposal()
    claimed: set = set()

    _synonym_pass(profile.all_fields, populated, table, proposal, claimed)

    if missing_required_fields(profile, proposal.mapping):
        _template_pass(profile, populated, proposal, claimed)

    missing = missing_required_fields(profile, proposal.mapping)
    if missing:
        _loose_pass(missing, populated, proposal, claimed)

    missing = missing_required_fields(profile, proposal.mapping)
    if missing:
        logger.warning("Profile '%s': required fields still unmapped: %s", profile.name, missing)

    return proposal
