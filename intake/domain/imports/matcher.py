"""
Field synonym matcher.

Scores how well a normalized header token matches a canonical field using the
read-only synonym table.
"""
from typing import Optional, Tuple

from rapidfuzz.distance import Levenshtein

from intake.domain.imports.synonyms import SynonymTable, load_synonym_table

EXACT_CONFIDENCE = 1.0
SUBSTRING_CONFIDENCE = 0.85
EDIT_DISTANCE_FLOOR = 0.65
EDIT_DISTANCE_STEP = 0.15
MAX_EDIT_DISTANCE = 2


def match_field(token: Optional[str], field: str, table: Optional[SynonymTable] = None) -> float:
    """
    Return the confidence (0.0 - 1.0) that a normalized header token denotes ``field``.

    Tiers, first match wins:
    1. token equals the field name literally -> 1.0
    2. token equals a synonym -> 1.0
    3. token contains a synonym or a synonym contains the token -> 0.85
    4. Levenshtein distance to a synonym <= 2 -> max(0.65, 1 - distance * 0.15)
    5. anything else -> 0.0
    """
    if not token or not field:
        return 0.0
    token = token.strip()
    if not token:
        return 0.0

    if token == field or token == field.replace("_", " "):
        return EXACT_CONFIDENCE

    table = table or load_synonym_table()
    synonyms = table.normalized_synonyms(field)

    if token in synonyms:
        return EXACT_CONFIDENCE

    for synonym in synonyms:
        if synonym in token or token in synonym:
            return SUBSTRING_CONFIDENCE

    best_distance = None
    for synonym in synonyms:
        distance = Levenshtein.distance(token, synonym, score_cutoff=MAX_EDIT_DISTANCE)
        if distance <= MAX_EDIT_DISTANCE and (best_distance is None or distance < best_distance):
            best_distance = distance
    if best_distance is not None:
        return max(EDIT_DISTANCE_FLOOR, EXACT_CONFIDENCE - best_distance * EDIT_DISTANCE_STEP)

    return 0.0


def best_field_match(token: Optional[str], table: Optional[SynonymTable] = None) -> Tuple[Optional[str], float]:
    """Return the best scoring canonical field for a token across the whole table."""
    table = table or load_synonym_table()
    best_field = None
    best_confidence = 0.0
    for name in table.field_names():
        confidence = match_field(token, name, table)
        if confidence > best_confidence:
            best_field = name
            best_confidence = confidence
            if confidence >= EXACT_CONFIDENCE:
                break
    return best_field, best_confidence
