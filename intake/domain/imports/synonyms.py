"""
Canonical field catalogue and synonym table.

The table is process-wide and read-only: it is built once (optionally from the
JSON file named by ``settings.synonyms_path``) and handed to the matcher as a
frozen object. Nothing mutates it at runtime.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
import json
import logging
import re
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, PrivateAttr

from intake.core.config import settings

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    TEXT = "text"
    DATE = "date"
    NUMBER = "number"
    DURATION = "duration"
    MONTH = "month"
    YEAR = "year"
    ENTITY = "entity"  # per-row entity label, resolved rather than stored


class CanonicalField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: FieldKind
    synonyms: Tuple[str, ...] = ()


class SynonymTable(BaseModel):
    """Immutable field catalogue shared by every import run in the process."""
    model_config = ConfigDict(frozen=True)

    fields: Tuple[CanonicalField, ...]
    metadata_blacklist: Tuple[str, ...] = ()

    _synonym_index: Dict[str, Tuple[str, ...]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context) -> None:
        index = {}
        for field in self.fields:
            normalized = (normalize_header(s) for s in field.synonyms)
            index[field.name] = tuple(dict.fromkeys(s for s in normalized if s))
        self._synonym_index = index

    def get(self, name: str) -> Optional[CanonicalField]:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def field_names(self) -> Tuple[str, ...]:
        return tuple(field.name for field in self.fields)

    def kind_of(self, name: str) -> FieldKind:
        field = self.get(name)
        return field.kind if field else FieldKind.TEXT

    def normalized_synonyms(self, name: str) -> Tuple[str, ...]:
        return self._synonym_index.get(name, ())


_SORT_MARKERS = re.compile(r"^[▲▼↑↓]\s*|\s*[▲▼↑↓]$")


def normalize_header(value) -> str:
    """
    Normalize a header cell for comparison.

    - Lowercase, trimmed
    - Sort markers (▲ ▼) removed
    - Underscores, hyphens, slashes and repeated whitespace collapse to one space
    - Trailing colons and surrounding punctuation dropped ('%' and '€' are kept)

    Examples:
        "▲ Datum" -> "datum"
        "Gewerkte_Uren:" -> "gewerkte uren"
        "Loonkosten (%)" -> "loonkosten %"
    """
    if value is None:
        return ""
    text = str(value).strip().lower()
    text = _SORT_MARKERS.sub("", text)
    text = re.sub(r"[_\-/\\|]+", " ", text)
    text = re.sub(r"[^\w\s%€]", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


DEFAULT_FIELDS: Tuple[CanonicalField, ...] = (
    CanonicalField(name="date", kind=FieldKind.DATE, synonyms=(
        "datum", "date", "dag", "day", "transactiedatum", "boekdatum", "werkdatum", "shift datum",
    )),
    CanonicalField(name="product_name", kind=FieldKind.TEXT, synonyms=(
        "product", "productnaam", "product name", "artikel", "artikelnaam", "item", "omschrijving",
    )),
    CanonicalField(name="category", kind=FieldKind.TEXT, synonyms=(
        "categorie", "category", "productgroep", "hoofdgroep", "groep", "omzetgroep", "rubriek",
    )),
    CanonicalField(name="subcategory", kind=FieldKind.TEXT, synonyms=(
        "subcategorie", "subcategory", "subgroep", "sub categorie",
    )),
    CanonicalField(name="quantity", kind=FieldKind.NUMBER, synonyms=(
        "aantal", "quantity", "qty", "stuks", "aantal verkocht", "count",
    )),
    CanonicalField(name="price", kind=FieldKind.NUMBER, synonyms=(
        "prijs", "price", "stukprijs", "unit price", "verkoopprijs",
    )),
    CanonicalField(name="revenue", kind=FieldKind.NUMBER, synonyms=(
        "omzet", "revenue", "sales", "netto omzet", "omzet incl btw", "omzet excl btw", "turnover",
    )),
    CanonicalField(name="location_name", kind=FieldKind.ENTITY, synonyms=(
        "locatie", "location", "vestiging", "filiaal", "omgeving", "environment", "site", "restaurant",
    )),
    CanonicalField(name="employee_name", kind=FieldKind.TEXT, synonyms=(
        "medewerker", "naam", "name", "employee", "werknemer", "personeelslid", "naam medewerker",
    )),
    CanonicalField(name="team_name", kind=FieldKind.TEXT, synonyms=(
        "team", "teamnaam", "team name", "afdeling", "department",
    )),
    CanonicalField(name="hours", kind=FieldKind.DURATION, synonyms=(
        "uren", "hours", "gewerkte uren", "worked hours", "totaal uren", "gewerkt",
    )),
    CanonicalField(name="hours_worked", kind=FieldKind.DURATION, synonyms=(
        "uren gewerkt", "hours worked", "gewerkte uren", "gewerkte tijd", "uren",
    )),
    CanonicalField(name="hourly_rate", kind=FieldKind.NUMBER, synonyms=(
        "uurtarief", "hourly rate", "tarief", "uurloon", "rate",
    )),
    CanonicalField(name="base_hourly_wage", kind=FieldKind.NUMBER, synonyms=(
        "basis uurloon", "base hourly wage", "base wage", "bruto uurloon",
    )),
    CanonicalField(name="labor_cost", kind=FieldKind.NUMBER, synonyms=(
        "loonkosten", "labor cost", "labour cost", "personeelskosten", "wage cost", "kosten",
    )),
    CanonicalField(name="labor_cost_percentage", kind=FieldKind.NUMBER, synonyms=(
        "loonkosten %", "loonkostenpercentage", "labor cost %", "labor cost percentage", "arbeidskosten %",
    )),
    CanonicalField(name="productivity_per_hour", kind=FieldKind.NUMBER, synonyms=(
        "productiviteit", "productivity", "omzet per uur", "revenue per hour", "productiviteit per uur",
    )),
    CanonicalField(name="contract_type", kind=FieldKind.TEXT, synonyms=(
        "contract", "contracttype", "contract type", "dienstverband",
    )),
    CanonicalField(name="year", kind=FieldKind.YEAR, synonyms=(
        "jaar", "year", "boekjaar", "fiscal year",
    )),
    CanonicalField(name="month", kind=FieldKind.MONTH, synonyms=(
        "maand", "month", "periode", "period", "boekperiode",
    )),
    CanonicalField(name="gl_account", kind=FieldKind.TEXT, synonyms=(
        "grootboekrekening", "grootboek", "gl account", "gl rekening", "rekening", "account",
        "grootboekrekeningnummer",
    )),
    CanonicalField(name="amount", kind=FieldKind.NUMBER, synonyms=(
        "bedrag", "amount", "waarde", "value", "saldo", "totaal",
    )),
)

# Phrases that only ever appear in report preambles, never in a header row.
DEFAULT_METADATA_BLACKLIST: Tuple[str, ...] = (
    "Gegenereerd op",
    "Generated on",
    "Generated at",
    "Geëxporteerd op",
    "Exported on",
    "Afgedrukt op",
    "Printed on",
    "Rapportage periode",
    "Report period",
    "Filters toegepast",
    "Applied filters",
    "Alle rechten voorbehouden",
)


def _fields_from_payload(payload: Dict) -> Tuple[CanonicalField, ...]:
    fields = []
    for name, entry in payload.get("fields", {}).items():
        fields.append(
            CanonicalField(
                name=name,
                kind=FieldKind(entry.get("kind", "text")),
                synonyms=tuple(entry.get("synonyms", ())),
            )
        )
    return tuple(fields)


def build_synonym_table(
    fields: Iterable[CanonicalField] = DEFAULT_FIELDS,
    metadata_blacklist: Iterable[str] = DEFAULT_METADATA_BLACKLIST,
) -> SynonymTable:
    return SynonymTable(fields=tuple(fields), metadata_blacklist=tuple(metadata_blacklist))


@lru_cache(maxsize=1)
def load_synonym_table() -> SynonymTable:
    """
    Load the process-wide synonym table once.

    When ``settings.synonyms_path`` points to a JSON document of the form
    ``{"fields": {"date": {"kind": "date", "synonyms": [...]}}, "metadata_blacklist": [...]}``
    it replaces the built-in catalogue; otherwise the defaults are used.
    """
    if not settings.synonyms_path:
        return build_synonym_table()

    with open(settings.synonyms_path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)

    table = build_synonym_table(
        fields=_fields_from_payload(payload),
        metadata_blacklist=payload.get("metadata_blacklist", DEFAULT_METADATA_BLACKLIST),
    )
    logger.info(
        "Loaded synonym table from %s (%d fields)", settings.synonyms_path, len(table.fields)
    )
    return table
