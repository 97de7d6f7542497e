"""
Entity resolution for rows that carry their own location name.
"""
import logging
import re
from typing import Dict, Iterable, Optional, Protocol, Tuple

from sqlalchemy import select
from sqlalchemy.engine import Engine

from intake.db.models import Location
from intake.db.session import get_engine

logger = logging.getLogger(__name__)


class EntityResolver(Protocol):
    def resolve(self, name: str) -> Optional[str]:
        """Return the canonical entity id for ``name`` or None when unknown."""
        ...


def normalize_entity_name(name: Optional[str]) -> str:
    if not name:
        return ""
    return re.sub(r"\s+", " ", str(name)).strip().lower()


class LocationDirectory:
    """
    Name -> id lookup over the ``locations`` table.

    Names match case- and whitespace-insensitively. When no name matches
    exactly, a label is accepted if it contains (or is contained in) exactly
    one known name, so "Van Kinsbergen Amsterdam" resolves to "Van Kinsbergen".
    Ambiguous partial matches resolve to None.
    """

    def __init__(self, entries: Iterable[Tuple[str, str]]):
        self._by_name: Dict[str, str] = {}
        for entity_id, name in entries:
            key = normalize_entity_name(name)
            if key:
                self._by_name[key] = entity_id

    @classmethod
    def from_engine(cls, engine: Optional[Engine] = None) -> "LocationDirectory":
        engine = engine or get_engine()
        with engine.connect() as conn:
            rows = conn.execute(select(Location.id, Location.name)).all()
        logger.info("Loaded %d locations for entity resolution", len(rows))
        return cls((row.id, row.name) for row in rows)

    def __len__(self) -> int:
        return len(self._by_name)

    def resolve(self, name: str) -> Optional[str]:
        key = normalize_entity_name(name)
        if not key:
            return None
        if key in self._by_name:
            return self._by_name[key]

        partial = {
            entity_id
            for known, entity_id in self._by_name.items()
            if known in key or key in known
        }
        if len(partial) == 1:
            return partial.pop()
        if partial:
            logger.debug("Ambiguous location label '%s' matches %d locations", name, len(partial))
        return None


class CachedEntityResolver:
    """Memoizes lookups of another resolver for the lifetime of one run."""

    def __init__(self, resolver: EntityResolver):
        self._resolver = resolver
        self._cache: Dict[str, Optional[str]] = {}
        self.lookups = 0

    def resolve(self, name: str) -> Optional[str]:
        key = normalize_entity_name(name)
        if key not in self._cache:
            self.lookups += 1
            self._cache[key] = self._resolver.resolve(name)
        return self._cache[key]
