"""
Entity resolution against point-in-time directory snapshots.

Indexes are multi-value: each normalized key maps to a LIST of ids, so
collisions are tracked, not silently dropped. A key with more than one id
never resolves.

Person lookup order:
  1. exact normalized full name
  2. first-token fallback (see ImportConfig.name_fallback), only when exactly
     one known person shares the token
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rapidfuzz import fuzz, process

from .config import (
    REASON_AMBIGUOUS_FIRST_NAME,
    REASON_AMBIGUOUS_PERSON,
    REASON_DEPARTMENT_NOT_FOUND,
    REASON_PERSON_NOT_FOUND,
)
from .normalizer import first_token, normalize_name

logger = logging.getLogger(__name__)

METHOD_EXACT = "exact"
METHOD_FIRST_TOKEN = "first_token"


@dataclass
class Resolution:
    """Outcome of resolving one textual reference."""
    reference: str
    entity_id: Optional[Any] = None
    method: str = ""
    reason: str = ""
    candidates: List[Any] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.entity_id is not None


class NameIndex:
    """normalized key -> [(id, display name), ...]"""

    def __init__(self):
        self._buckets: Dict[str, List[Tuple[Any, str]]] = {}
        self.collisions = 0

    def add(self, key: str, entity_id: Any, display: str):
        if not key:
            return
        bucket = self._buckets.setdefault(key, [])
        if any(existing == entity_id for existing, _ in bucket):
            return
        if bucket:
            self.collisions += 1
        bucket.append((entity_id, display))

    def get(self, key: str) -> List[Tuple[Any, str]]:
        return list(self._buckets.get(key, ()))

    def keys(self) -> List[str]:
        return list(self._buckets)

    def __contains__(self, key: str) -> bool:
        return key in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)


class EntityResolver:
    """
    Resolves department and person references to ids.

    Build once per run from fresh snapshots; merge provisioning results with
    register_department / register_person before reconciliation.
    """

    def __init__(self, departments: Iterable = (), people: Iterable = (),
                 name_fallback: str = "first_token", suggestion_cutoff: float = 85.0):
        self.name_fallback = name_fallback
        self.suggestion_cutoff = suggestion_cutoff
        self._departments = NameIndex()
        self._people = NameIndex()
        self._people_first = NameIndex()
        self._emails: Dict[str, Any] = {}
        self._person_names: Dict[Any, str] = {}

        for dept in departments:
            self.register_department(dept.id, dept.name)
        for person in people:
            self.register_person(person.id, person.name, getattr(person, "email", ""))

        if self._people.collisions:
            logger.info("Person index: %d keys, %d full-name collisions",
                        len(self._people), self._people.collisions)

    @classmethod
    def from_config(cls, departments, people, config) -> "EntityResolver":
        return cls(departments, people,
                   name_fallback=config.name_fallback,
                   suggestion_cutoff=config.suggestion_cutoff)

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def register_department(self, dept_id: Any, name: str):
        self._departments.add(normalize_name(name), dept_id, name)

    def register_person(self, person_id: Any, name: str, email: str = ""):
        key = normalize_name(name)
        self._people.add(key, person_id, name)
        self._people_first.add(first_token(key), person_id, name)
        self._person_names.setdefault(person_id, name)
        if email:
            self._emails[email.strip().lower()] = person_id

    def person_by_email(self, email: str) -> Optional[Any]:
        return self._emails.get((email or "").strip().lower())

    def taken_emails(self) -> List[str]:
        return list(self._emails)

    def display_name(self, person_id: Any) -> str:
        return self._person_names.get(person_id, str(person_id))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def resolve_department(self, name: str) -> Resolution:
        key = normalize_name(name)
        hits = self._departments.get(key)
        if len(hits) == 1:
            return Resolution(name, hits[0][0], METHOD_EXACT)
        # two departments normalizing to the same key still resolve to "not found"
        return Resolution(name, reason=REASON_DEPARTMENT_NOT_FOUND,
                          candidates=[h[0] for h in hits])

    def resolve_person(self, name: str) -> Resolution:
        key = normalize_name(name)
        if not key:
            return Resolution(name or "", reason=REASON_PERSON_NOT_FOUND)

        hits = self._people.get(key)
        if len(hits) == 1:
            return Resolution(name, hits[0][0], METHOD_EXACT)
        if len(hits) > 1:
            return Resolution(name, reason=REASON_AMBIGUOUS_PERSON, candidates=[h[0] for h in hits])

        if self.name_fallback == "none":
            return Resolution(name, reason=REASON_PERSON_NOT_FOUND)

        token = first_token(key)
        if self.name_fallback == "single_token" and token != key:
            return Resolution(name, reason=REASON_PERSON_NOT_FOUND)

        first_hits = self._people_first.get(token)
        if len(first_hits) == 1:
            logger.debug("Resolved '%s' by first name to '%s'", name, first_hits[0][1])
            return Resolution(name, first_hits[0][0], METHOD_FIRST_TOKEN)
        if len(first_hits) > 1:
            return Resolution(name, reason=REASON_AMBIGUOUS_FIRST_NAME,
                              candidates=[h[0] for h in first_hits])
        return Resolution(name, reason=REASON_PERSON_NOT_FOUND)

    def suggest(self, name: str, limit: int = 3) -> List[str]:
        """
        Near-duplicate known person names, for manual follow-up only.

        Uses RapidFuzz token_set_ratio so accent or word-order variants of the
        same person surface in the report. Never used to resolve.
        """
        key = normalize_name(name)
        if not key or not len(self._people):
            return []
        matches = process.extract(
            key,
            self._people.keys(),
            scorer=fuzz.token_set_ratio,
            score_cutoff=self.suggestion_cutoff,
            limit=limit,
        )
        suggestions = []
        for candidate_key, _score, _idx in matches:
            for _pid, display in self._people.get(candidate_key):
                if display not in suggestions:
                    suggestions.append(display)
        return suggestions[:limit]
