"""
Import report: the single structured result of a run.

Workers record into it concurrently, so every mutator takes the lock.
"""

import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ResolutionFailure

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass
class UnresolvedReference:
    """A department/person reference that could not be turned into an id."""
    line: int
    code: str
    kind: str
    reference: str
    reason: str
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.line,
            "code": self.code,
            "kind": self.kind,
            "reference": self.reference,
            "reason": self.reason,
            "suggestions": list(self.suggestions),
        }


@dataclass
class FailureRecord:
    kind: str
    key: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "key": self.key, "error": self.error}


@dataclass
class ImportReport:
    """
    Aggregated outcome of one import.

    Attributes:
        variant: "master", "fiscal" or "department"
        created/updated/skipped/failed: company row outcomes
        skip_reasons: breakdown of `skipped` (includes "unchanged")
        departments_created / persons_created: provisioned entities
        unresolved: references left for manual follow-up
        failures: rows/entities that failed (kind = company, link, person, department, correction)
        verification: counts per terminal verifier state
    """
    variant: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    total_rows: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    departments_created: List[str] = field(default_factory=list)
    persons_created: List[Dict[str, str]] = field(default_factory=list)
    unresolved: List[UnresolvedReference] = field(default_factory=list)
    failures: List[FailureRecord] = field(default_factory=list)
    rejected_columns: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fallback_resolutions: List[Dict[str, str]] = field(default_factory=list)
    verification: Dict[str, int] = field(default_factory=dict)
    links_written: int = 0
    retries: int = 0
    enriched: int = 0
    aborted: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_outcome(self, outcome: str, reason: str = ""):
        with self._lock:
            if outcome == OUTCOME_CREATED:
                self.created += 1
            elif outcome == OUTCOME_UPDATED:
                self.updated += 1
            elif outcome == OUTCOME_FAILED:
                self.failed += 1
            else:
                self.skipped += 1
                key = reason or outcome
                self.skip_reasons[key] = self.skip_reasons.get(key, 0) + 1

    def record_links(self, count: int):
        with self._lock:
            self.links_written += count

    def record_enriched(self):
        with self._lock:
            self.enriched += 1

    def add_failure(self, kind: str, key: str, error):
        with self._lock:
            self.failures.append(FailureRecord(kind, key, str(error)))

    def add_unresolved(self, failure: ResolutionFailure, line: int = 0,
                       suggestions: List[str] = None):
        with self._lock:
            self.unresolved.append(UnresolvedReference(
                line, failure.code or "", failure.kind, failure.reference, failure.reason,
                list(suggestions or []),
            ))

    def add_department(self, name: str):
        with self._lock:
            self.departments_created.append(name)

    def add_person(self, name: str, email: str):
        with self._lock:
            self.persons_created.append({"name": name, "email": email})

    def add_warning(self, message: str):
        with self._lock:
            self.warnings.append(message)

    def add_fallback(self, reference: str, resolved_to: str, code: str = ""):
        with self._lock:
            self.fallback_resolutions.append(
                {"reference": reference, "resolved_to": resolved_to, "code": code}
            )

    def record_verification(self, state: str):
        with self._lock:
            self.verification[state] = self.verification.get(state, 0) + 1

    def finalize(self):
        self.completed_at = datetime.now()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def needs_follow_up(self) -> bool:
        """True when a human has to look at something before the import is complete."""
        return bool(
            self.unresolved
            or self.failures
            or self.verification.get("CORRECTION_FAILED", 0)
            or self.aborted
        )

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def unresolved_by_reason(self) -> Dict[str, int]:
        return dict(Counter(u.reason for u in self.unresolved))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_rows": self.total_rows,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "skip_reasons": dict(self.skip_reasons),
            "departments_created": list(self.departments_created),
            "persons_created": list(self.persons_created),
            "unresolved": [u.to_dict() for u in self.unresolved],
            "failures": [f.to_dict() for f in self.failures],
            "rejected_columns": list(self.rejected_columns),
            "warnings": list(self.warnings),
            "fallback_resolutions": list(self.fallback_resolutions),
            "verification": dict(self.verification),
            "links_written": self.links_written,
            "retries": self.retries,
            "enriched": self.enriched,
            "aborted": self.aborted,
            "needs_follow_up": self.needs_follow_up,
        }

    def to_frame(self):
        """
        Unresolved references and failures as one pandas DataFrame
        (columns: category, line, code, kind, reference, reason).
        """
        import pandas as pd

        records = [
            {"category": "unresolved", "line": u.line, "code": u.code, "kind": u.kind,
             "reference": u.reference, "reason": u.reason}
            for u in self.unresolved
        ]
        records.extend(
            {"category": "failure", "line": None, "code": f.key, "kind": f.kind,
             "reference": "", "reason": f.error}
            for f in self.failures
        )
        return pd.DataFrame.from_records(
            records, columns=["category", "line", "code", "kind", "reference", "reason"]
        )

    def summary(self) -> str:
        lines = [
            f"Import {self.variant} [{self.run_id}]"
            + (" (ABORTED)" if self.aborted else ""),
            f"  Rows:       {self.total_rows:,}",
            f"  Created:    {self.created:,}",
            f"  Updated:    {self.updated:,}",
            f"  Skipped:    {self.skipped:,}",
            f"  Failed:     {self.failed:,}",
        ]
        for reason, count in sorted(self.skip_reasons.items()):
            lines.append(f"    {reason:<28} {count:,}")
        if self.departments_created:
            lines.append(f"  Departments created: {', '.join(self.departments_created)}")
        if self.persons_created:
            lines.append(f"  Persons created:     {len(self.persons_created):,}")
        if self.unresolved:
            lines.append(f"  Unresolved references: {len(self.unresolved):,}")
            for reason, count in sorted(self.unresolved_by_reason().items()):
                lines.append(f"    {reason:<28} {count:,}")
        if self.rejected_columns:
            headers = ", ".join(c["header"] for c in self.rejected_columns)
            lines.append(f"  Rejected columns: {headers}")
        if self.verification:
            states = ", ".join(f"{k}={v}" for k, v in sorted(self.verification.items()))
            lines.append(f"  Verification: {states}")
        if self.retries:
            lines.append(f"  Retries: {self.retries:,}")
        if self.needs_follow_up:
            lines.append("  Manual follow-up required")
        return "\n".join(lines)
