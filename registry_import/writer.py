"""
Reconciliation Writer

Idempotent writes keyed by business identity:
- companies by code (insert when unseen, else patch only differing fields)
- responsibility links by (company, department), one multi-row upsert per company

A link diff distinguishes "absent" from "explicit null": a desired null
over an absent link is still written, so a cleared department is recorded
as known-empty.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import REASON_COMPANY_NOT_FOUND, REASON_UNCHANGED
from .errors import WriteFailure
from .mappers.base import ParsedRow
from .normalizer import only_digits
from .report import (
    OUTCOME_CREATED,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
)
from .stores.base import ResponsibilityLink

logger = logging.getLogger(__name__)


@dataclass
class ResolvedRow:
    """A ParsedRow with its department/person references turned into ids."""
    row: ParsedRow
    links: Dict[Any, Optional[Any]] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.row.code


@dataclass
class WriteResult:
    code: str
    outcome: str
    reason: str = ""
    company_id: Optional[Any] = None
    links: Dict[Any, Optional[Any]] = field(default_factory=dict)
    links_written: int = 0
    enriched: bool = False
    error: Optional[str] = None

    @property
    def written(self) -> bool:
        return self.company_id is not None and self.outcome != OUTCOME_FAILED


def diff_fields(current: Dict[str, Any], supplied: Dict[str, Any]) -> Dict[str, Any]:
    """Supplied fields whose value differs from the stored one."""
    return {k: v for k, v in supplied.items() if current.get(k) != v}


def diff_link_changes(desired: Dict[Any, Optional[Any]],
                      current: List[ResponsibilityLink]) -> Dict[Any, Optional[Any]]:
    """Desired links that are absent or hold a different person."""
    existing = {link.department_id: link.person_id for link in current}
    return {
        dept_id: person_id
        for dept_id, person_id in desired.items()
        if dept_id not in existing or existing[dept_id] != person_id
    }


class ReconciliationWriter:
    """
    Args:
        companies: CompanyRegistry
        links: LinkStore
        executor: RetryExecutor
        allow_create: False for matrix imports (unknown codes are skipped)
        enricher: optional CnpjLookup-like object with lookup(tax_id) -> dict
    """

    def __init__(self, companies, links, executor, allow_create: bool = True, enricher=None):
        self.companies = companies
        self.links = links
        self.executor = executor
        self.allow_create = allow_create
        self.enricher = enricher

    def _enrich(self, fields: Dict[str, Any]) -> bool:
        if self.enricher is None or len(only_digits(fields.get("tax_id", ""))) != 14:
            return False
        extra = self.enricher.lookup(fields["tax_id"])
        added = False
        for key, value in extra.items():
            if value and not fields.get(key):
                fields[key] = value
                added = True
        return added

    def write_row(self, resolved: ResolvedRow) -> WriteResult:
        """
        Upsert one company and its links.

        The company write always completes before the link write.
        WriteFailure is caught here and turned into a failed result.
        """
        row = resolved.row
        code = row.code
        result = WriteResult(code=code, outcome=OUTCOME_UNCHANGED)

        try:
            company = self.executor.call(self.companies.get_by_code, code,
                                         description=f"get company {code}")
            if company is None:
                if not self.allow_create:
                    result.outcome = OUTCOME_SKIPPED
                    result.reason = REASON_COMPANY_NOT_FOUND
                    logger.warning("Company %s not found, skipping", code)
                    return result
                fields = dict(row.fields)
                result.enriched = self._enrich(fields)
                company = self.executor.call(self.companies.insert, code, fields,
                                             description=f"insert company {code}")
                result.outcome = OUTCOME_CREATED
            else:
                patch = diff_fields(company.fields, row.fields)
                if patch:
                    company = self.executor.call(self.companies.update, company.id, patch,
                                                 description=f"update company {code}")
                    result.outcome = OUTCOME_UPDATED
                    logger.debug("Company %s patched: %s", code, sorted(patch))
        except WriteFailure as e:
            result.outcome = OUTCOME_FAILED
            result.reason = "company write failed"
            result.error = str(e)
            return result

        result.company_id = company.id
        result.links = dict(resolved.links)
        if not resolved.links:
            return self._finish(result)

        try:
            current = self.executor.call(self.links.list_by_company, company.id,
                                         description=f"read links of {code}")
            changes = diff_link_changes(resolved.links, current)
            if changes:
                batch = [ResponsibilityLink(company.id, dept_id, person_id)
                         for dept_id, person_id in changes.items()]
                self.executor.call(self.links.upsert_many, batch,
                                   description=f"upsert {len(batch)} link(s) of {code}")
                result.links_written = len(batch)
                if result.outcome == OUTCOME_UNCHANGED:
                    result.outcome = OUTCOME_UPDATED
        except WriteFailure as e:
            result.outcome = OUTCOME_FAILED
            result.reason = "link write failed"
            result.error = str(e)
            return result

        return self._finish(result)

    @staticmethod
    def _finish(result: WriteResult) -> WriteResult:
        if result.outcome == OUTCOME_UNCHANGED:
            result.reason = REASON_UNCHANGED
        return result
