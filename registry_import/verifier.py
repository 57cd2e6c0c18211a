"""
Consistency Verifier

Delayed second pass over the links written by the reconciliation phase.
After a settle delay, the persisted links of every written company are
re-read and compared with the intended ones; divergent companies get one
corrective upsert. Under a strongly consistent store every target ends
CONFIRMED.

State machine per company:
    PENDING -> VERIFYING -> CONFIRMED | CORRECTED | CORRECTION_FAILED
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .config import PHASE_VERIFICATION
from .errors import ConsistencyMismatch, WriteFailure
from .stores.base import ResponsibilityLink

logger = logging.getLogger(__name__)

PENDING = "PENDING"
VERIFYING = "VERIFYING"
CONFIRMED = "CONFIRMED"
CORRECTED = "CORRECTED"
CORRECTION_FAILED = "CORRECTION_FAILED"

TERMINAL_STATES = (CONFIRMED, CORRECTED, CORRECTION_FAILED)

# marks a link that is missing entirely (as opposed to an explicit null)
ABSENT = "<absent>"


@dataclass
class VerificationTarget:
    code: str
    company_id: Any
    intended: Dict[Any, Optional[Any]]
    state: str = PENDING
    mismatches: Dict[Any, Tuple[Any, Any]] = field(default_factory=dict)
    error: Optional[str] = None


def diff_links(expected: Dict[Any, Optional[Any]],
               actual: Union[Dict[Any, Optional[Any]], Iterable[ResponsibilityLink]]
               ) -> Dict[Any, Tuple[Optional[Any], Any]]:
    """
    Compare intended links with persisted ones.

    Only departments present in `expected` are checked. Returns
    department id -> (expected person, actual person or ABSENT).
    """
    if not isinstance(actual, dict):
        actual = {link.department_id: link.person_id for link in actual}
    return {
        dept_id: (person_id, actual.get(dept_id, ABSENT))
        for dept_id, person_id in expected.items()
        if dept_id not in actual or actual[dept_id] != person_id
    }


class ConsistencyVerifier:
    """
    Args:
        links: LinkStore
        executor: RetryExecutor
        settle_delay: seconds to wait once before the first re-read
        report: ImportReport receiving terminal states and failures
        sleep: injectable sleep function
    """

    def __init__(self, links, executor, settle_delay: float = 2.0, report=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.links = links
        self.executor = executor
        self.settle_delay = settle_delay
        self.report = report
        self._sleep = sleep

    def verify(self, targets: List[VerificationTarget],
               progress: Optional[Callable[[Dict[str, Any]], None]] = None) -> List[VerificationTarget]:
        if not targets:
            return targets

        logger.info("Verification: settling %.1fs before re-reading %d companies",
                    self.settle_delay, len(targets))
        if self.settle_delay > 0:
            self._sleep(self.settle_delay)

        for i, target in enumerate(targets, start=1):
            self._verify_one(target)
            if self.report:
                self.report.record_verification(target.state)
            if progress:
                progress({"done": i, "total": len(targets), "phase": PHASE_VERIFICATION})

        corrected = sum(1 for t in targets if t.state == CORRECTED)
        failed = sum(1 for t in targets if t.state == CORRECTION_FAILED)
        logger.info("Verification complete: %d confirmed, %d corrected, %d failed",
                    len(targets) - corrected - failed, corrected, failed)
        return targets

    def _verify_one(self, target: VerificationTarget):
        target.state = VERIFYING
        try:
            current = self.executor.call(self.links.list_by_company, target.company_id,
                                         description=f"verify links of {target.code}")
        except WriteFailure as e:
            self._fail(target, e)
            return

        target.mismatches = diff_links(target.intended, current)
        if not target.mismatches:
            target.state = CONFIRMED
            return

        mismatch = ConsistencyMismatch(target.code, target.mismatches)
        logger.warning("%s, correcting", mismatch)
        batch = [ResponsibilityLink(target.company_id, dept_id, expected)
                 for dept_id, (expected, _actual) in target.mismatches.items()]
        try:
            self.executor.call(self.links.upsert_many, batch,
                               description=f"correct links of {target.code}")
        except WriteFailure as e:
            self._fail(target, e)
            return
        target.state = CORRECTED

    def _fail(self, target: VerificationTarget, error: Exception):
        target.state = CORRECTION_FAILED
        target.error = str(error)
        logger.warning("Verification of %s failed: %s", target.code, error)
        if self.report:
            self.report.add_failure("correction", target.code, error)
