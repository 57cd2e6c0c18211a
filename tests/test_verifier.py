"""
Tests for the delayed consistency verification pass.
"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from conftest import no_sleep  # noqa: E402
from registry_import.errors import StoreError  # noqa: E402
from registry_import.report import ImportReport  # noqa: E402
from registry_import.retry import RetryExecutor  # noqa: E402
from registry_import.stores.base import ResponsibilityLink  # noqa: E402
from registry_import.stores.memory import MemoryStore  # noqa: E402
from registry_import.verifier import (  # noqa: E402
    ABSENT,
    CONFIRMED,
    CORRECTED,
    CORRECTION_FAILED,
    ConsistencyVerifier,
    VerificationTarget,
    diff_links,
)


def _verifier(store, report=None, sleeps=None, settle_delay=2.0):
    executor = RetryExecutor(backoff_base=0.0, row_pause=0.0, sleep=no_sleep)
    sleep = sleeps.append if sleeps is not None else no_sleep
    return ConsistencyVerifier(store.links, executor, settle_delay, report, sleep=sleep)


# ============================================================================
# diff_links
# ============================================================================

def test_diff_reports_absent_links():
    actual = [ResponsibilityLink("c", "d1", "p1")]
    assert diff_links({"d1": "p1", "d2": None}, actual) == {"d2": (None, ABSENT)}


def test_diff_reports_wrong_person():
    assert diff_links({"d1": "p1"}, {"d1": "p9"}) == {"d1": ("p1", "p9")}


def test_diff_ignores_extra_actual_links():
    assert diff_links({"d1": "p1"}, {"d1": "p1", "d2": "p2"}) == {}


# ============================================================================
# Verification
# ============================================================================

class TestVerifier:

    def test_confirmed(self):
        store = MemoryStore()
        store.links.upsert_many([ResponsibilityLink("c1", "d1", "p1")])
        report = ImportReport("master")
        targets = _verifier(store, report).verify([VerificationTarget("101", "c1", {"d1": "p1"})])
        assert targets[0].state == CONFIRMED
        assert report.verification == {CONFIRMED: 1}

    def test_missing_link_corrected(self):
        store = MemoryStore()
        report = ImportReport("master")
        target = VerificationTarget("101", "c1", {"d1": "p1", "d2": None})
        _verifier(store, report).verify([target])
        assert target.state == CORRECTED
        assert target.mismatches == {"d1": ("p1", ABSENT), "d2": (None, ABSENT)}
        assert set(store.links.list_by_company("c1")) == {
            ResponsibilityLink("c1", "d1", "p1"),
            ResponsibilityLink("c1", "d2", None),
        }
        assert report.verification == {CORRECTED: 1}
        assert not report.needs_follow_up

    def test_failed_correction_reported(self, monkeypatch):
        store = MemoryStore()

        def rejecting_upsert(links):
            raise StoreError("permission denied", status=403)

        monkeypatch.setattr(store.links, "upsert_many", rejecting_upsert)
        report = ImportReport("master")
        target = VerificationTarget("101", "c1", {"d1": "p1"})
        _verifier(store, report).verify([target])
        assert target.state == CORRECTION_FAILED
        assert "permission denied" in target.error
        assert [(f.kind, f.key) for f in report.failures] == [("correction", "101")]
        assert report.needs_follow_up

    def test_settle_delay_applied_once(self):
        store = MemoryStore()
        sleeps = []
        targets = [VerificationTarget(str(i), f"c{i}", {"d1": None}) for i in range(3)]
        _verifier(store, sleeps=sleeps).verify(targets)
        assert sleeps == [2.0]

    def test_nothing_to_verify(self):
        sleeps = []
        assert _verifier(MemoryStore(), sleeps=sleeps).verify([]) == []
        assert sleeps == []

    def test_progress(self):
        store = MemoryStore()
        events = []
        targets = [VerificationTarget(str(i), f"c{i}", {"d1": None}) for i in range(2)]
        _verifier(store, settle_delay=0.0).verify(targets, progress=events.append)
        assert events == [
            {"done": 1, "total": 2, "phase": "verification"},
            {"done": 2, "total": 2, "phase": "verification"},
        ]
