"""
Tests for ImportReport aggregation and views.
"""
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_import.errors import ResolutionFailure  # noqa: E402
from registry_import.report import ImportReport  # noqa: E402


def test_outcome_counters():
    report = ImportReport("master")
    report.record_outcome("created")
    report.record_outcome("updated")
    report.record_outcome("unchanged", "unchanged")
    report.record_outcome("skipped", "company not found")
    report.record_outcome("skipped", "company not found")
    report.record_outcome("failed", "company write failed")
    assert (report.created, report.updated, report.skipped, report.failed) == (1, 1, 3, 1)
    assert report.skip_reasons == {"unchanged": 1, "company not found": 2}


def test_clean_run_needs_no_follow_up():
    report = ImportReport("master")
    report.record_outcome("created")
    report.record_verification("CONFIRMED")
    assert not report.needs_follow_up


def test_unresolved_needs_follow_up():
    report = ImportReport("fiscal")
    report.add_unresolved(ResolutionFailure("person", "ANA", "ambiguous first name", "101"),
                          line=3, suggestions=["Ana Silva"])
    assert report.needs_follow_up
    assert report.unresolved_by_reason() == {"ambiguous first name": 1}
    assert report.unresolved[0].to_dict() == {
        "line": 3, "code": "101", "kind": "person", "reference": "ANA",
        "reason": "ambiguous first name", "suggestions": ["Ana Silva"],
    }


def test_aborted_needs_follow_up():
    report = ImportReport("department")
    report.aborted = True
    assert report.needs_follow_up
    assert "(ABORTED)" in report.summary()


def test_to_dict_is_complete():
    report = ImportReport("master")
    report.add_failure("company", "101", ValueError("boom"))
    report.finalize()
    data = report.to_dict()
    assert data["variant"] == "master"
    assert data["failures"] == [{"kind": "company", "key": "101", "error": "boom"}]
    assert data["needs_follow_up"] is True
    assert data["completed_at"] is not None


def test_to_frame():
    report = ImportReport("master")
    report.add_unresolved(ResolutionFailure("department", "Guias", "department not found", "101"), line=2)
    report.add_failure("link", "102", "link write failed")
    frame = report.to_frame()
    assert list(frame.columns) == ["category", "line", "code", "kind", "reference", "reason"]
    assert list(frame["category"]) == ["unresolved", "failure"]
    assert list(frame["code"]) == ["101", "102"]


def test_to_frame_empty():
    frame = ImportReport("master").to_frame()
    assert len(frame) == 0
    assert "reason" in frame.columns


def test_summary_lists_sections():
    report = ImportReport("master")
    report.total_rows = 2
    report.record_outcome("created")
    report.add_department("Pessoal")
    report.rejected_columns = [{"index": 11, "header": "Fiscal Guias", "reason": "x", "non_empty": 1}]
    text = report.summary()
    assert "Created:    1" in text
    assert "Departments created: Pessoal" in text
    assert "Rejected columns: Fiscal Guias" in text
    assert "Manual follow-up required" not in text


def test_concurrent_recording():
    report = ImportReport("master")

    def work():
        for _ in range(500):
            report.record_outcome("updated")
            report.record_links(2)

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert report.updated == 2000
    assert report.links_written == 4000
