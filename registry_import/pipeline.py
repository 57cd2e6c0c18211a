"""
Import Pipeline

Orchestrates one import run. Phases run strictly in order because each
phase reads what the previous one committed:

1. Parse          - tokenize + map (ParseError aborts before any write)
2. Snapshot       - fresh department/person listings -> EntityResolver
3. Provisioning   - create referenced-but-unknown departments and persons
4. Resolution     - references -> ids, against the merged index
5. Reconciliation - company + link upserts, batches of `batch_size` rows
                    run concurrently (one company per worker)
6. Verification   - settle delay, re-read, correct divergent links
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from .config import (
    FISCAL_DEPARTMENT,
    PHASE_RECONCILIATION,
    REASON_PERSON_NOT_FOUND,
    REASON_PROVISIONING_FAILED,
    ImportConfig,
)
from .errors import ParseError, ResolutionFailure
from .mappers import MasterMapper, MatrixMapper
from .mappers.base import BaseMapper, MappingResult, ParsedRow
from .mappers.matrix import block_summary
from .normalizer import normalize_name
from .provisioner import EntityProvisioner, ProvisioningResult, provisioning_progress
from .report import OUTCOME_FAILED, OUTCOME_SKIPPED, ImportReport
from .resolver import METHOD_FIRST_TOKEN, EntityResolver
from .retry import RetryExecutor
from .tokenizer import read_table
from .verifier import ConsistencyVerifier, VerificationTarget
from .writer import ReconciliationWriter, ResolvedRow, WriteResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


class ImportPipeline:
    """
    Bulk reconciliation import.

    Usage:
        store = MemoryStore()
        pipeline = ImportPipeline.from_store(store)
        report = pipeline.run_master(Path("empresas.csv"))
        print(report.summary())
    """

    def __init__(self, companies, departments, people, links,
                 config: ImportConfig = None, enricher=None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            companies: CompanyRegistry
            departments: DepartmentDirectory
            people: PersonDirectory
            links: LinkStore
            config: ImportConfig (defaults to ImportConfig.from_env())
            enricher: optional CnpjLookup used when creating companies
            sleep: injectable sleep used for backoff, pauses and settle delay
        """
        self.companies = companies
        self.departments = departments
        self.people = people
        self.links = links
        self.config = config or ImportConfig.from_env()
        self.enricher = enricher
        self._sleep = sleep

    @classmethod
    def from_store(cls, store, config: ImportConfig = None, **kwargs) -> "ImportPipeline":
        return cls(store.companies, store.departments, store.people, store.links,
                   config=config, **kwargs)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_master(self, source, progress_callback: ProgressCallback = None) -> ImportReport:
        """Import the company master export (creates and patches companies)."""
        return self.run(MasterMapper(self.config), source,
                        progress_callback=progress_callback)

    def run_fiscal(self, source, progress_callback: ProgressCallback = None) -> ImportReport:
        """Import the fiscal division matrix; every link targets the Fiscal department."""
        return self.run(MatrixMapper(self.config, FISCAL_DEPARTMENT), source,
                        default_department=FISCAL_DEPARTMENT, allow_create=False,
                        progress_callback=progress_callback)

    def run_department(self, source, department: str, abort=None,
                       progress_callback: ProgressCallback = None) -> ImportReport:
        """
        Import a division matrix for any department.

        Args:
            abort: object with is_set() (e.g. threading.Event), checked between batches
        """
        if not normalize_name(department):
            raise ValueError("department is required")
        return self.run(MatrixMapper.for_department(self.config, department), source,
                        default_department=department, allow_create=False,
                        abort=abort, progress_callback=progress_callback)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def parse(self, mapper: BaseMapper, source) -> MappingResult:
        rows = read_table(source)
        if not rows:
            raise ParseError("Input is empty")
        mapping = mapper.map(rows)
        if not mapping.rows:
            raise ParseError(f"No importable rows found for layout '{mapper.variant}'")
        return mapping

    def run(self, mapper: BaseMapper, source, default_department: Optional[str] = None,
            allow_create: bool = True, abort=None,
            progress_callback: ProgressCallback = None) -> ImportReport:
        mapping = self.parse(mapper, source)

        report = ImportReport(variant=mapper.variant)
        report.total_rows = len(mapping.rows)
        report.rejected_columns = [c.to_dict() for c in mapping.rejected_columns]
        for warning in mapping.warnings:
            report.add_warning(warning)
        for skipped in mapping.skipped:
            report.record_outcome(OUTCOME_SKIPPED, skipped["reason"])

        logger.info(f"Import {report.variant} [{report.run_id}]: {report.total_rows:,} rows")
        if mapping.blocks:
            logger.debug(f"Blocks: {block_summary(mapping.blocks)}")

        executor = RetryExecutor.from_config(self.config, sleep=self._sleep)

        # Snapshot; failures here propagate, nothing can be reconciled without it
        dept_snapshot = executor.call(self.departments.list, description="list departments")
        people_snapshot = executor.call(self.people.list, description="list persons")
        resolver = EntityResolver.from_config(dept_snapshot, people_snapshot, self.config)

        provisioner = EntityProvisioner(self.departments, self.people, resolver,
                                        executor, self.config, report)
        plan = provisioner.plan(mapping.rows, default_department=default_department)
        provisioned = provisioner.run(plan, progress=provisioning_progress(progress_callback))

        resolved = [self._resolve_row(row, resolver, provisioned, report) for row in mapping.rows]

        writer = ReconciliationWriter(self.companies, self.links, executor,
                                      allow_create=allow_create, enricher=self.enricher)
        results = self._reconcile(writer, executor, resolved, report, abort, progress_callback)

        if self.config.verify and not report.aborted:
            targets = [
                VerificationTarget(r.code, r.company_id, r.links)
                for r in results if r.written and r.links
            ]
            verifier = ConsistencyVerifier(self.links, executor, self.config.settle_delay,
                                           report, sleep=self._sleep)
            verifier.verify(targets, progress=progress_callback)

        report.retries = executor.retries
        report.finalize()
        logger.info(report.summary())
        return report

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve_row(self, row: ParsedRow, resolver: EntityResolver,
                     provisioned: ProvisioningResult, report: ImportReport) -> ResolvedRow:
        resolved = ResolvedRow(row)
        for dept, person in row.responsibilities.items():
            dept_res = resolver.resolve_department(dept)
            if not dept_res.resolved:
                report.add_unresolved(
                    ResolutionFailure("department", dept, dept_res.reason, row.code), row.line)
                continue

            if person is None:
                resolved.links[dept_res.entity_id] = None
                continue

            person_res = resolver.resolve_person(person)
            if person_res.resolved:
                resolved.links[dept_res.entity_id] = person_res.entity_id
                if person_res.method == METHOD_FIRST_TOKEN:
                    report.add_fallback(person, resolver.display_name(person_res.entity_id), row.code)
                continue

            reason = person_res.reason
            if reason == REASON_PERSON_NOT_FOUND and normalize_name(person) in provisioned.failed_persons:
                reason = REASON_PROVISIONING_FAILED
            failure = ResolutionFailure("person", person, reason, row.code)
            report.add_unresolved(failure, row.line, resolver.suggest(person))
            logger.debug(f"{failure} [{dept}]")
        return resolved

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _reconcile(self, writer: ReconciliationWriter, executor: RetryExecutor,
                   rows: List[ResolvedRow], report: ImportReport, abort,
                   progress_callback: ProgressCallback) -> List[WriteResult]:
        size = self.config.batch_size
        total = len(rows)
        results: List[WriteResult] = []

        with ThreadPoolExecutor(max_workers=size) as pool:
            for start in range(0, total, size):
                if abort is not None and abort.is_set():
                    report.aborted = True
                    report.add_warning(f"Import aborted after {start} of {total} rows")
                    logger.warning(f"Import aborted after {start:,} of {total:,} rows")
                    break
                if start > 0:
                    executor.pause()

                batch = rows[start:start + size]
                futures = [pool.submit(writer.write_row, r) for r in batch]
                for resolved, future in zip(batch, futures):
                    try:
                        result = future.result()
                    except Exception as e:
                        logger.exception(f"Unexpected error writing company {resolved.code}")
                        result = WriteResult(resolved.code, OUTCOME_FAILED,
                                             reason="unexpected error", error=str(e))
                    self._record(result, report)
                    results.append(result)

                if progress_callback:
                    progress_callback({"done": len(results), "total": total,
                                       "phase": PHASE_RECONCILIATION})

        return results

    @staticmethod
    def _record(result: WriteResult, report: ImportReport):
        report.record_outcome(result.outcome, result.reason)
        report.record_links(result.links_written)
        if result.enriched:
            report.record_enriched()
        if result.outcome == OUTCOME_FAILED:
            kind = "link" if result.reason == "link write failed" else "company"
            report.add_failure(kind, result.code, result.error or result.reason)
