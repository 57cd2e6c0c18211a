"""
Entity Provisioner

Creates departments and persons that the batch references but the
directories do not know yet.

Flow:
  1. plan()        - over the WHOLE batch, before any write
  2. departments   - created sequentially (low volume)
  3. persons       - one create_batch call; on failure, sequential create
                     with retries, then a fresh list() to recover ids of
                     persons created server-side whose response was lost
  4. every new id is registered in the resolver
"""

import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from .config import (
    PHASE_PROVISIONING,
    REASON_AMBIGUOUS_FIRST_NAME,
    REASON_PERSON_NOT_FOUND,
)
from .errors import ProvisioningFailure, WriteFailure
from .normalizer import normalize_name, slugify
from .stores.base import PersonProfile

logger = logging.getLogger(__name__)

BATCH_OK = ("created", "existing")


@dataclass
class PersonRequest:
    """A person to create, with the departments they appear under (in order of first appearance)."""
    name: str
    key: str
    appearances: "OrderedDict[str, int]" = field(default_factory=OrderedDict)
    department: Optional[str] = None
    email: str = ""

    def majority_department(self) -> Optional[str]:
        """Department with the most appearances; ties go to the first seen."""
        best, best_count = None, 0
        for dept, count in self.appearances.items():
            if count > best_count:
                best, best_count = dept, count
        return best


@dataclass
class ProvisioningPlan:
    departments: List[str] = field(default_factory=list)
    persons: List[PersonRequest] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.departments and not self.persons

    @property
    def size(self) -> int:
        return len(self.departments) + len(self.persons)


@dataclass
class ProvisioningResult:
    departments: Dict[str, Any] = field(default_factory=dict)
    persons: Dict[str, Any] = field(default_factory=dict)
    failed_departments: Set[str] = field(default_factory=set)
    failed_persons: Set[str] = field(default_factory=set)
    recovered: int = 0


def random_password() -> str:
    return secrets.token_urlsafe(16)


class EntityProvisioner:
    """
    Args:
        departments: DepartmentDirectory
        people: PersonDirectory
        resolver: EntityResolver to plan against and to merge results into
        executor: RetryExecutor wrapping every remote call
        config: ImportConfig
        report: ImportReport receiving created entities and failures
    """

    def __init__(self, departments, people, resolver, executor, config, report=None):
        self.departments = departments
        self.people = people
        self.resolver = resolver
        self.executor = executor
        self.config = config
        self.report = report

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _provisionable(self, reason: str) -> bool:
        if reason == REASON_PERSON_NOT_FOUND:
            return True
        return self.config.provision_ambiguous and reason == REASON_AMBIGUOUS_FIRST_NAME

    def plan(self, rows, default_department: Optional[str] = None) -> ProvisioningPlan:
        """
        Compute the unknown departments and persons referenced by the batch.

        Args:
            rows: ParsedRow objects
            default_department: department assigned to every new person
                (matrix imports); None means majority vote
        """
        plan = ProvisioningPlan()
        seen_departments: Set[str] = set()
        persons: "OrderedDict[str, PersonRequest]" = OrderedDict()

        for row in rows:
            for dept, person in row.responsibilities.items():
                dept_key = normalize_name(dept)
                if dept_key and dept_key not in seen_departments:
                    seen_departments.add(dept_key)
                    if not self.resolver.resolve_department(dept).resolved:
                        plan.departments.append(dept)

                if not person:
                    continue
                key = normalize_name(person)
                if key in persons:
                    # None marks a name that resolved or is not provisionable
                    request = persons[key]
                    if request is None:
                        continue
                else:
                    resolution = self.resolver.resolve_person(person)
                    if resolution.resolved or not self._provisionable(resolution.reason):
                        persons[key] = None
                        continue
                    request = PersonRequest(name=person.strip(), key=key)
                    persons[key] = request
                request.appearances[dept] = request.appearances.get(dept, 0) + 1

        taken = {e.lower() for e in self.resolver.taken_emails()}
        for request in persons.values():
            if request is None:
                continue
            request.department = default_department or request.majority_department()
            request.email = self._placeholder_email(request.name, taken)
            taken.add(request.email)
            plan.persons.append(request)

        logger.info("Provisioning plan: %d department(s), %d person(s)",
                    len(plan.departments), len(plan.persons))
        return plan

    def _placeholder_email(self, name: str, taken: Set[str]) -> str:
        base = slugify(name) or "usuario"
        domain = self.config.placeholder_domain
        email = f"{base}@{domain}"
        n = 2
        while email.lower() in taken:
            email = f"{base}.{n}@{domain}"
            n += 1
        return email

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, plan: ProvisioningPlan,
            progress: Optional[Callable[[int, int], None]] = None) -> ProvisioningResult:
        result = ProvisioningResult()
        total = plan.size
        done = 0

        def tick():
            nonlocal done
            done += 1
            if progress:
                progress(done, total)

        self._create_departments(plan.departments, result, tick)
        self._create_persons(plan.persons, result, tick)
        return result

    def _create_departments(self, names: List[str], result: ProvisioningResult, tick):
        for i, name in enumerate(names):
            if i > 0:
                self.executor.pause()
            try:
                dept = self.executor.call(self.departments.create, name,
                                          description=f"create department '{name}'")
            except WriteFailure as e:
                result.failed_departments.add(normalize_name(name))
                logger.warning("Department '%s' could not be created: %s", name, e)
            else:
                self.resolver.register_department(dept.id, dept.name)
                result.departments[normalize_name(name)] = dept.id
                if self.report:
                    self.report.add_department(name)
            tick()

        if result.failed_departments:
            self._recover_departments(result)

    def _recover_departments(self, result: ProvisioningResult):
        try:
            listing = self.executor.call(self.departments.list, description="re-read departments")
        except WriteFailure as e:
            logger.warning("Department re-read failed: %s", e)
            listing = []
        for dept in listing:
            key = normalize_name(dept.name)
            if key in result.failed_departments:
                result.failed_departments.discard(key)
                result.departments[key] = dept.id
                result.recovered += 1
                self.resolver.register_department(dept.id, dept.name)
        for key in result.failed_departments:
            failure = ProvisioningFailure("department", key)
            if self.report:
                self.report.add_failure("department", key, failure)

    def _profile(self, request: PersonRequest) -> PersonProfile:
        dept_id = None
        if request.department:
            dept_id = self.resolver.resolve_department(request.department).entity_id
        return PersonProfile(
            name=request.name,
            email=request.email,
            password=random_password(),
            department_id=dept_id,
        )

    def _register(self, request: PersonRequest, person_id: Any, result: ProvisioningResult,
                  created: bool = True):
        self.resolver.register_person(person_id, request.name, request.email)
        result.persons[request.key] = person_id
        if created and self.report:
            self.report.add_person(request.name, request.email)

    def _create_persons(self, requests: List[PersonRequest], result: ProvisioningResult, tick):
        if not requests:
            return

        profiles = [self._profile(r) for r in requests]
        pending: List[PersonRequest] = []

        try:
            batch = self.executor.call(self.people.create_batch, profiles,
                                       description=f"create {len(profiles)} person(s) in batch")
        except WriteFailure as e:
            if isinstance(e.cause, NotImplementedError):
                logger.debug("Person directory has no batch endpoint, creating sequentially")
            else:
                logger.warning("Batch person creation failed, falling back to sequential: %s", e)
            pending = list(requests)
        else:
            by_email = {r.email.lower(): r for r in requests}
            answered = set()
            for item in batch:
                request = by_email.get((item.email or "").lower())
                if request is None:
                    continue
                answered.add(request.key)
                if item.status in BATCH_OK and item.id is not None:
                    self._register(request, item.id, result, created=item.status == "created")
                    tick()
                else:
                    logger.warning("Batch creation failed for '%s': %s", request.name, item.error)
                    pending.append(request)
            pending.extend(r for r in requests if r.key not in answered)

        if not pending:
            return

        lost = []
        for i, request in enumerate(pending):
            if i > 0:
                self.executor.pause()
            profile = next(p for p in profiles if p.email == request.email)
            try:
                person = self.executor.call(self.people.create, profile,
                                            description=f"create person '{request.name}'")
            except WriteFailure as e:
                logger.warning("Person '%s' could not be created: %s", request.name, e)
                lost.append(request)
            else:
                self._register(request, person.id, result)
                tick()

        if lost:
            self._recover_persons(lost, result, tick)

    def _recover_persons(self, lost: List[PersonRequest], result: ProvisioningResult, tick):
        """Re-read the directory and match lost creations by e-mail, then by normalized name."""
        try:
            listing = self.executor.call(self.people.list, description="re-read persons")
        except WriteFailure as e:
            logger.warning("Person re-read failed: %s", e)
            listing = []
        by_email = {p.email.strip().lower(): p for p in listing if p.email}
        by_name: Dict[str, List] = {}
        for p in listing:
            by_name.setdefault(normalize_name(p.name), []).append(p)

        for request in lost:
            match = by_email.get(request.email.lower())
            if match is None and len(by_name.get(request.key, [])) == 1:
                match = by_name[request.key][0]
            if match is not None:
                logger.info("Recovered person '%s' from directory re-read", request.name)
                self._register(request, match.id, result)
                result.recovered += 1
            else:
                result.failed_persons.add(request.key)
                failure = ProvisioningFailure("person", request.name)
                if self.report:
                    self.report.add_failure("person", request.name, failure)
            tick()


def provisioning_progress(callback):
    """Adapt a {"done","total","phase"} callback to the provisioner's (done, total) ticks."""
    if callback is None:
        return None

    def _tick(done: int, total: int):
        callback({"done": done, "total": total, "phase": PHASE_PROVISIONING})
    return _tick
