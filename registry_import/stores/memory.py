"""
Thread-safe in-memory backend.

Implements all four collaborators over plain dicts guarded by one lock.
Used as the reference backend and in tests.
"""

import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..errors import StoreError
from .base import (
    BatchCreateResult,
    Company,
    CompanyRegistry,
    Department,
    DepartmentDirectory,
    LinkStore,
    Person,
    PersonDirectory,
    PersonProfile,
    ResponsibilityLink,
)


def _new_id() -> str:
    return str(uuid.uuid4())


class MemoryCompanyRegistry(CompanyRegistry):

    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._by_id: Dict[str, Company] = {}
        self._by_code: Dict[str, str] = {}

    def get_by_code(self, code: str) -> Optional[Company]:
        with self._lock:
            cid = self._by_code.get(code)
            if cid is None:
                return None
            company = self._by_id[cid]
            return Company(company.id, company.code, dict(company.fields))

    def insert(self, code: str, fields: Dict[str, Any]) -> Company:
        with self._lock:
            if code in self._by_code:
                existing = self._by_id[self._by_code[code]]
                return Company(existing.id, existing.code, dict(existing.fields))
            company = Company(_new_id(), code, dict(fields))
            self._by_id[company.id] = company
            self._by_code[code] = company.id
            return Company(company.id, code, dict(company.fields))

    def update(self, company_id: Any, fields: Dict[str, Any]) -> Company:
        with self._lock:
            company = self._by_id.get(company_id)
            if company is None:
                raise StoreError(f"company {company_id} not found", status=404)
            company.fields.update(fields)
            return Company(company.id, company.code, dict(company.fields))

    def all(self) -> List[Company]:
        with self._lock:
            return [Company(c.id, c.code, dict(c.fields)) for c in self._by_id.values()]


class MemoryDepartmentDirectory(DepartmentDirectory):

    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._items: Dict[str, Department] = {}

    def list(self) -> List[Department]:
        with self._lock:
            return [Department(d.id, d.name) for d in self._items.values()]

    def create(self, name: str) -> Department:
        with self._lock:
            dept = Department(_new_id(), name)
            self._items[dept.id] = dept
            return Department(dept.id, dept.name)


class MemoryPersonDirectory(PersonDirectory):
    """Person directory; e-mails are unique (case-insensitive)."""

    def __init__(self, lock: threading.RLock, supports_batch: bool = True):
        self._lock = lock
        self._items: Dict[str, Person] = {}
        self.supports_batch = supports_batch
        self.credentials: Dict[str, str] = {}

    def list(self) -> List[Person]:
        with self._lock:
            return [Person(p.id, p.name, p.email, p.department_id, p.role, p.active)
                    for p in self._items.values()]

    def _find_email(self, email: str) -> Optional[Person]:
        key = email.strip().lower()
        for person in self._items.values():
            if person.email.lower() == key:
                return person
        return None

    def create(self, profile: PersonProfile) -> Person:
        with self._lock:
            if self._find_email(profile.email) is not None:
                raise StoreError(f"email already registered: {profile.email}", status=409)
            person = Person(_new_id(), profile.name, profile.email.strip().lower(),
                            profile.department_id, profile.role, profile.active)
            self._items[person.id] = person
            self.credentials[person.id] = profile.password
            return Person(person.id, person.name, person.email,
                          person.department_id, person.role, person.active)

    def create_batch(self, profiles: List[PersonProfile]) -> List[BatchCreateResult]:
        if not self.supports_batch:
            raise NotImplementedError
        results = []
        with self._lock:
            for profile in profiles:
                existing = self._find_email(profile.email)
                if existing is not None:
                    results.append(BatchCreateResult(profile.name, profile.email, existing.id, "existing"))
                    continue
                person = self.create(profile)
                results.append(BatchCreateResult(profile.name, person.email, person.id, "created"))
        return results


class MemoryLinkStore(LinkStore):

    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._links: Dict[Tuple[Any, Any], ResponsibilityLink] = {}
        self.upsert_calls = 0

    def list_by_company(self, company_id: Any) -> List[ResponsibilityLink]:
        with self._lock:
            return [link for (cid, _), link in self._links.items() if cid == company_id]

    def upsert_many(self, links: List[ResponsibilityLink]) -> None:
        with self._lock:
            self.upsert_calls += 1
            for link in links:
                self._links[(link.company_id, link.department_id)] = link

    def all(self) -> List[ResponsibilityLink]:
        with self._lock:
            return list(self._links.values())


class MemoryStore:
    """
    Bundle of the four in-memory collaborators sharing one lock.

    Usage:
        store = MemoryStore()
        pipeline = ImportPipeline.from_store(store)
    """

    def __init__(self, supports_batch: bool = True):
        self._lock = threading.RLock()
        self.companies = MemoryCompanyRegistry(self._lock)
        self.departments = MemoryDepartmentDirectory(self._lock)
        self.people = MemoryPersonDirectory(self._lock, supports_batch=supports_batch)
        self.links = MemoryLinkStore(self._lock)
