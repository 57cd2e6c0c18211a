"""
Collaborator interfaces and entity records.

The engine talks to four remote collaborators: a company registry, a
department directory, a person directory and a link store. Each store
backend implements all four.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ============================================================================
# Entities
# ============================================================================

@dataclass
class Company:
    id: Any
    code: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Department:
    id: Any
    name: str


@dataclass
class Person:
    id: Any
    name: str
    email: str = ""
    department_id: Optional[Any] = None
    role: str = "usuario"
    active: bool = True


@dataclass
class PersonProfile:
    """Creation payload for a provisioned person."""
    name: str
    email: str
    password: str
    department_id: Optional[Any] = None
    role: str = "usuario"
    active: bool = True


@dataclass
class BatchCreateResult:
    """
    Per-person outcome of a batch creation call.

    status is "created", "existing" (email already registered; id is the
    existing person's) or "failed".
    """
    name: str
    email: str
    id: Optional[Any] = None
    status: str = "created"
    error: Optional[str] = None


@dataclass(frozen=True)
class ResponsibilityLink:
    company_id: Any
    department_id: Any
    person_id: Optional[Any] = None


# ============================================================================
# Collaborators
# ============================================================================

class CompanyRegistry(ABC):

    @abstractmethod
    def get_by_code(self, code: str) -> Optional[Company]:
        pass

    @abstractmethod
    def insert(self, code: str, fields: Dict[str, Any]) -> Company:
        """Insert a company. Inserting an existing code returns the existing record."""
        pass

    @abstractmethod
    def update(self, company_id: Any, fields: Dict[str, Any]) -> Company:
        """Patch only the supplied fields."""
        pass


class DepartmentDirectory(ABC):

    @abstractmethod
    def list(self) -> List[Department]:
        pass

    @abstractmethod
    def create(self, name: str) -> Department:
        pass


class PersonDirectory(ABC):

    @abstractmethod
    def list(self) -> List[Person]:
        pass

    @abstractmethod
    def create(self, profile: PersonProfile) -> Person:
        pass

    def create_batch(self, profiles: List[PersonProfile]) -> List[BatchCreateResult]:
        """
        Create several persons in one call.

        Directories without a batch endpoint keep this default, which makes
        the provisioner fall back to sequential `create` calls.
        """
        raise NotImplementedError


class LinkStore(ABC):

    @abstractmethod
    def list_by_company(self, company_id: Any) -> List[ResponsibilityLink]:
        pass

    @abstractmethod
    def upsert_many(self, links: List[ResponsibilityLink]) -> None:
        """Insert or replace links keyed by (company_id, department_id)."""
        pass
