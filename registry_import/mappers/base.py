"""
Base classes and data structures for schema mappers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..tokenizer import Rows


@dataclass
class ParsedRow:
    """
    One company's worth of intended state.

    Attributes:
        code: Business code (natural key)
        name: Company name as written in the file (may be empty)
        fields: Canonical company fields supplied by the row
        responsibilities: department display name -> person name, or None
            for an explicit clear
        line: 1-based source line (master) or header row (matrix)
        variant: "master", "fiscal" or "department"
    """
    code: str
    name: str = ""
    fields: Dict[str, Any] = field(default_factory=dict)
    responsibilities: Dict[str, Optional[str]] = field(default_factory=dict)
    line: int = 0
    variant: str = ""

    def merge(self, other: "ParsedRow"):
        """Fold a later row with the same code into this one (later non-empty values win)."""
        if other.name:
            self.name = other.name
        self.fields.update({k: v for k, v in other.fields.items() if v not in (None, "")})
        for dept, person in other.responsibilities.items():
            if person is not None or dept not in self.responsibilities:
                self.responsibilities[dept] = person
        self.line = other.line


@dataclass
class RejectedColumn:
    """A header that looked like a department column but was not imported."""
    index: int
    header: str
    reason: str
    non_empty: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "header": self.header,
            "reason": self.reason,
            "non_empty": self.non_empty,
        }


@dataclass
class PersonBlock:
    """A matrix block: one person header and the company codes below it."""
    person: str
    declared_count: int
    codes: List[str] = field(default_factory=list)
    row: int = 0
    column: int = 0


@dataclass
class MappingResult:
    variant: str
    rows: List[ParsedRow] = field(default_factory=list)
    rejected_columns: List[RejectedColumn] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    has_header: bool = False
    blocks: List[PersonBlock] = field(default_factory=list)


class BaseMapper(ABC):
    """
    Abstract base class for mappers.

    A mapper turns tokenized rows into ParsedRow objects for one layout.
    """

    variant: str = ""

    def __init__(self, config):
        self.config = config

    @abstractmethod
    def map(self, rows: Rows) -> MappingResult:
        """
        Map tokenized rows.

        Args:
            rows: Output of tokenizer.read_table

        Returns:
            MappingResult with parsed rows, rejections and warnings
        """
        pass
