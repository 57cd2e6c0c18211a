"""
Multi-block matrix mapper.

Division spreadsheets place one block per person side by side:

    ANA - 2        ;      ; BRUNA 1    ;
    Padaria Sol    ; 101  ; Mercado X  ; 300
    Oficina Lua    ; 102  ;            ;

A block header is "NAME - N", "NAME- N", "NAME -N" or "NAME N". Every
block becomes a set of (company code -> person) assignments for one target
department.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import VARIANT_DEPARTMENT, VARIANT_FISCAL, FISCAL_DEPARTMENT
from ..normalizer import normalize_name
from ..tokenizer import Rows
from .base import BaseMapper, MappingResult, ParsedRow, PersonBlock

logger = logging.getLogger(__name__)

_HEADER_DASH = re.compile(r"^(.+?)\s*[-–]\s*(\d+)\s*$")
_HEADER_PLAIN = re.compile(r"^([^\W\d_][^\W\d_\s.]*(?:[\s.]+[^\W\d_]+)*\.?)\s+(\d+)\s*$")
_CODE_PREFIX = re.compile(r"^[^\W\d_]-", re.IGNORECASE)
_BARE_INTEGER = re.compile(r"^\d+$")


def match_block_header(cell: str) -> Optional[Tuple[str, int]]:
    """
    Recognize a block header cell.

        >>> match_block_header("ANA - 2")
        ('ANA', 2)
        >>> match_block_header("P-104") is None
        True
    """
    value = (cell or "").strip()
    if not value:
        return None

    m = _HEADER_DASH.match(value) or _HEADER_PLAIN.match(value)
    if not m:
        return None

    name = m.group(1).strip()
    if not name or not name[0].isalpha():
        return None
    # "P-", "R-", "S-" ... are company-code prefixes
    if _CODE_PREFIX.match(value):
        return None
    return name, int(m.group(2))


def _at(matrix: Rows, row: int, col: int) -> str:
    if row >= len(matrix) or col >= len(matrix[row]):
        return ""
    return matrix[row][col].strip()


class MatrixMapper(BaseMapper):
    """
    Maps a division matrix onto one target department.

    Args:
        config: ImportConfig
        department: Target department display name
        variant: "fiscal" or "department"
    """

    def __init__(self, config, department: str = FISCAL_DEPARTMENT, variant: str = VARIANT_FISCAL):
        super().__init__(config)
        self.department = department
        self.variant = variant

    @classmethod
    def for_department(cls, config, department: str) -> "MatrixMapper":
        return cls(config, department=department, variant=VARIANT_DEPARTMENT)

    def _is_header(self, matrix: Rows, row: int, col: int) -> Optional[Tuple[str, int]]:
        header = match_block_header(_at(matrix, row, col))
        if header is None:
            return None
        # a numeric neighbour means "company name ; code", not a header
        if _BARE_INTEGER.match(_at(matrix, row, col + 1)):
            return None
        return header

    def find_blocks(self, matrix: Rows) -> List[PersonBlock]:
        """Column-major scan for block headers and the company codes below them."""
        if not matrix:
            return []

        width = max(len(r) for r in matrix)
        blocks: List[PersonBlock] = []

        for col in range(width):
            for row in range(len(matrix)):
                header = self._is_header(matrix, row, col)
                if header is None:
                    continue

                person, declared = header
                block = PersonBlock(person=person, declared_count=declared, row=row + 1, column=col)
                for r in range(row + 1, len(matrix)):
                    company = _at(matrix, r, col)
                    code = _at(matrix, r, col + 1)
                    if not company:
                        continue
                    if self._is_header(matrix, r, col) is not None:
                        break
                    if code:
                        block.codes.append(code)
                blocks.append(block)

        seen = set()
        unique = []
        for block in blocks:
            key = (normalize_name(block.person), len(block.codes))
            if key in seen:
                logger.debug("Dropping duplicate block %s (%d companies)", block.person, len(block.codes))
                continue
            seen.add(key)
            unique.append(block)
        return unique

    def map(self, rows: Rows) -> MappingResult:
        result = MappingResult(variant=self.variant)
        blocks = self.find_blocks(rows)
        result.blocks = blocks

        owner: Dict[str, PersonBlock] = {}
        parsed: Dict[str, ParsedRow] = {}

        for block in blocks:
            if block.declared_count != len(block.codes):
                result.warnings.append(
                    f"Block '{block.person}' declares {block.declared_count} companies "
                    f"but lists {len(block.codes)}"
                )
            for code in block.codes:
                previous = owner.get(code)
                if previous is not None and normalize_name(previous.person) != normalize_name(block.person):
                    result.warnings.append(
                        f"Company {code} listed under both '{previous.person}' and "
                        f"'{block.person}'; keeping '{block.person}'"
                    )
                owner[code] = block
                parsed[code] = ParsedRow(
                    code=code,
                    responsibilities={self.department: block.person},
                    line=block.row,
                    variant=self.variant,
                )

        result.rows = list(parsed.values())
        logger.info("Matrix mapping (%s): %d blocks, %d companies",
                    self.department, len(blocks), len(result.rows))
        return result


def block_summary(blocks: Sequence[PersonBlock]) -> List[Dict]:
    """Compact per-block view for previews and reports."""
    return [
        {"person": b.person, "declared": b.declared_count, "found": len(b.codes),
         "row": b.row, "column": b.column}
        for b in blocks
    ]
