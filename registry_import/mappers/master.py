"""
Master-record mapper.

One row per company. Identity/fiscal columns come from the declarative
MASTER_SCHEMA; department columns are located by header (exact match
against the allow-list) or, for headerless exports, by position.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import (
    ALLOWED_DEPARTMENTS,
    DEFAULT_DEPARTMENT_POSITIONS,
    MASTER_SCHEMA,
    REASON_MISSING_CODE,
    VARIANT_MASTER,
    ColumnRule,
)
from ..errors import ParseError
from ..normalizer import (
    format_tax_id,
    normalize_federal_regime,
    normalize_name,
    registration_type,
)
from ..tokenizer import Rows, detect_header
from .base import BaseMapper, MappingResult, ParsedRow, RejectedColumn

logger = logging.getLogger(__name__)


def _cell(row: Sequence[str], index: Optional[int]) -> Optional[str]:
    """Cell value, or None when the row is too short to contain the column."""
    if index is None or index >= len(row):
        return None
    return row[index]


class MasterMapper(BaseMapper):
    """
    Maps the company master export.

    Header cells are normalized once and evaluated against the schema:
    - identity rules (first matching column wins)
    - exact department names from the allow-list
    - anything containing a department name as a whole word but not equal
      to it ("Fiscal Guias", "Contabil 2") is rejected and reported
    """

    variant = VARIANT_MASTER

    def __init__(self, config, schema: Tuple[ColumnRule, ...] = MASTER_SCHEMA,
                 departments: Sequence[str] = ALLOWED_DEPARTMENTS,
                 department_positions: Dict[int, str] = None):
        super().__init__(config)
        self.schema = schema
        self.departments = {normalize_name(d): d for d in departments}
        self.department_positions = department_positions or DEFAULT_DEPARTMENT_POSITIONS
        self._department_words = [
            (key, display, re.compile(r"(?<![a-z])" + re.escape(key) + r"(?![a-z])"))
            for key, display in self.departments.items()
        ]

    # ------------------------------------------------------------------
    # Column layout
    # ------------------------------------------------------------------

    def locate_columns(self, header: Sequence[str]):
        """
        Resolve the column layout from a header row.

        Returns:
            (field_columns, department_columns, rejected) where field_columns
            maps canonical field -> index and department_columns maps
            index -> department display name.
        """
        field_columns: Dict[str, int] = {}
        department_columns: Dict[int, str] = {}
        seen_departments: Dict[str, int] = {}
        rejected: List[RejectedColumn] = []

        for idx, raw in enumerate(header):
            key = normalize_name(raw)
            if not key:
                continue

            rule = next((r for r in self.schema if r.matches(key)), None)
            if rule is not None:
                if rule.name not in field_columns:
                    field_columns[rule.name] = idx
                continue

            if key in self.departments:
                if key in seen_departments:
                    rejected.append(RejectedColumn(
                        idx, raw,
                        f"duplicate department column (first at {seen_departments[key]})"))
                    continue
                seen_departments[key] = idx
                department_columns[idx] = self.departments[key]
                continue

            for dept_key, display, word in self._department_words:
                if word.search(key):
                    rejected.append(RejectedColumn(idx, raw, f"variant of department '{display}'"))
                    break

        return field_columns, department_columns, rejected

    def positional_columns(self):
        field_columns = {r.name: r.position for r in self.schema if r.position is not None}
        return field_columns, dict(self.department_positions), []

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map(self, rows: Rows) -> MappingResult:
        result = MappingResult(variant=self.variant)
        if not rows:
            return result

        has_header = detect_header(rows[0], threshold=self.config.header_threshold)
        result.has_header = has_header

        if has_header:
            field_columns, department_columns, rejected = self.locate_columns(rows[0])
            if "code" not in field_columns:
                raise ParseError("Header row detected but no company code column found")
            data = rows[1:]
            first_line = 2
        else:
            field_columns, department_columns, rejected = self.positional_columns()
            data = rows
            first_line = 1

        for col in rejected:
            col.non_empty = sum(1 for r in data if (_cell(r, col.index) or "").strip())
            logger.warning("Rejected column %d '%s': %s (%d non-empty cells)",
                           col.index, col.header, col.reason, col.non_empty)
        result.rejected_columns = rejected

        imported_rules = [r for r in self.schema if r.imported and r.name in field_columns]
        by_code: Dict[str, ParsedRow] = {}

        for offset, row in enumerate(data):
            line = first_line + offset
            code = (_cell(row, field_columns["code"]) or "").strip()
            name = (_cell(row, field_columns.get("legal_name")) or "").strip()
            tax_id = (_cell(row, field_columns.get("tax_id")) or "").strip()

            if not code and not name and not tax_id:
                continue
            if not code:
                result.skipped.append({"line": line, "code": "", "name": name,
                                       "reason": REASON_MISSING_CODE})
                continue

            parsed = ParsedRow(code=code, name=name, line=line, variant=self.variant)
            for rule in imported_rules:
                if rule.name == "code":
                    continue
                value = (_cell(row, field_columns[rule.name]) or "").strip()
                if value:
                    parsed.fields[rule.name] = value
            self._clean_fields(parsed.fields)

            for idx, dept in department_columns.items():
                value = _cell(row, idx)
                if value is None:
                    continue
                parsed.responsibilities[dept] = value.strip() or None

            if code in by_code:
                result.warnings.append(
                    f"Company code {code} appears more than once (lines "
                    f"{by_code[code].line} and {line}); rows merged"
                )
                by_code[code].merge(parsed)
            else:
                by_code[code] = parsed

        result.rows = list(by_code.values())
        logger.info("Master mapping: %d rows, %d rejected columns, header=%s",
                    len(result.rows), len(rejected), has_header)
        return result

    @staticmethod
    def _clean_fields(fields: Dict[str, str]):
        if "tax_id" in fields:
            fields["tax_id"] = format_tax_id(fields["tax_id"])
        if "federal_regime" in fields:
            fields["federal_regime"] = normalize_federal_regime(fields["federal_regime"])
        kind = registration_type(fields.get("tax_id", ""), fields.get("federal_regime", ""))
        if kind:
            fields["registration_type"] = kind
