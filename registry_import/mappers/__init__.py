"""Schema mappers for the supported spreadsheet layouts."""

from .base import BaseMapper, MappingResult, ParsedRow, PersonBlock, RejectedColumn
from .master import MasterMapper
from .matrix import MatrixMapper, block_summary, match_block_header

__all__ = [
    "BaseMapper",
    "MappingResult",
    "ParsedRow",
    "PersonBlock",
    "RejectedColumn",
    "MasterMapper",
    "MatrixMapper",
    "block_summary",
    "match_block_header",
]
