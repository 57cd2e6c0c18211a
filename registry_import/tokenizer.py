"""
Tokenizer & format detection for delimited spreadsheet exports.

- decode_bytes: UTF-8 with a Windows-1252 fallback
- detect_separator: ';', tab or ',' by occurrence count on the first line
- tokenize: quoted-field aware splitting (csv module)
- detect_header: keyword count threshold on the first row
- read_table: single entry point for bytes / text / file paths (incl. .xlsx)
"""

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .config import DEFAULT_HEADER_THRESHOLD, HEADER_KEYWORDS
from .errors import ParseError
from .normalizer import normalize_name

logger = logging.getLogger(__name__)

SEPARATORS = (";", "\t", ",")
DEFAULT_SEPARATOR = ";"
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
ZIP_MAGIC = b"PK\x03\x04"

Rows = List[List[str]]


# ============================================================================
# Decoding
# ============================================================================

def decode_bytes(data: bytes) -> str:
    """
    Decode raw file bytes.

    UTF-8 is tried first. Exports from older desktop software are often
    Windows-1252; when UTF-8 produces replacement characters the payload is
    re-decoded as cp1252.
    """
    text = data.decode("utf-8-sig", errors="replace")
    if "\ufffd" in text:
        logger.info("UTF-8 decode produced replacement characters, re-decoding as cp1252")
        text = data.decode("cp1252", errors="replace")
    return text


# ============================================================================
# Splitting
# ============================================================================

def detect_separator(first_line: str) -> str:
    """Pick the candidate delimiter with the most occurrences on the first line."""
    best = DEFAULT_SEPARATOR
    best_count = 0
    for sep in SEPARATORS:
        count = first_line.count(sep)
        if count > best_count:
            best, best_count = sep, count
    return best


def _clean_cell(cell: str) -> str:
    value = cell.strip()
    if len(value) >= 2 and value[0] == "'" and value[-1] == "'":
        value = value[1:-1].strip()
    return value


def tokenize(text: str, separator: Optional[str] = None, skip_blank: bool = True) -> Rows:
    """
    Split delimited text into rows of trimmed cells.

    Quoted fields may contain the separator, newlines and doubled quotes.
    Empty input yields an empty list.
    """
    if not text or not text.strip():
        return []

    if separator is None:
        first_line = text.lstrip("\ufeff").splitlines()[0] if text else ""
        separator = detect_separator(first_line)

    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")), delimiter=separator,
                        quotechar='"', doublequote=True, skipinitialspace=False)
    rows: Rows = []
    try:
        for raw in reader:
            cells = [_clean_cell(c) for c in raw]
            if skip_blank and not any(cells):
                continue
            rows.append(cells)
    except csv.Error as e:
        raise ParseError(f"Malformed delimited input near line {reader.line_num}: {e}") from e

    return rows


# ============================================================================
# Header detection
# ============================================================================

def count_header_keywords(row: Sequence[str], keywords: Iterable[str] = HEADER_KEYWORDS) -> int:
    keyword_set = set(keywords)
    return sum(1 for cell in row if normalize_name(cell) in keyword_set)


def detect_header(row: Sequence[str], keywords: Iterable[str] = HEADER_KEYWORDS,
                  threshold: int = DEFAULT_HEADER_THRESHOLD) -> bool:
    """True when at least `threshold` cells are recognized header keywords."""
    if not row:
        return False
    return count_header_keywords(row, keywords) >= threshold


# ============================================================================
# Entry point
# ============================================================================

def _read_excel(source) -> Rows:
    import pandas as pd

    try:
        df = pd.read_excel(source, header=None, dtype=str, engine="openpyxl")
    except (ValueError, OSError) as e:
        raise ParseError(f"Unreadable spreadsheet: {e}") from e

    df = df.fillna("")
    rows: Rows = []
    # rows keep the sheet's full width: an empty cell under a header is a cleared value
    for values in df.itertuples(index=False, name=None):
        cells = [str(v).strip() for v in values]
        if any(cells):
            rows.append(cells)
    return rows


def read_table(source: Union[bytes, str, Path], separator: Optional[str] = None) -> Rows:
    """
    Read an export into rows of trimmed strings.

    Args:
        source: raw bytes, decoded text, or a path to a .csv/.tsv/.txt/.xlsx file
        separator: force a delimiter instead of detecting it

    Returns:
        List of rows (blank rows removed). Empty input returns [].
    """
    if isinstance(source, Path) or (isinstance(source, str) and _looks_like_path(source)):
        path = Path(source)
        if path.suffix.lower() in EXCEL_SUFFIXES:
            return _read_excel(path)
        data = path.read_bytes()
        return tokenize(decode_bytes(data), separator)

    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
        if data.startswith(ZIP_MAGIC):
            return _read_excel(io.BytesIO(data))
        return tokenize(decode_bytes(data), separator)

    return tokenize(source, separator)


def _looks_like_path(value: str) -> bool:
    if "\n" in value or len(value) > 1024:
        return False
    try:
        return Path(value).is_file()
    except OSError:
        return False
