"""
Name Normalization

Single source of truth for normalizing department names, person names and
spreadsheet headers, plus the small field cleaners used by the master
mapper (tax id formatting, federal regime casing).

Normalization is pure and deterministic: the same input always yields the
same key within and across runs.
"""

import re
import unicodedata
from typing import Optional

from .config import FEDERAL_REGIMES


# ============================================================================
# Core normalization
# ============================================================================

def strip_accents(value: str) -> str:
    """Remove diacritics, keeping the base characters."""
    norm = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in norm if not unicodedata.combining(ch))


def normalize_name(name: Optional[str]) -> str:
    """
    Case-fold, strip diacritics and collapse internal whitespace.

    Examples:
        >>> normalize_name("  José   da  SILVA ")
        'jose da silva'

        >>> normalize_name("Contábil")
        'contabil'
    """
    if not name:
        return ""
    s = strip_accents(str(name)).casefold()
    s = re.sub(r"\s+", " ", s).strip()
    return s


def first_token(normalized: str) -> str:
    """First whitespace-separated token of an already normalized name."""
    parts = normalized.split(" ", 1)
    return parts[0] if parts else ""


def slugify(name: str, sep: str = ".") -> str:
    """
    ASCII slug used for placeholder e-mail local parts.

        >>> slugify("Maria José  Souza")
        'maria.jose.souza'
    """
    s = strip_accents(name or "").lower().strip()
    s = re.sub(r"[^a-z0-9]+", sep, s)
    s = re.sub(re.escape(sep) + r"+", sep, s)
    return s.strip(sep)


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


# ============================================================================
# Field cleaners
# ============================================================================

def format_tax_id(raw: str) -> str:
    """
    Format a CPF (11 digits) or CNPJ (14 digits); anything else is returned trimmed.

        >>> format_tax_id("12345678000195")
        '12.345.678/0001-95'
    """
    digits = only_digits(raw)
    if len(digits) == 11:
        return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
    if len(digits) == 14:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"
    return (raw or "").strip()


def normalize_federal_regime(raw: str) -> str:
    """Map ALL CAPS export values to their canonical title case."""
    value = (raw or "").strip()
    return FEDERAL_REGIMES.get(value.upper(), value)


def registration_type(tax_id: str, federal_regime: str = "") -> str:
    """Derive the registration type from the regime and tax id length."""
    if federal_regime == "MEI":
        return "MEI"
    digits = only_digits(tax_id)
    if len(digits) == 14:
        return "CNPJ"
    if len(digits) == 11:
        return "CPF"
    return ""
