"""
Import Configuration

Defines ImportConfig dataclass, the declarative master-export column schema,
department allow-list and header keyword table.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


# ============================================================================
# RUN CONFIGURATION
# ============================================================================

FALLBACK_MODES = ("first_token", "single_token", "none")

DEFAULT_PLACEHOLDER_DOMAIN = "importado.local"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.4
DEFAULT_BACKOFF_MAX = 4.0
DEFAULT_ROW_PAUSE = 0.25
DEFAULT_BATCH_SIZE = 5
DEFAULT_SETTLE_DELAY = 2.0
DEFAULT_HEADER_THRESHOLD = 3
DEFAULT_SUGGESTION_CUTOFF = 85.0


@dataclass
class ImportConfig:
    """Configuration for one import run."""
    placeholder_domain: str = DEFAULT_PLACEHOLDER_DOMAIN

    # Retry / pacing
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    row_pause: float = DEFAULT_ROW_PAUSE

    # Reconciliation concurrency (rows written per batch)
    batch_size: int = DEFAULT_BATCH_SIZE

    # Verification pass
    verify: bool = True
    settle_delay: float = DEFAULT_SETTLE_DELAY

    # Format detection
    header_threshold: int = DEFAULT_HEADER_THRESHOLD

    # Person resolution: "first_token", "single_token" or "none"
    name_fallback: str = "first_token"
    provision_ambiguous: bool = False
    suggestion_cutoff: float = DEFAULT_SUGGESTION_CUTOFF

    def __post_init__(self):
        if self.name_fallback not in FALLBACK_MODES:
            raise ValueError(
                f"Unknown name_fallback: {self.name_fallback}. "
                f"Use one of {', '.join(FALLBACK_MODES)}"
            )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ImportConfig":
        """
        Build a config from IMPORT_* environment variables.

        Invalid or out-of-range values silently fall back to the defaults.
        """
        env = os.environ if environ is None else environ

        fallback = env.get("IMPORT_NAME_FALLBACK", "first_token").strip().lower()
        if fallback not in FALLBACK_MODES:
            fallback = "first_token"

        return cls(
            placeholder_domain=env.get("IMPORT_PLACEHOLDER_DOMAIN") or DEFAULT_PLACEHOLDER_DOMAIN,
            max_attempts=_env_int(env, "IMPORT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, 1, 10),
            backoff_base=_env_float(env, "IMPORT_BACKOFF_BASE", DEFAULT_BACKOFF_BASE, 0.0, 30.0),
            backoff_max=_env_float(env, "IMPORT_BACKOFF_MAX", DEFAULT_BACKOFF_MAX, 0.0, 120.0),
            row_pause=_env_float(env, "IMPORT_ROW_PAUSE", DEFAULT_ROW_PAUSE, 0.0, 10.0),
            batch_size=_env_int(env, "IMPORT_BATCH_SIZE", DEFAULT_BATCH_SIZE, 1, 50),
            verify=env.get("IMPORT_VERIFY", "true").strip().lower() != "false",
            settle_delay=_env_float(env, "IMPORT_SETTLE_DELAY", DEFAULT_SETTLE_DELAY, 0.0, 60.0),
            header_threshold=_env_int(env, "IMPORT_HEADER_THRESHOLD", DEFAULT_HEADER_THRESHOLD, 1, 20),
            name_fallback=fallback,
            provision_ambiguous=env.get("IMPORT_PROVISION_AMBIGUOUS", "").strip().lower() == "true",
            suggestion_cutoff=_env_float(env, "IMPORT_SUGGESTION_CUTOFF", DEFAULT_SUGGESTION_CUTOFF, 0.0, 100.0),
        )


def _env_int(env, key: str, default: int, low: int, high: int) -> int:
    raw = env.get(key)
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if val < low or val > high:
        return default
    return val


def _env_float(env, key: str, default: float, low: float, high: float) -> float:
    raw = env.get(key)
    if not raw:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    if val < low or val > high:
        return default
    return val


# ============================================================================
# DEPARTMENTS
# ============================================================================

# Only these department columns are imported from the master export.
# Matching is exact after accent stripping and case folding.
ALLOWED_DEPARTMENTS: Tuple[str, ...] = (
    "Cadastro",
    "Contábil",
    "Declarações",
    "Financeiro",
    "Fiscal",
    "Parcelamentos",
    "Pessoal",
)

FISCAL_DEPARTMENT = "Fiscal"

# Department columns of the headerless export (0-indexed)
DEFAULT_DEPARTMENT_POSITIONS: Dict[int, str] = {
    10: "Cadastro",
    11: "Contábil",
    12: "Declarações",
    13: "Financeiro",
    14: "Fiscal",
    15: "Parcelamentos",
    16: "Pessoal",
}


# ============================================================================
# MASTER EXPORT SCHEMA
# ============================================================================

@dataclass(frozen=True)
class ColumnRule:
    """
    Maps a header pattern to a canonical field.

    Patterns are matched against the normalized header (accents stripped,
    case folded, whitespace collapsed). `position` is the column used when
    the file carries no header row; None means the field only exists in
    headed files.
    """
    name: str
    pattern: str
    position: Optional[int] = None
    imported: bool = True
    compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "compiled", re.compile(self.pattern))

    def matches(self, normalized_header: str) -> bool:
        return bool(self.compiled.search(normalized_header))


# Fixed layout of the company master export:
#  0 Id | 1 Codigo | 2 Nome | 3 CNPJ/CPF | 4 Inscricao estadual | 5 Ativo
#  6 Regime federal | 7 Regime estadual | 8 Regime municipal | 9 CCM
#  10+ departments
MASTER_SCHEMA: Tuple[ColumnRule, ...] = (
    ColumnRule("source_id", r"^id$", 0, imported=False),
    ColumnRule("code", r"^(codigo|cod\.?|cod empresa|codigo empresa)$", 1),
    ColumnRule("legal_name", r"^(nome|razao social|nome empresarial|empresa)$", 2),
    ColumnRule("tax_id", r"^(cnpj|cpf|cnpj ?/ ?cpf|cpf ?/ ?cnpj|cnpj/cpf|inscricao federal)$", 3),
    ColumnRule("state_registration", r"^(inscricao estadual|insc\.? estadual|ie)$", 4),
    ColumnRule("active", r"^(ativo|inativo|ativo ?/ ?inativo|situacao)$", 5, imported=False),
    ColumnRule("federal_regime", r"^regime federal$", 6),
    ColumnRule("state_regime", r"^regime estadual$", 7),
    ColumnRule("municipal_regime", r"^regime municipal$", 8),
    ColumnRule("municipal_registration", r"^(ccm|inscricao municipal)$", 9, imported=False),
)

# Fields written to the company record by the master import
COMPANY_FIELDS: Tuple[str, ...] = (
    "legal_name",
    "tax_id",
    "state_registration",
    "federal_regime",
    "state_regime",
    "municipal_regime",
    "registration_type",
)

# Fields an enrichment lookup may fill on company creation
ENRICHMENT_FIELDS: Tuple[str, ...] = (
    "legal_name",
    "trade_name",
    "opening_date",
    "state",
    "city",
    "district",
    "street",
    "number",
    "postal_code",
    "email",
    "phone",
)

# Normalized header keywords counted by header detection
HEADER_KEYWORDS = frozenset({
    "id", "codigo", "cod", "nome", "razao social", "empresa",
    "cnpj", "cpf", "cnpj / cpf", "cnpj/cpf", "cpf / cnpj",
    "inscricao estadual", "ie", "ativo", "inativo", "ativo/inativo", "ativo / inativo",
    "situacao", "regime federal", "regime estadual", "regime municipal",
    "ccm", "inscricao municipal",
    "cadastro", "contabil", "declaracoes", "financeiro", "fiscal",
    "parcelamentos", "pessoal",
})

FEDERAL_REGIMES: Dict[str, str] = {
    "SIMPLES NACIONAL": "Simples Nacional",
    "LUCRO PRESUMIDO": "Lucro Presumido",
    "LUCRO REAL": "Lucro Real",
    "MEI": "MEI",
}


# ============================================================================
# OUTCOMES / PHASES
# ============================================================================

VARIANT_MASTER = "master"
VARIANT_FISCAL = "fiscal"
VARIANT_DEPARTMENT = "department"

PHASE_PROVISIONING = "provisioning"
PHASE_RECONCILIATION = "reconciliation"
PHASE_VERIFICATION = "verification"

REASON_DEPARTMENT_NOT_FOUND = "department not found"
REASON_PERSON_NOT_FOUND = "person not found"
REASON_AMBIGUOUS_FIRST_NAME = "ambiguous first name"
REASON_AMBIGUOUS_PERSON = "ambiguous person name"
REASON_COMPANY_NOT_FOUND = "company not found"
REASON_MISSING_CODE = "missing company code"
REASON_UNCHANGED = "unchanged"
REASON_PROVISIONING_FAILED = "person could not be created"
