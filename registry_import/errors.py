"""
Exception taxonomy for the import engine.

Only ParseError aborts a run. Everything else is caught at row/entity
granularity and folded into the ImportReport.
"""

from typing import Optional


class RegistryImportError(Exception):
    """Base class for all import engine errors."""


class ParseError(RegistryImportError):
    """Malformed or empty input. Raised before any write happens."""


class ResolutionFailure(RegistryImportError):
    """A department or person reference could not be resolved to an id."""

    def __init__(self, kind: str, reference: str, reason: str, code: Optional[str] = None):
        self.kind = kind
        self.reference = reference
        self.reason = reason
        self.code = code
        super().__init__(f"{kind} '{reference}': {reason}" + (f" (company {code})" if code else ""))


class WriteFailure(RegistryImportError):
    """A remote operation failed fatally or exhausted its retries."""

    def __init__(self, operation: str, attempts: int, cause: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{operation} failed after {attempts} attempt(s): {cause}")


class ProvisioningFailure(RegistryImportError):
    """A department or person could not be created."""

    def __init__(self, kind: str, name: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.name = name
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"could not create {kind} '{name}'{detail}")


class ConsistencyMismatch(RegistryImportError):
    """Persisted links diverge from the intended links after the settle delay."""

    def __init__(self, code: str, mismatches: dict):
        self.code = code
        self.mismatches = mismatches
        super().__init__(f"company {code}: {len(mismatches)} link(s) diverge from intended state")


class StoreError(RegistryImportError):
    """Non-retryable backing store error."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class TransientStoreError(StoreError):
    """Retryable backing store error (rate limit, timeout, unavailable)."""
