"""
Bulk Reconciliation Import

Imports company master exports and department responsibility matrices,
reconciling them against the live company/department/person registry.

Usage:
    from registry_import import ImportPipeline, ImportConfig
    from registry_import.stores import MemoryStore

    store = MemoryStore()
    pipeline = ImportPipeline.from_store(store, config=ImportConfig())
    report = pipeline.run_master(Path("empresas.csv"))
    if report.needs_follow_up:
        print(report.summary())

    # Per-department matrix with a cooperative abort flag
    abort = threading.Event()
    pipeline.run_department(Path("divisao.csv"), "Pessoal", abort=abort)
"""

from .config import ImportConfig
from .enrichment import CnpjLookup
from .errors import (
    ConsistencyMismatch,
    ParseError,
    ProvisioningFailure,
    RegistryImportError,
    ResolutionFailure,
    StoreError,
    TransientStoreError,
    WriteFailure,
)
from .pipeline import ImportPipeline
from .report import ImportReport

__all__ = [
    'ImportPipeline',
    'ImportConfig',
    'ImportReport',
    'CnpjLookup',
    'RegistryImportError',
    'ParseError',
    'ResolutionFailure',
    'ProvisioningFailure',
    'WriteFailure',
    'ConsistencyMismatch',
    'StoreError',
    'TransientStoreError',
]
