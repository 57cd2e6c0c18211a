"""
Store backends implementing the four import collaborators.

MemoryStore is always available; PostgresStore lives in
registry_import.stores.postgres.
"""

from .base import (
    BatchCreateResult,
    Company,
    CompanyRegistry,
    Department,
    DepartmentDirectory,
    LinkStore,
    Person,
    PersonDirectory,
    PersonProfile,
    ResponsibilityLink,
)
from .memory import MemoryStore

__all__ = [
    'BatchCreateResult',
    'Company',
    'CompanyRegistry',
    'Department',
    'DepartmentDirectory',
    'LinkStore',
    'Person',
    'PersonDirectory',
    'PersonProfile',
    'ResponsibilityLink',
    'MemoryStore',
]
