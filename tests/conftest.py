"""
Shared test fixtures for the import engine test suite.
"""
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from registry_import.config import ImportConfig
from registry_import.pipeline import ImportPipeline
from registry_import.stores.memory import MemoryStore


def no_sleep(_seconds):
    pass


@pytest.fixture
def config():
    """Zero-delay config so retries, pauses and the settle delay do not slow tests."""
    return ImportConfig(row_pause=0.0, backoff_base=0.0, settle_delay=0.0)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def pipeline(store, config):
    return ImportPipeline.from_store(store, config=config, sleep=no_sleep)
