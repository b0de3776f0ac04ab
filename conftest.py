"""
Pytest configuration and fixtures for tender monitor tests.
"""

import os
import shutil
import logging
import tempfile
from pathlib import Path

import pytest
from hypothesis import settings, Verbosity

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=10, deadline=5000, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=100, deadline=30000, verbosity=Verbosity.normal)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(scope="session")
def temp_db_dir():
    """Create a temporary directory for test databases."""
    temp_dir = tempfile.mkdtemp(prefix="tender_monitor_test_")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def temp_db_path(temp_db_dir, request):
    """Create a distinct database path for each test."""
    yield str(Path(temp_db_dir) / f"test_{os.getpid()}_{request.node.name[:60]}_{id(request)}.db")


def pytest_configure(config):
    """Keep library chatter out of test output."""
    logging.getLogger("tender_monitor").setLevel(logging.WARNING)
    logging.getLogger("hypothesis").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def pytest_collection_modifyitems(config, items):
    """Tag tests by kind."""
    for item in items:
        if any(marker.name == "given" for marker in item.iter_markers()) or "propert" in item.name.lower():
            item.add_marker(pytest.mark.property)

        if "integration" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
