"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import copy
import sys
from pathlib import Path

import pytest
from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (full session workflows)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def fixtures_dir():
    """Return the directory holding sample structure files."""
    return FIXTURES_DIR


@pytest.fixture
def log_messages():
    """Capture loguru output as a list of "LEVEL:message" strings."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda message: messages.append(str(message).rstrip("\n")),
        level="DEBUG",
        format="{level}:{message}",
    )
    yield messages
    logger.remove(handler_id)


COURSE_SPEC = {
    "identifier": "course",
    "title": "Networking Basics",
    "children": [
        {
            "identifier": "module1",
            "title": "Module 1",
            "children": [
                {"identifier": "lesson1", "title": "Lesson 1", "resourceRef": "res1"},
                {"identifier": "lesson2", "title": "Lesson 2", "resourceRef": "res2"},
            ],
        },
        {
            "identifier": "module2",
            "title": "Module 2",
            "children": [
                {"identifier": "lesson3", "title": "Lesson 3", "resourceRef": "res3"},
                {"identifier": "lesson4", "title": "Lesson 4", "resourceRef": "res4"},
            ],
        },
    ],
}


@pytest.fixture
def course_spec():
    """
    Two modules with two launchable lessons each.

    course
      module1: lesson1, lesson2
      module2: lesson3, lesson4

    Returns a deep copy, so tests may edit it freely.
    """
    return copy.deepcopy(COURSE_SPEC)


def find_item(spec: dict, identifier: str) -> dict:
    """Locate an item in a raw structure mapping by identifier."""
    if spec["identifier"] == identifier:
        return spec
    for child in spec.get("children", []):
        found = find_item(child, identifier)
        if found is not None:
            return found
    return None


@pytest.fixture
def item_in():
    """Helper fixture: item_in(spec, "lesson1") returns that item's mapping."""
    return find_item
