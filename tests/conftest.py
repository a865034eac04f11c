"""Shared pytest configuration and fixtures for the TCC manager test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "macos: mark test as requiring a real macOS host (mdfind, defaults, TCC.db)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-macos",
        action="store_true",
        default=False,
        help="Run tests that talk to the real macOS tools and stores",
    )


def pytest_collection_modifyitems(config, items):
    """Skip macOS tests unless --run-macos is specified."""
    if config.getoption("--run-macos"):
        return

    skip_macos = pytest.mark.skip(reason="Need --run-macos option to run")
    for item in items:
        if "macos" in item.keywords:
            item.add_marker(skip_macos)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def default_config_path() -> Path:
    """Return the shipped config.txt."""
    return PROJECT_ROOT / "config.txt"
