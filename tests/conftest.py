"""
Pytest configuration and fixtures for standby sync tests.
Provides markers and the database connection strings for integration runs.
"""

import os
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def main_dsn() -> str:
    """Connection string of a scratch main database, or skip."""
    dsn = os.getenv("STANDBY_SYNC_TEST_MAIN_DSN")
    if not dsn:
        pytest.skip("STANDBY_SYNC_TEST_MAIN_DSN not set")
    return dsn


@pytest.fixture(scope="session")
def standin_dsn() -> str:
    """Connection string of a scratch standby database, or skip."""
    dsn = os.getenv("STANDBY_SYNC_TEST_STANDIN_DSN")
    if not dsn:
        pytest.skip("STANDBY_SYNC_TEST_STANDIN_DSN not set")
    return dsn


@pytest.fixture(autouse=True)
def set_test_env_vars() -> None:
    """Set default test environment variables if not already set."""
    defaults = {
        "VAULT_ADDR": "http://localhost:8200",
        "VAULT_TOKEN": "dev-root-token",
    }

    for key, value in defaults.items():
        if key not in os.environ:
            os.environ[key] = value
