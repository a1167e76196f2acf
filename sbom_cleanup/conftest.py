"""Pytest configuration for the SBOM cleanup worker tests.

Environment variables are set before any settings are loaded so tests never
pick up a developer's real connection string or token.
"""

import os


def pytest_configure(config):
    """Configure test environment before any tests run."""
    config.addinivalue_line("markers", "integration: tests that touch a real (temporary) database")

    os.environ.setdefault("SBOM_DB_CONNECTION_STRING", "sqlite+aiosqlite:///./sbom_test.db")
    os.environ.setdefault("RELEASE_API_TOKEN", "test-token-0123456789")
    os.environ.setdefault("RELEASE_API_BASE_URL", "https://vsrm.example.test")
    os.environ.setdefault("LOG_JSON", "false")
