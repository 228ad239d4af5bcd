#!/usr/bin/env python3
"""
pytest configuration for the tasklite test suite.

Contention tests that drain large queues through several engines on one
database file are marked ``integration`` and only run with --integration.
"""
import pytest


def pytest_addoption(parser):
    """Add custom command line options to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="Run the slow multi-engine claim contention tests"
    )


def pytest_configure(config):
    """Register the integration marker."""
    config.addinivalue_line(
        "markers", "integration: slow claim contention test across several engines"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --integration is given."""
    if config.getoption("--integration"):
        return

    skip_integration = pytest.mark.skip(reason="contention test, run with --integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
