"""pytest integration: options, markers and fixtures for module tests.

Enable with ``pytest_plugins = ["azure_module_testkit.pytest_plugin"]`` in a
top-level conftest.py.
"""

import os

import pytest

from .config.loader import get_testkit_config, reset_config_cache
from .logging_config import configure_logging
from .runner import MultiTenantTestRunner


def pytest_addoption(parser):
    """Add custom pytest options for module integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure tenants (requires terraform)",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: test provisions real Azure resources"
    )
    config.addinivalue_line(
        "markers", "multi_tenant: test body runs once per configured tenant"
    )
    configure_logging()


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration") or os.environ.get("AMT_RUN_INTEGRATION"):
        return
    skip_integration = pytest.mark.skip(reason="needs --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(scope="session")
def testkit_config():
    """Tenants and harness settings, loaded once per session."""
    reset_config_cache()
    return get_testkit_config()


@pytest.fixture(scope="session")
def tenant_definitions(testkit_config):
    return tuple(testkit_config.tenants)


@pytest.fixture
def multi_tenant_runner(testkit_config):
    """A fresh runner over the configured tenants."""
    return MultiTenantTestRunner(
        testkit_config.tenants, settings=testkit_config.settings
    )
