"""
Shared pytest fixtures and configuration for all tests.

Provides the class-scoped API suites (one store + one application per
test class), per-test reseeding, and custom markers.
"""

import pytest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vaultke.store import open_store
from vaultke.testing.fixtures import insert_test_data, DEFAULT_USER_ID
from vaultke.testing.harness import ApiSuite


def _open_suite(request, areas):
    """Build a suite from optional class attributes AREAS / USER_ID / OVERRIDES"""
    cls = request.cls
    suite = ApiSuite(
        areas=getattr(cls, 'AREAS', areas),
        user_id=getattr(cls, 'USER_ID', DEFAULT_USER_ID),
        overrides=getattr(cls, 'OVERRIDES', None),
    )
    return suite.setup_suite()


@pytest.fixture(scope='class')
def marketplace_suite(request):
    """Suite wired with the marketplace routes only."""
    suite = _open_suite(request, ('marketplace',))
    yield suite
    suite.teardown_suite()


@pytest.fixture(scope='class')
def notification_suite(request):
    """Suite wired with the notification routes only."""
    suite = _open_suite(request, ('notifications',))
    yield suite
    suite.teardown_suite()


@pytest.fixture(scope='class')
def coverage_suite(request):
    """Suite wired with every API area."""
    suite = _open_suite(request, None)
    yield suite
    suite.teardown_suite()


@pytest.fixture(scope='function')
def disposable_suite():
    """
    Fresh seeded suite owned by a single test.

    Used by cases that end the suite (closing the store) or bind stubs,
    so the shared class suites are never left in a terminal state.
    """
    suite = ApiSuite().setup_suite()
    suite.setup_test()
    yield suite
    suite.teardown_suite()


def _seeded(suite):
    if not suite.closed:
        suite.setup_test()
    return suite


@pytest.fixture(scope='function')
def marketplace(marketplace_suite):
    """Marketplace suite with the fixture graph freshly seeded."""
    return _seeded(marketplace_suite)


@pytest.fixture(scope='function')
def notifications(notification_suite):
    """Notification suite with the fixture graph freshly seeded."""
    return _seeded(notification_suite)


@pytest.fixture(scope='function')
def api(coverage_suite):
    """Full-surface suite with the fixture graph freshly seeded."""
    return _seeded(coverage_suite)


@pytest.fixture(scope='function')
def store():
    """Open in-memory store, closed after the test."""
    handle = open_store()
    yield handle
    handle.close()


@pytest.fixture(scope='function')
def seeded_store(store):
    """Store with the fixture graph inserted."""
    insert_test_data(store)
    return store


# Pytest configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that drive HTTP requests through a suite"
    )
    config.addinivalue_line(
        "markers", "api: marks tests as API endpoint tests"
    )
    config.addinivalue_line(
        "markers", "concurrency: marks tests that fan out parallel requests"
    )
    config.addinivalue_line(
        "markers", "failure_injection: marks tests that close the store mid-case"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically add markers based on fixtures and test names."""
    suite_fixtures = {'marketplace', 'notifications', 'api', 'disposable_suite'}
    for item in items:
        fixtures = set(getattr(item, 'fixturenames', ()))

        # Anything driven through a suite is an integration test
        if fixtures & suite_fixtures:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.api)

        if 'concurrent' in item.name.lower():
            item.add_marker(pytest.mark.concurrency)
            item.add_marker(pytest.mark.slow)

        if 'database_connection_failure' in item.name.lower():
            item.add_marker(pytest.mark.failure_injection)
