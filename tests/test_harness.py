"""
Tests for the API suite harness
Lifecycle state machine, request driver, stubs and the concurrency helper

Run with: pytest tests/test_harness.py -v
"""

import json
import threading

import pytest

from vaultke.testing.assertions import assert_envelope
from vaultke.testing.fixtures import DEFAULT_USER_ID, FIXTURE_IDS, fixture_keys
from vaultke.testing.harness import ApiSuite, SuiteState, SuiteStateError, run_concurrently


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestSuiteLifecycle:
    """Tests for UNOPENED -> READY -> SEEDED -> DIRTY -> CLOSED."""

    def test_initial_state(self):
        suite = ApiSuite()
        assert suite.state is SuiteState.UNOPENED
        assert suite.store is None and suite.app is None

    def test_full_cycle(self):
        suite = ApiSuite(areas=('notifications',))
        suite.setup_suite()
        assert suite.state is SuiteState.READY

        suite.setup_test()
        assert suite.state is SuiteState.SEEDED

        suite.get('/api/v1/notifications')
        assert suite.state is SuiteState.DIRTY

        suite.setup_test()
        assert suite.state is SuiteState.SEEDED

        suite.teardown_suite()
        assert suite.state is SuiteState.CLOSED
        assert suite.store.closed

    def test_setup_suite_twice_rejected(self):
        suite = ApiSuite().setup_suite()
        try:
            with pytest.raises(SuiteStateError):
                suite.setup_suite()
        finally:
            suite.teardown_suite()

    def test_setup_test_before_suite_rejected(self):
        with pytest.raises(SuiteStateError):
            ApiSuite().setup_test()

    def test_request_before_suite_rejected(self):
        with pytest.raises(SuiteStateError):
            ApiSuite().get('/health')

    def test_teardown_is_idempotent(self):
        suite = ApiSuite().setup_suite()
        suite.teardown_suite()
        suite.teardown_suite()
        assert suite.closed

    def test_closed_suite_cannot_reseed(self):
        suite = ApiSuite().setup_suite()
        suite.close_store()
        with pytest.raises(SuiteStateError, match='CLOSED'):
            suite.setup_test()

    def test_reseed_restores_fixture_keys(self, disposable_suite):
        disposable_suite.delete('/api/v1/notifications/test-notification-456')
        disposable_suite.post('/api/v1/notifications', {
            'title': 'Extra', 'message': 'Extra', 'recipientId': 'test-user-456'
        })
        disposable_suite.setup_test()
        expected = {table: tuple(sorted(ids)) for table, ids in FIXTURE_IDS.items()}
        assert fixture_keys(disposable_suite.store) == expected

    def test_area_subset_mounts_only_those_routes(self):
        suite = ApiSuite(areas=('marketplace',)).setup_suite()
        try:
            suite.setup_test()
            assert suite.get('/api/v1/marketplace/products').status_code == 200
            response = suite.get('/api/v1/notifications')
            assert_envelope(response, 404)
        finally:
            suite.teardown_suite()

    def test_unknown_area_rejected(self):
        with pytest.raises(ValueError, match='Unknown API area'):
            ApiSuite(areas=('payroll',)).setup_suite()


# =============================================================================
# REQUEST DRIVER
# =============================================================================

class TestRequestDriver:
    """Tests for headers, bodies and caller attribution."""

    AREAS = ('auth', 'notifications')

    def test_body_sets_json_content_type(self, api):
        response = api.post('/api/v1/notifications', {
            'title': 'Hi', 'message': 'There', 'recipientId': 'test-user-456'
        })
        assert_envelope(response, 201)

    def test_no_role_uses_default_caller(self, api):
        response = api.get('/api/v1/auth/profile')
        envelope = assert_envelope(response, 200)
        assert envelope.data['user']['id'] == DEFAULT_USER_ID

    def test_admin_role_token_attributes_admin(self, api):
        response = api.get('/api/v1/auth/profile', role='admin')
        envelope = assert_envelope(response, 200)
        assert envelope.data['user']['id'] == 'test-admin-123'

    def test_role_sends_bearer_header(self, api):
        assert api.headers_for('user')['Authorization'] == f"Bearer {api.tokens['user']}"
        assert api.headers_for('') == {}

    def test_unknown_role_rejected(self, api):
        with pytest.raises(KeyError):
            api.headers_for('superuser')

    def test_unknown_token_falls_back_to_default(self, api):
        response = api.request('GET', '/api/v1/auth/profile',
                               headers={'Authorization': 'Bearer not-a-real-token'})
        envelope = assert_envelope(response, 200)
        assert envelope.data['user']['id'] == DEFAULT_USER_ID

    def test_role_tokens_are_real_jwts(self, api):
        response = api.post('/api/v1/auth/refresh', role='user')
        envelope = assert_envelope(response, 200)
        assert envelope.data['token']

    def test_raw_body(self, api):
        response = api.request('POST', '/api/v1/notifications', data='not json',
                               content_type='application/json')
        assert_envelope(response, 400, 'Invalid request body')

    def test_response_is_recorded(self, api):
        response = api.get('/api/v1/notifications/unread-count')
        assert response.status_code == 200
        assert response.headers['Content-Type'].startswith('application/json')
        assert json.loads(response.get_data(as_text=True))['success'] is True


class TestAnonymousSuite:
    """A suite with no default caller behaves like an unauthenticated client."""

    AREAS = ('notifications', 'auth')
    USER_ID = None

    def test_requests_without_token_are_unauthorised(self, api):
        assert_envelope(api.get('/api/v1/notifications'), 401, 'not authenticated')

    def test_role_token_identifies_caller(self, api):
        assert_envelope(api.get('/api/v1/notifications', role='user'), 200)

    def test_public_auth_routes_still_work(self, api):
        response = api.post('/api/v1/auth/login', {
            'email': 'test@example.com', 'password': 'password123'
        })
        assert_envelope(response, 200)


# =============================================================================
# STUBS
# =============================================================================

class TestStubs:
    """Tests for inline handlers returning canned envelopes."""

    def test_stub_returns_canned_payload(self):
        suite = ApiSuite(areas=('chamas',)).setup_suite()
        try:
            suite.stub('GET', '/api/v1/chamas/<chama_id>/meetings', {'meetings': []})
            suite.stub('POST', '/api/v1/chamas/<chama_id>/meetings', {'id': 'm1'}, status=201)
            suite.setup_test()

            envelope = assert_envelope(suite.get('/api/v1/chamas/test-chama-123/meetings'), 200)
            assert envelope.data == {'meetings': []}
            envelope = assert_envelope(suite.post('/api/v1/chamas/x/meetings', {}), 201)
            assert envelope.data['id'] == 'm1'
        finally:
            suite.teardown_suite()

    def test_stub_after_first_request_rejected(self, disposable_suite):
        disposable_suite.get('/health')
        with pytest.raises(SuiteStateError):
            disposable_suite.stub('GET', '/api/v1/late', {})

    def test_stub_before_setup_rejected(self):
        with pytest.raises(SuiteStateError):
            ApiSuite().stub('GET', '/api/v1/x', {})


# =============================================================================
# CONCURRENCY HELPER
# =============================================================================

class TestRunConcurrently:
    """Tests for run_concurrently."""

    def test_collects_every_result(self):
        results = run_concurrently(lambda i: i * i, 8)
        assert sorted(results) == [i * i for i in range(8)]

    def test_workers_overlap(self):
        barrier = threading.Barrier(4, timeout=5)

        def worker(index):
            barrier.wait()
            return index

        assert sorted(run_concurrently(worker, 4)) == [0, 1, 2, 3]

    def test_error_is_reraised(self):
        def worker(index):
            if index == 2:
                raise ValueError('worker 2 failed')
            return index

        with pytest.raises(ValueError, match='worker 2 failed'):
            run_concurrently(worker, 4)

    def test_zero_workers(self):
        assert run_concurrently(lambda i: i, 0) == []
