"""
Error body shape, request tracking and health check tests
"""
import pytest

from error_handlers import APIError, NotFoundError, error_response
from post_utils import PostManager

pytestmark = pytest.mark.integration


class TestErrorBodies:

    def test_validation_error_body(self, client, db_session):
        response = client.get('/api/posts?cursor=abc')
        assert response.status_code == 400
        data = response.get_json()
        assert data['success'] is False
        assert data['error'] == 'Validation failed'
        assert data['message'] == 'Invalid cursor'
        assert data['error_code'] == 400
        assert data['details'] == {'field': 'cursor'}
        assert data['request_id'] == response.headers['X-Request-ID']

    def test_route_failure_hides_detail(self, client, db_session, monkeypatch):
        def broken_feed(*args, **kwargs):
            raise RuntimeError('kaboom')

        monkeypatch.setattr(PostManager, 'get_feed', staticmethod(broken_feed))

        response = client.get('/api/posts')
        assert response.status_code == 500
        data = response.get_json()
        assert data['message'] == 'Failed to load posts'
        assert 'kaboom' not in response.get_data(as_text=True)

    def test_catch_all_handler(self, app):
        handler = app.error_handler_spec[None][None][Exception]
        with app.test_request_context('/api/anything'):
            response, status = handler(RuntimeError('kaboom'))
        assert status == 500
        assert response.get_json()['error'] == 'Unexpected error'
        assert 'kaboom' not in response.get_json()['message']

    def test_unknown_route_is_json(self, client):
        response = client.get('/api/does-not-exist')
        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_method_not_allowed_is_json(self, client):
        response = client.put('/api/posts')
        assert response.status_code == 405
        assert response.get_json()['error_code'] == 405

    def test_unauthenticated_body(self, client):
        response = client.get('/api/messages')
        assert response.status_code == 401
        assert response.get_json()['message'] == 'Unauthorized'

    def test_error_response_helper(self, app):
        with app.test_request_context('/'):
            body, status = error_response(418, 'Teapot', 'Short and stout')
        assert status == 418
        assert body.get_json()['message'] == 'Short and stout'
        assert 'details' not in body.get_json()

    def test_default_messages(self):
        assert NotFoundError().message == 'Not found'
        assert APIError().status_code == 500


class TestRequestTracking:

    def test_request_id_generated(self, client, db_session):
        response = client.get('/api/posts')
        assert response.headers['X-Request-ID']
        assert response.headers['X-Response-Time'].endswith('ms')

    def test_upstream_request_id_honoured(self, client, db_session):
        response = client.get('/api/posts', headers={'X-Request-ID': 'trace-123'})
        assert response.headers['X-Request-ID'] == 'trace-123'

    def test_security_headers(self, client, db_session):
        response = client.get('/api/posts')
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Frame-Options'] == 'DENY'


class TestHealth:

    def test_liveness(self, client):
        data = client.get('/health').get_json()
        assert data['status'] == 'healthy'
        assert data['realtime'] == 'enabled'
        assert 'database' not in data

    def test_health_with_database_check(self, client):
        data = client.get('/health?check_db=true').get_json()
        assert data['database']['connected'] is True
