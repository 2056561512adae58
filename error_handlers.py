"""
Error handling for the TourismIQ community API.

Domain helpers raise the APIError subclasses below; the handlers registered
by setup_error_handlers() turn them (and any werkzeug or unexpected error)
into a uniform JSON body carrying the request ID.
"""

import logging
from datetime import datetime
from flask import request, jsonify
from werkzeug.exceptions import HTTPException

from request_tracking import get_request_id

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for errors that map to an HTTP status"""
    status_code = 500
    error = 'Internal error'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details


class ValidationError(APIError):
    """Malformed or rejected input (400)"""
    status_code = 400
    error = 'Validation failed'


class AuthenticationError(APIError):
    """Missing session (401)"""
    status_code = 401
    error = 'Authentication required'


class AuthorizationError(APIError):
    """Session does not own the resource (403)"""
    status_code = 403
    error = 'Forbidden'


class NotFoundError(APIError):
    """Requested entity does not exist (404)"""
    status_code = 404
    error = 'Not found'


class ConflictError(APIError):
    """State changed underneath the request (409)"""
    status_code = 409
    error = 'Conflict'


class ServiceUnavailableError(APIError):
    """A required backing service is not configured (503)"""
    status_code = 503
    error = 'Service unavailable'


def error_response(status_code, error, message, details=None):
    """Build the JSON error body shared by every handler"""
    body = {
        'success': False,
        'error': error,
        'message': message,
        'error_code': status_code,
        'request_id': get_request_id(),
    }
    if details is not None:
        body['details'] = details
    return jsonify(body), status_code


def _rollback_session():
    from app import db
    try:
        db.session.rollback()
    except Exception as db_error:
        logger.debug(f"[{get_request_id()}] DB rollback error during exception handling: {db_error}")


def setup_error_handlers(app):
    """Setup error handlers for the application with request ID tracking"""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        request_id = get_request_id()
        if error.status_code >= 500:
            logger.error(f"[{request_id}] {error.status_code} {request.path}: {error.message}")
        else:
            logger.info(f"[{request_id}] {error.status_code} {request.path}: {error.message}")
        _rollback_session()
        return error_response(error.status_code, error.error, error.message, error.details)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        """Handle werkzeug errors: 404 routes, 405, 413, 429 rate limits, CSRF 400"""
        request_id = get_request_id()
        status_code = error.code or 500

        if status_code == 429:
            logger.warning(f"[{request_id}] Rate limit exceeded: {request.path} - {error.description}")
            message = 'Too many requests. Please try again later.'
        elif status_code == 400 and 'csrf' in str(error.description or '').lower():
            message = 'Security token expired. Please refresh the token and try again.'
        else:
            message = error.description or error.name

        return error_response(status_code, error.name, message)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle any unexpected errors"""
        request_id = get_request_id()
        logger.error(f"[{request_id}] Unexpected error: {request.url} - {str(error)}", exc_info=True)

        _rollback_session()

        return error_response(
            500,
            'Unexpected error',
            'An unexpected error occurred. Please try again later.'
        )


def setup_health_monitoring(app):
    """Setup health monitoring endpoint"""

    @app.route('/health')
    def health_check():
        """
        Health check endpoint

        Query Parameters:
            check_db (bool): If 'true', performs database connectivity check

        Returns:
            200: All systems healthy
            503: Database unreachable
        """
        import time

        check_db = request.args.get('check_db', 'false').lower() == 'true'
        relay = app.extensions.get('realtime_relay')

        response_data = {
            'status': 'healthy',
            'message': 'Application is running normally',
            'timestamp': datetime.now().isoformat(),
            'realtime': 'enabled' if relay is not None and relay.enabled else 'disabled',
        }

        if check_db:
            try:
                from app import db
                from sqlalchemy import text

                start_time = time.time()
                db.session.execute(text("SELECT 1")).scalar()
                query_time_ms = (time.time() - start_time) * 1000

                response_data['database'] = {
                    'connected': True,
                    'query_time_ms': round(query_time_ms, 2)
                }
            except Exception as e:
                logger.error(f"Database health check failed: {str(e)}", exc_info=True)
                response_data['status'] = 'unhealthy'
                response_data['message'] = 'Database connection failed'
                response_data['database'] = {'connected': False}
                return jsonify(response_data), 503

        return jsonify(response_data), 200
