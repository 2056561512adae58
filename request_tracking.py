"""
Request ID Tracking Middleware

Every request gets a unique request ID that is stored on `g`, echoed back in
the X-Request-ID response header, and included in error bodies so a client
report can be matched to the server log.
"""

import uuid
import logging
import time
from flask import request, g

logger = logging.getLogger(__name__)

# Paths that should NEVER be logged (high-frequency, low-value)
NO_LOG_PATHS = {
    '/health',
    '/favicon.ico',
}

# Paths polled by clients; only errors are logged
MINIMAL_LOG_PATHS_PREFIX = (
    '/api/notifications/unread-count',
    '/api/messages/unread-count',
    '/api/posts',
)


def generate_request_id():
    """
    Generate a unique request ID for tracking.

    Returns:
        str: A unique request ID (UUID4)
    """
    return str(uuid.uuid4())


def get_request_id():
    """
    Get the current request ID from Flask's request context.

    Returns:
        str: The current request ID, or None if not set
    """
    return getattr(g, 'request_id', None)


def _should_log_request(path):
    """
    Determine if a request should be logged based on its path.

    Returns:
        str: 'none' (no logging), 'minimal' (errors only), or 'full' (all logs)
    """
    if path in NO_LOG_PATHS:
        return 'none'

    if any(path.startswith(prefix) for prefix in MINIMAL_LOG_PATHS_PREFIX):
        return 'minimal'

    return 'full'


def setup_request_tracking(app):
    """
    Set up request ID tracking middleware for the Flask application.

    Args:
        app: Flask application instance
    """

    @app.before_request
    def track_request_start():
        # Honour an upstream request ID for distributed tracing
        request_id = request.headers.get('X-Request-ID') or generate_request_id()

        g.request_id = request_id
        g.request_start_time = time.time()
        g.log_level = _should_log_request(request.path)

        if g.log_level == 'full':
            logger.info(
                f"[{request_id}] Request started: {request.method} {request.path}",
                extra={
                    'request_id': request_id,
                    'method': request.method,
                    'path': request.path,
                    'remote_addr': request.remote_addr,
                }
            )

    @app.after_request
    def track_request_end(response):
        request_id = getattr(g, 'request_id', None)
        start_time = getattr(g, 'request_start_time', None)
        log_level = getattr(g, 'log_level', 'full')

        if request_id:
            response.headers['X-Request-ID'] = request_id

        if start_time:
            duration_ms = int((time.time() - start_time) * 1000)
            response.headers['X-Response-Time'] = f"{duration_ms}ms"

            if log_level == 'none':
                return response

            if response.status_code >= 400:
                logger.warning(
                    f"[{request_id}] Request failed: {request.method} {request.path} "
                    f"- {response.status_code} ({duration_ms}ms)"
                )
            elif log_level == 'full':
                logger.info(
                    f"[{request_id}] Request completed: {request.method} {request.path} "
                    f"- {response.status_code} ({duration_ms}ms)"
                )

        return response

    logger.info("Request tracking middleware initialized")
