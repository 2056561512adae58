"""
Logging configuration for the TourismIQ community API.
"""
import os
import logging
import logging.handlers
from flask import has_request_context, request, g, session


class RequestFormatter(logging.Formatter):
    """
    Formatter that adds request-specific information to logs.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.method = request.method
            record.request_id = getattr(g, 'request_id', None)
            record.user_id = session.get('user_id', 'Anonymous')
        else:
            record.url = None
            record.remote_addr = None
            record.method = None
            record.request_id = None
            record.user_id = None

        return super().format(record)


def setup_logging():
    """Configure application logging"""
    logger = logging.getLogger()

    # Clear any existing handlers
    logger.handlers = []

    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    simple_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )

    # More detailed formatter for when request context is available
    detailed_formatter = RequestFormatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s | '
        'Request: %(request_id)s | URL: %(url)s | IP: %(remote_addr)s | '
        'Method: %(method)s | User: %(user_id)s'
    )

    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    # Optional file handler for permanent logging
    if os.environ.get('LOG_TO_FILE'):
        os.makedirs('logs', exist_ok=True)

        # 10 MB per file, max 5 files
        file_handler = logging.handlers.RotatingFileHandler(
            'logs/tourismiq.log',
            maxBytes=10*1024*1024,
            backupCount=5
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    # HTTP client used by the pub/sub relay
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    sa_logger = logging.getLogger('sqlalchemy.engine')
    sa_logger.setLevel(logging.WARNING)

    logger.info("Logging configured successfully")
