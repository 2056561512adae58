import logging
from flask import Flask, session
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix

from config import get_active_config
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


# Define database model base class
class Base(DeclarativeBase):
    pass


# Initialize extensions
db = SQLAlchemy(model_class=Base)
migrate = Migrate()
csrf = CSRFProtect()

# Default limits, storage and strategy come from RATELIMIT_* config keys
limiter = Limiter(key_func=get_remote_address)


def get_user_rate_limit_key():
    """Rate limit key for write endpoints - per user when logged in, per IP otherwise"""
    user_id = session.get('user_id')
    if user_id:
        return f"user:{user_id}"
    return get_remote_address()


# Create Flask application
app = Flask(__name__)
app.config.from_object(get_active_config())

# Proxy fix for correct client IPs behind the load balancer
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

db.init_app(app)
migrate.init_app(app, db)
csrf.init_app(app)
limiter.init_app(app)

from realtime import relay
relay.init_app(app)

logger.info(f"Environment: {'testing' if app.config['TESTING'] else 'debug' if app.config['DEBUG'] else 'production'}"
            f" - HTTPS cookies: {app.config['SESSION_COOKIE_SECURE']}")
logger.info(f"Rate limiting: {app.config['RATELIMIT_DEFAULT']} per IP")

# Import models so they register with the metadata
with app.app_context():
    import models  # noqa: F401

from error_handlers import setup_error_handlers, setup_health_monitoring
setup_error_handlers(app)
setup_health_monitoring(app)

from request_tracking import setup_request_tracking
setup_request_tracking(app)


@app.after_request
def after_request(response):
    """Add security headers to every API response"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    if not app.config['DEBUG']:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

    # Responses are per-user; never cache them in shared proxies
    if session.get('logged_in'):
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        response.headers['Pragma'] = 'no-cache'

    return response


@app.teardown_appcontext
def shutdown_session(exception=None):
    """Ensure database session is properly closed after each request"""
    try:
        db.session.remove()
        if exception:
            logger.warning(f"Session cleanup after exception: {exception}")
    except Exception as e:
        logger.error(f"Error during session cleanup: {e}")
