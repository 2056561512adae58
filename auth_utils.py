"""
Centralized authentication utilities - signed cookie sessions for the JSON API
"""
from flask import session
from functools import wraps
import logging
import time

from error_handlers import AuthenticationError

logger = logging.getLogger(__name__)


def create_session(user_id, name, role, email=None):
    """Create a new user session with activity tracking"""
    session.clear()
    session['user_id'] = user_id
    session['name'] = name
    session['user_role'] = role
    session['authenticated'] = True
    session['logged_in'] = True

    if email:
        session['email'] = email

    # Session is non-permanent (expires on browser close)
    session.permanent = False

    now_timestamp = time.time()
    session['created_at'] = now_timestamp
    session['last_activity'] = now_timestamp


def clear_session():
    """Clear the current session"""
    session.clear()


def is_authenticated():
    """Unified authentication check - single source of truth."""
    return bool(session.get('authenticated', False)) and session.get('user_id') is not None


def require_auth(f):
    """Decorator to require an authenticated session; responds 401 otherwise"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_authenticated():
            raise AuthenticationError('Unauthorized')
        session['last_activity'] = time.time()
        return f(*args, **kwargs)
    return decorated_function


def get_user_id():
    """Get current user ID from session"""
    user_id = session.get('user_id')
    return int(user_id) if user_id is not None else None


def get_user_role():
    """Get current user role from session"""
    return session.get('user_role')


def get_session_user():
    """Session summary returned by the session endpoint"""
    if not is_authenticated():
        return None
    return {
        'id': get_user_id(),
        'name': session.get('name'),
        'email': session.get('email'),
        'role': get_user_role(),
    }
