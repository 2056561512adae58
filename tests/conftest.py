import os
import sys
import pytest

# Set test environment variables BEFORE importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SESSION_SECRET'] = 'test-secret-key-for-testing-only'

# Add parent directory to path so we can import app and models
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app as flask_app, db
from models import User, Profile, Post, PostCategory
from realtime import relay

# Import the API to register its routes with the app
import api  # noqa: F401


@pytest.fixture(scope='session')
def app():
    """Shared test app on an in-memory database"""
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Fresh application context per test so flask.g starts empty"""
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the app"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, app_context):
    """Empty every table before the test and hand out the session"""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(autouse=True)
def relay_events(app, monkeypatch):
    """Record relay triggers instead of calling the hosted service"""
    events = []

    def record(channel, event, payload):
        events.append((channel, event, payload))
        return {}

    monkeypatch.setattr(relay.client, 'trigger', record)
    return events


def _make_user(db_session, name, email, password='password123', role='USER'):
    user = User(name=name, email=email, role=role)
    user.set_password(password)
    user.profile = Profile(bio='', interests=[])
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def alice(db_session):
    return _make_user(db_session, 'Alice', 'alice@test.com')


@pytest.fixture
def bob(db_session):
    return _make_user(db_session, 'Bob', 'bob@test.com')


@pytest.fixture
def carol(db_session):
    return _make_user(db_session, 'Carol', 'carol@test.com')


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, 'Admin', 'admin@test.com', role='ADMIN')


@pytest.fixture
def login_as(app):
    """Factory returning a test client whose session belongs to the given user"""
    def _login_as(user):
        test_client = app.test_client()
        with test_client.session_transaction() as sess:
            sess['user_id'] = user.id
            sess['name'] = user.name
            sess['user_role'] = user.role
            sess['logged_in'] = True
            sess['authenticated'] = True
        return test_client
    return _login_as


@pytest.fixture
def alice_client(login_as, alice):
    return login_as(alice)


@pytest.fixture
def bob_client(login_as, bob):
    return login_as(bob)


@pytest.fixture
def carol_client(login_as, carol):
    return login_as(carol)


@pytest.fixture
def make_post(db_session):
    """Factory for posts written straight to the database"""
    def _make_post(author, title='Post', category=PostCategory.NEWS.value, **fields):
        post = Post(title=title, content=f"{title} content", category=category, author_id=author.id, **fields)
        db_session.add(post)
        db_session.commit()
        return post
    return _make_post
