import pytest

from capsule import create_app
from capsule.clock import advance_to
from capsule.ledger import Ledger
from capsule.models import db

ADMIN = "admin"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "CACHE_TYPE": "SimpleCache",
            "CLOCK_WATCHER": False,
            "CSRF_ENABLED": False,
            "NETWORK_ADMIN": ADMIN,
        }
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def ledger(ctx):
    return Ledger(db.session)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Put `username` in the test client's session."""

    def _login(username):
        with client.session_transaction() as sess:
            sess["username"] = username

    return _login


@pytest.fixture
def set_height(app):
    def _set(height):
        with app.app_context():
            return advance_to(height)

    return _set


@pytest.fixture
def message_kwargs():
    """Valid create_message keyword arguments, with overrides."""

    def _kwargs(**overrides):
        kwargs = {
            "content_hash": "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
            "subject": "hello",
            "content": "first **capsule**",
            "msg_type": "text",
            "timeout_period": 10,
            "is_private": False,
            "target_user": None,
            "tags": ["intro"],
        }
        kwargs.update(overrides)
        return kwargs

    return _kwargs
