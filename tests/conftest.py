import sys
import os
import pytest
from datetime import datetime, timezone

# 1. Add the parent directory to Python's path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# 2. NOW import from app
from app import create_app
from extensions import db, socketio
from models import User, Organization


@pytest.fixture
def app(tmp_path):
    """Create and configure a new app instance for each test."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "JWT_SECRET_KEY": "test-secret",
        "SECRET_KEY": "test-secret",
        "MAIL_SUPPRESS_SEND": True,
        "STORAGE_ROOT": str(tmp_path / "storage"),
        "MESSAGEBIRD_API_KEY": "test-messagebird",
        "GOOGLE_CLOUD_API_KEY": "test-vision"
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def socket_client(app, client):
    return socketio.test_client(app, flask_test_client=client)


@pytest.fixture
def make_org():
    """Confirmed account + organization, ready to sign in."""
    def _create(email, role='donor', name=None, password='password'):
        user = User(email=email, email_confirmed_at=datetime.now(timezone.utc))
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        db.session.add(Organization(
            id=user.id,
            name=name or email.split('@')[0],
            email=email,
            contact_number='+358401111111',
            address='Testikatu 1',
            role=role
        ))
        db.session.commit()
        return user
    return _create


@pytest.fixture
def login(client):
    def _login(email, password='password'):
        resp = client.post('/api/auth/signin', json={"email": email, "password": password})
        return {'Authorization': f'Bearer {resp.get_json()["access_token"]}'}
    return _login


@pytest.fixture
def donor_user(make_org):
    return make_org("donor@test.com", role='donor', name="Helsinki Bakery")


@pytest.fixture
def receiver_user(make_org):
    return make_org("receiver@test.com", role='receiver', name="Kallio Food Bank")


@pytest.fixture
def donor_headers(login, donor_user):
    return login(donor_user.email)


@pytest.fixture
def receiver_headers(login, receiver_user):
    return login(receiver_user.email)
