from datetime import timedelta
from types import SimpleNamespace

import pytest

from cloudguard import create_app
from cloudguard.auth.tokens import create_access_token
from cloudguard.extensions import db as _db
from cloudguard.models import User, UserSettings, now_utc
from cloudguard.scheduling.providers import get_provider

TEST_SECRET = "test-secret-key"


@pytest.fixture
def app():
    """Fresh app + in-memory database per test; scheduler never auto-starts."""
    app = create_app({
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "TESTING": True,
        "SECRET_KEY": TEST_SECRET,
        "SCHEDULER_ENABLED": False,
        "ALERT_SEND_DELAY": 0,
        "SENDGRID_API_KEY": "SG.test",
    })
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def user(db):
    u = User(email="owner@example.com", name="Owner")
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def other_user(db):
    u = User(email="someone-else@example.com", name="Other")
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def auth_headers(user):
    token = create_access_token(secret_key=TEST_SECRET, user_id=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_account(db, user):
    """Create a scheduled account row for any provider. Due an hour ago by default."""
    identifiers = {"AWS": "123456789012", "GCP": "my-gcp-project", "AZURE": "0000-sub"}

    def _make(provider="AWS", owner=None, **overrides):
        store = get_provider(provider)
        fields = {
            "user_id": (owner or user).id,
            "name": f"{provider.lower()}-prod",
            "is_active": True,
            "schedule_enabled": True,
            "schedule_frequency": "daily",
            "schedule_hour": 9,
            "next_scheduled_scan": now_utc() - timedelta(hours=1),
        }
        id_attr = {"AWS": "account_id", "GCP": "project_id", "AZURE": "subscription_id"}[store.provider]
        fields[id_attr] = identifiers[store.provider]
        fields.update(overrides)
        account = store.model(**fields)
        db.session.add(account)
        db.session.commit()
        return account

    return _make


@pytest.fixture
def make_settings(db, user):
    def _make(owner=None, **fields):
        s = UserSettings(user_id=(owner or user).id, **fields)
        db.session.add(s)
        db.session.commit()
        return s

    return _make


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def http_calls(monkeypatch):
    """Capture every outbound webhook/Slack POST. Set ``.status`` to change the reply."""
    calls = []
    state = SimpleNamespace(calls=calls, status=200)

    def fake_post(url, data=None, headers=None, timeout=None, **kwargs):
        calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        return FakeResponse(state.status)

    monkeypatch.setattr("cloudguard.alerts.channels.requests.post", fake_post)
    return state


@pytest.fixture
def sent_emails(monkeypatch):
    """Replace SendGrid delivery with a recorder."""
    sent = []

    def fake_send_email(*, api_key, from_email, to_email, subject, html, timeout=10):
        sent.append({"to": to_email, "subject": subject, "from": from_email})
        return True, None

    monkeypatch.setattr("cloudguard.alerts.mailer.send_email", fake_send_email)
    return sent
