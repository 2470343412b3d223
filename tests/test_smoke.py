import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from werkzeug.security import generate_password_hash

from app.intake import audit, create_app
from app.intake.db import session_scope
from app.intake.models import Base, Client, LoginAttempt, User
from app.intake.notifications import LoggingDispatcher, SmtpDispatcher, dispatcher_from_config, render_message


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "3")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_SERVER", "NOTIFICATION_WORKERS"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), role="ADMIN", is_active=True)
        owner = User(email="owner@example.com", password_hash=generate_password_hash("pw"), role="CLIENT", is_active=True)
        s.add_all([admin, owner])
        s.flush()
        s.add(Client(user_id=owner.id, status="PENDING"))

    return app.test_client()


def _user_id(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").data == b"ok"


def test_login_logout(client):
    assert client.get("/auth/me").status_code == 401

    r = client.post("/auth/login", json={"email": "Owner@Example.com ", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "CLIENT"

    r = client.get("/auth/me")
    assert r.json["email"] == "owner@example.com"
    assert r.json["impersonated_by"] is None

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401

    with session_scope(client.application) as s:
        actions = [e.action for e in audit.recent_events(s)]
    assert actions[:2] == [audit.USER_LOGOUT, audit.USER_LOGIN]


def test_login_form_post(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "ADMIN"


def test_failed_login_is_audited_and_rate_limited(client):
    for _ in range(3):
        r = client.post("/auth/login", json={"email": "owner@example.com", "password": "wrong"})
        assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"})
    assert r.status_code == 429

    with session_scope(client.application) as s:
        failed = [e for e in audit.recent_events(s) if e.action == audit.USER_LOGIN_FAILED]
        assert len(failed) == 3
        assert s.query(LoginAttempt).count() == 3


def test_successful_login_clears_attempts(client):
    client.post("/auth/login", json={"email": "owner@example.com", "password": "wrong"})
    client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"})
    with session_scope(client.application) as s:
        assert s.query(LoginAttempt).count() == 0


def test_successful_login_keeps_full_failure_budget(client):
    assert client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"}).status_code == 200
    codes = [client.post("/auth/login", json={"email": "owner@example.com", "password": "wrong"}).status_code for _ in range(2)]
    assert codes == [401, 401]
    assert client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"}).status_code == 200


def test_impersonation_round_trip(client):
    app = client.application
    owner_id = _user_id(app, "owner@example.com")
    admin_id = _user_id(app, "admin@example.com")

    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.post(f"/auth/impersonate/{owner_id}")
    assert r.status_code == 200
    assert r.json["impersonated_by"] == admin_id

    r = client.get("/auth/me")
    assert r.json["email"] == "owner@example.com"
    assert r.json["impersonated_by"] == admin_id

    # While impersonating, admin-only routes are closed.
    assert client.get("/api/audit").status_code == 403

    r = client.post("/auth/impersonate/end")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"

    with session_scope(app) as s:
        actions = [e.action for e in audit.trail(s, "user", owner_id)]
    assert actions == [audit.ADMIN_IMPERSONATE_END, audit.ADMIN_IMPERSONATE_START]


def test_cannot_impersonate_admin_or_missing_user(client):
    app = client.application
    admin_id = _user_id(app, "admin@example.com")
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert client.post(f"/auth/impersonate/{admin_id}").status_code == 400
    assert client.post("/auth/impersonate/9999").status_code == 404


def test_client_cannot_impersonate(client):
    admin_id = _user_id(client.application, "admin@example.com")
    client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"})
    assert client.post(f"/auth/impersonate/{admin_id}").status_code == 403
    assert client.post("/auth/impersonate/end").status_code == 400


def test_production_guardrails(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db.example.com/intake")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()

    monkeypatch.setenv("SECRET_KEY", "a-real-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_render_message_fills_context():
    subject, body = render_message("document_rejected", {"name": "Dana", "document_type": "W9", "reason": "Blurry"})
    assert subject == "Action needed: W9 was not accepted"
    assert body.startswith("Hello Dana,")
    assert "Reason: Blurry" in body


def test_dispatcher_from_config():
    assert isinstance(dispatcher_from_config({}), LoggingDispatcher)
    smtp = dispatcher_from_config({"SMTP_SERVER": "smtp.example.com", "EMAIL_FROM": "noreply@example.com", "SMTP_PORT": 2525})
    assert isinstance(smtp, SmtpDispatcher)
    assert smtp.port == 2525


class _ExplodingDispatcher(LoggingDispatcher):
    def notify(self, template_id, recipient, context):
        raise ConnectionError("smtp down")


def test_notification_failures_are_logged_not_raised(caplog):
    from app.intake.events import DocumentStatusChanged, EventBus, Recipient
    from app.intake.notifications import NotificationSubscriber

    bus = EventBus()
    NotificationSubscriber(_ExplodingDispatcher(), admin_email="ops@example.com").register(bus)
    bus.publish(
        DocumentStatusChanged(
            document_id=1,
            client_id=1,
            document_type="W9",
            original_name="w9.pdf",
            old_status="PENDING",
            new_status="REJECTED",
            reason="Blurry",
            owner=Recipient(user_id=1, email="owner@example.com", name="Dana"),
        )
    )
    assert "Notification document_rejected to owner@example.com failed" in caplog.text


class _BlockingDispatcher(LoggingDispatcher):
    def __init__(self):
        self.release = threading.Event()
        self.sent = []

    def notify(self, template_id, recipient, context):
        self.release.wait(5)
        self.sent.append((template_id, recipient))


def test_notifications_are_delivered_off_the_publishing_thread():
    from app.intake.events import DocumentStatusChanged, EventBus, Recipient
    from app.intake.notifications import NotificationSubscriber

    dispatcher = _BlockingDispatcher()
    subscriber = NotificationSubscriber(dispatcher, executor=ThreadPoolExecutor(max_workers=1))
    bus = EventBus()
    subscriber.register(bus)
    bus.publish(
        DocumentStatusChanged(
            document_id=1,
            client_id=1,
            document_type="W9",
            original_name="w9.pdf",
            old_status="PENDING",
            new_status="APPROVED",
            reason=None,
            owner=Recipient(user_id=1, email="owner@example.com", name="Dana"),
        )
    )
    # publish returned while the dispatcher is still blocked
    assert dispatcher.sent == []

    dispatcher.release.set()
    subscriber.shutdown()
    assert dispatcher.sent == [("document_approved", "owner@example.com")]


def test_create_app_uses_worker_pool_for_notifications(client):
    subscriber = client.application.extensions["intake_notifications"]
    assert isinstance(subscriber.executor, ThreadPoolExecutor)
    subscriber.shutdown()
