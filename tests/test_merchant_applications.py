"""Tests for the merchant application lifecycle."""
import pytest
from werkzeug.security import generate_password_hash

from app.intake import audit, create_app
from app.intake.db import session_scope
from app.intake.errors import AlreadyTerminal, InvalidTransition, MissingReason, NotReady, OwnerNotFound
from app.intake.models import Base, Client, User
from app.intake.modules.merchant_applications.models import MerchantApplication
from app.intake.modules.merchant_applications.service import (
    delete_application,
    reveal_sensitive,
    save_application,
    serialize_application,
    set_application_status,
    submit_application,
)
from app.intake.notifications import APPLICATION_SUBMITTED, APPLICATION_SUBMITTED_ADMIN, NotificationDispatcher

COMPLETE = {
    "legalBusinessName": "Acme Goods LLC",
    "businessPhone": "555-0100",
    "federalTaxIdNumber": "12-3456789",
    "locationAddress": "1 Main St",
    "ownershipType": "LLC",
    "ownerFirstName": "Dana",
    "ownerLastName": "Lee",
    "bankName": "First Bank",
    "abaRoutingNumber": "021000021",
    "ddaNumber": "000123456789",
    "merchantSignature": "Dana Lee",
    "agreementAccepted": True,
}


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    def notify(self, template_id, recipient, context):
        self.sent.append((template_id, recipient, context))


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("ADMIN_NOTIFICATION_EMAIL", "ops@example.com")
    monkeypatch.setenv("NOTIFICATION_WORKERS", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_SERVER"):
        monkeypatch.delenv(k, raising=False)

    dispatcher = RecordingDispatcher()
    app = create_app(dispatcher=dispatcher)
    app.config["TESTING"] = True
    app.extensions["test_dispatcher"] = dispatcher
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), role="ADMIN", is_active=True)
        owner = User(email="owner@example.com", password_hash=generate_password_hash("pw"), role="CLIENT", is_active=True)
        s.add_all([admin, owner])
        s.flush()
        s.add(Client(user_id=owner.id, status="PENDING"))
    return app


def _users(s):
    admin = s.query(User).filter(User.email == "admin@example.com").one()
    owner = s.query(User).filter(User.email == "owner@example.com").one()
    return admin, owner


def _create(app, payload):
    with session_scope(app) as s:
        _, owner = _users(s)
        return save_application(s, owner_id=owner.client.id, payload=payload, actor=owner).id


def _save(app, application_id, payload):
    with session_scope(app) as s:
        _, owner = _users(s)
        return save_application(
            s, owner_id=owner.client.id, payload=payload, actor=owner, application_id=application_id
        )


def _submit(app, application_id):
    with session_scope(app) as s:
        _, owner = _users(s)
        return submit_application(s, s.get(MerchantApplication, application_id), actor=owner)


def _set_status(app, application_id, status, reason=None):
    with session_scope(app) as s:
        admin, _ = _users(s)
        return set_application_status(s, s.get(MerchantApplication, application_id), status, reason, reviewer=admin)


def test_create_starts_as_draft(app):
    app_id = _create(app, {"legalBusinessName": "Acme", "status": "APPROVED"})
    with session_scope(app) as s:
        application = s.get(MerchantApplication, app_id)
        assert application.status == "DRAFT"
        assert application.legal_business_name == "Acme"
        assert application.last_saved_at is not None
        entry = audit.trail(s, "merchant_application", app_id)[0]
        assert entry.action == audit.MERCHANT_APPLICATION_CREATE


def test_create_for_unknown_owner(app):
    with pytest.raises(OwnerNotFound):
        with session_scope(app) as s:
            admin, _ = _users(s)
            save_application(s, owner_id=9999, payload={}, actor=admin)


def test_partial_save_never_erases_previous_values(app):
    app_id = _create(app, {"legalBusinessName": "Acme", "bankName": "First Bank", "entityStartDate": "2020-05-01"})
    _save(app, app_id, {"legalBusinessName": "", "bankName": None, "entityStartDate": "garbage", "city": "Austin"})
    with session_scope(app) as s:
        application = s.get(MerchantApplication, app_id)
        assert application.legal_business_name == "Acme"
        assert application.bank_name == "First Bank"
        assert application.entity_start_date.year == 2020
        assert application.city == "Austin"
        entry = audit.trail(s, "merchant_application", app_id)[0]
        assert entry.action == audit.MERCHANT_APPLICATION_UPDATE
        assert audit.event_metadata(entry)["fields"] == ["city"]


def test_partial_nested_save_keeps_stored_keys(app):
    app_id = _create(
        app,
        {"financialRepresentative": {"firstName": "Dana", "email": "d@example.com", "address": {"city": "Austin"}}},
    )
    _save(
        app,
        app_id,
        {"financialRepresentative": {"firstName": None, "email": "new@example.com", "address": {"zip": "78701"}}},
    )
    with session_scope(app) as s:
        rep = s.get(MerchantApplication, app_id).financial_representative
    assert rep == {"firstName": "Dana", "email": "new@example.com", "address": {"city": "Austin", "zip": "78701"}}


def test_over_long_value_is_dropped_and_rest_of_save_kept(app):
    app_id = _create(app, {"zip": "78701"})
    _save(app, app_id, {"zip": "9" * 200, "city": "Austin"})
    with session_scope(app) as s:
        application = s.get(MerchantApplication, app_id)
        assert application.zip == "78701"
        assert application.city == "Austin"


def test_submit_incomplete_is_not_ready(app):
    app_id = _create(app, {"legalBusinessName": "Acme"})
    with pytest.raises(NotReady) as exc:
        _submit(app, app_id)
    assert "banking" in exc.value.missing
    assert "business_information" in exc.value.missing


def test_submit_with_custom_readiness_check(app):
    app_id = _create(app, {"legalBusinessName": "Acme"})
    with session_scope(app) as s:
        _, owner = _users(s)
        application = submit_application(s, s.get(MerchantApplication, app_id), actor=owner, readiness_check=lambda a: [])
        assert application.status == "SUBMITTED"


def test_double_submit_is_a_no_op(app):
    app_id = _create(app, COMPLETE)
    first = _submit(app, app_id)
    assert first.status == "SUBMITTED"
    submitted_at = first.submitted_at
    assert submitted_at is not None

    second = _submit(app, app_id)
    assert second.status == "SUBMITTED"
    assert second.submitted_at == submitted_at

    with session_scope(app) as s:
        actions = [ev.action for ev in audit.trail(s, "merchant_application", app_id)]
    assert actions.count(audit.MERCHANT_APPLICATION_SUBMIT) == 1

    templates = [t for t, _, _ in app.extensions["test_dispatcher"].sent]
    assert templates.count(APPLICATION_SUBMITTED) == 1
    assert templates.count(APPLICATION_SUBMITTED_ADMIN) == 1


def test_review_transitions(app):
    app_id = _create(app, COMPLETE)
    with pytest.raises(InvalidTransition):
        _set_status(app, app_id, "UNDER_REVIEW")

    _submit(app, app_id)
    with pytest.raises(InvalidTransition):
        _set_status(app, app_id, "SUBMITTED")

    reviewing = _set_status(app, app_id, "UNDER_REVIEW")
    assert reviewing.status == "UNDER_REVIEW"
    assert reviewing.reviewed_at is None

    # Duplicate submit while under review is ignored.
    assert _submit(app, app_id).status == "UNDER_REVIEW"

    with pytest.raises(MissingReason):
        _set_status(app, app_id, "REJECTED", "  ")

    rejected = _set_status(app, app_id, "REJECTED", "Incomplete ownership")
    assert rejected.status == "REJECTED"
    assert rejected.rejection_reason == "Incomplete ownership"
    assert rejected.reviewed_at is not None
    assert rejected.reviewed_by_user_id is not None

    with session_scope(app) as s:
        entry = audit.trail(s, "merchant_application", app_id)[0]
        assert entry.action == audit.MERCHANT_APPLICATION_REVIEW
        meta = audit.event_metadata(entry)
        assert (meta["old_status"], meta["new_status"]) == ("UNDER_REVIEW", "REJECTED")


def test_terminal_applications_are_frozen(app):
    app_id = _create(app, COMPLETE)
    _submit(app, app_id)
    _set_status(app, app_id, "APPROVED")

    with pytest.raises(AlreadyTerminal):
        _save(app, app_id, {"city": "Austin"})
    with pytest.raises(AlreadyTerminal):
        _submit(app, app_id)
    with pytest.raises(InvalidTransition):
        _set_status(app, app_id, "REJECTED", "Changed our mind")


def test_approve_directly_from_submitted(app):
    app_id = _create(app, COMPLETE)
    _submit(app, app_id)
    approved = _set_status(app, app_id, "approved")
    assert approved.status == "APPROVED"
    assert approved.rejection_reason is None


def test_sensitive_fields_are_masked_until_revealed(app):
    app_id = _create(app, COMPLETE)
    with session_scope(app) as s:
        admin, _ = _users(s)
        application = s.get(MerchantApplication, app_id)
        masked = serialize_application(application)
        assert masked["dda_number"] == "********6789"
        assert masked["bank_name"] == "First Bank"
        revealed = reveal_sensitive(s, application, actor=admin)
        assert revealed["dda_number"] == "000123456789"

    with session_scope(app) as s:
        entry = audit.trail(s, "merchant_application", app_id)[0]
        assert entry.action == audit.SENSITIVE_DATA_ACCESS
        assert "dda_number" in audit.event_metadata(entry)["fields"]


def test_client_may_only_delete_drafts(app):
    draft_id = _create(app, {"legalBusinessName": "Draft Co"})
    submitted_id = _create(app, COMPLETE)
    _submit(app, submitted_id)

    with session_scope(app) as s:
        _, owner = _users(s)
        delete_application(s, s.get(MerchantApplication, draft_id), actor=owner)

    with pytest.raises(InvalidTransition):
        with session_scope(app) as s:
            _, owner = _users(s)
            delete_application(s, s.get(MerchantApplication, submitted_id), actor=owner)

    with session_scope(app) as s:
        assert s.get(MerchantApplication, draft_id) is None
        assert s.get(MerchantApplication, submitted_id) is not None
        assert audit.trail(s, "merchant_application", draft_id)[0].action == audit.MERCHANT_APPLICATION_DELETE


def _login(client, email, password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200


def test_http_application_flow(app):
    client = app.test_client()
    _login(client, "owner@example.com")

    r = client.post("/api/merchant-applications", json={"legalBusinessName": "Acme Goods LLC"})
    assert r.status_code == 201
    app_id = r.json["id"]
    assert r.json["status"] == "DRAFT"
    assert "banking" in r.json["missing_sections"]

    r = client.post(f"/api/merchant-applications/{app_id}/submit")
    assert r.status_code == 422
    assert r.json["error"] == "NotReady"
    assert "banking" in r.json["details"]["missing"]

    r = client.patch(f"/api/merchant-applications/{app_id}", json=COMPLETE)
    assert r.status_code == 200
    assert r.json["missing_sections"] == []
    assert r.json["aba_routing_number"].endswith("0021")
    assert r.json["aba_routing_number"] != COMPLETE["abaRoutingNumber"]

    r = client.post(f"/api/merchant-applications/{app_id}/submit")
    assert r.status_code == 200
    assert r.json["status"] == "SUBMITTED"

    # Submitted applications are locked for the client.
    r = client.patch(f"/api/merchant-applications/{app_id}", json={"city": "Austin"})
    assert r.status_code == 409

    assert client.post(f"/api/merchant-applications/{app_id}/status", json={"status": "APPROVED"}).status_code == 403

    admin = app.test_client()
    _login(admin, "admin@example.com")
    r = admin.post(f"/api/merchant-applications/{app_id}/status", json={"status": "UNDER_REVIEW"})
    assert r.status_code == 200
    r = admin.post(f"/api/merchant-applications/{app_id}/status", json={"status": "APPROVED"})
    assert r.status_code == 200
    assert r.json["status"] == "APPROVED"

    r = admin.get(f"/api/merchant-applications/{app_id}/sensitive")
    assert r.json["aba_routing_number"] == COMPLETE["abaRoutingNumber"]

    r = admin.get("/api/merchant-applications?status=APPROVED")
    assert [a["id"] for a in r.json] == [app_id]

    r = admin.get(f"/api/merchant-applications/{app_id}/audit")
    actions = [e["action"] for e in r.json]
    assert actions[0] == audit.SENSITIVE_DATA_ACCESS
    assert audit.MERCHANT_APPLICATION_CREATE in actions


def test_http_invalid_json_body(app):
    client = app.test_client()
    _login(client, "owner@example.com")
    r = client.post("/api/merchant-applications", data="not json", content_type="application/json")
    assert r.status_code == 400
    assert r.json["error"] == "ValidationFailed"


def test_http_admin_create_rejects_boolean_client_id(app):
    admin = app.test_client()
    _login(admin, "admin@example.com")
    r = admin.post("/api/merchant-applications", json={"client_id": True, "legalBusinessName": "Acme"})
    assert r.status_code == 400
    assert r.json["error"] == "ValidationFailed"
    with session_scope(app) as s:
        assert s.query(MerchantApplication).count() == 0
