import atexit
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.intake.config import load_config
from app.intake.db import init_db, teardown_db_session
from app.intake.auth import bp as auth_bp, load_current_user
from app.intake.admin import bp as audit_bp
from app.intake.routes import bp as routes_bp
from app.intake.errors import IntakeError
from app.intake.events import EventBus, install as install_event_bus
from app.intake.modules.documents.api import bp as documents_bp
from app.intake.modules.documents.service import BlobCleanup
from app.intake.modules.merchant_applications.api import bp as merchant_applications_bp
from app.intake.notifications import NotificationDispatcher, NotificationSubscriber, dispatcher_from_config
from app.intake.storage import S3Storage, local_storage_from_config, remote_storage_from_config


def create_app(dispatcher: NotificationDispatcher | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):

        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    local = local_storage_from_config(app.config)
    remote = remote_storage_from_config(app.config)
    app.extensions["intake_local_storage"] = local
    app.extensions["intake_remote_storage"] = remote

    # Storage health check. A broken remote is logged, uploads still land locally.
    if (app.config.get("STORAGE_BACKEND") or "").strip().lower() == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        elif isinstance(remote, S3Storage):
            try:
                remote._client().head_bucket(Bucket=remote.bucket)
                app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", remote.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    bus = EventBus()
    install_event_bus(app.extensions["sqlalchemy_sessionmaker"], bus)
    BlobCleanup(local, remote).register(bus)
    if app.config.get("NOTIFICATIONS_ENABLED"):
        workers = int(app.config.get("NOTIFICATION_WORKERS") or 0)
        subscriber = NotificationSubscriber(
            dispatcher or dispatcher_from_config(app.config),
            admin_email=app.config.get("ADMIN_NOTIFICATION_EMAIL"),
            executor=ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") if workers > 0 else None,
        )
        subscriber.register(bus)
        atexit.register(subscriber.shutdown)
        app.extensions["intake_notifications"] = subscriber
    app.extensions["intake_event_bus"] = bus

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(documents_bp, url_prefix="/api/documents")
    app.register_blueprint(merchant_applications_bp, url_prefix="/api/merchant-applications")
    app.register_blueprint(audit_bp, url_prefix="/api/audit")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(IntakeError)
    def _err_intake(e: IntakeError):  # type: ignore[no-redef]
        app.logger.info("%s on %s %s (request_id=%s): %s", e.code, request.method, request.path, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "PayloadTooLarge", "message": "File too large."}), 413

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_role", None)
        if missing:
            app.logger.warning("Forbidden: missing_role=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify({"error": "Forbidden", "message": "You do not have access to this resource."}), 403

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.name.replace(" ", ""), "message": e.description}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "InternalError", "message": "Unexpected server error."}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
