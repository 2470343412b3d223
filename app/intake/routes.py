from flask import Blueprint, current_app
from sqlalchemy import text

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including database reachability."""
    try:
        with current_app.extensions["sqlalchemy_engine"].connect() as conn:
            conn.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        current_app.logger.error("Health check DB error: %s", e)
        db_ok = False
    return {"ok": db_ok, "database": db_ok}, (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """Fast liveness probe. No DB access."""
    return "ok", 200
