import os
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.intake.models import User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Ensure the administrator account exists.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///intake.db").strip()

    with _session_scope(db_url) as s:
        user = s.scalars(select(User).where(User.email == admin_email)).one_or_none()
        if user is None:
            s.add(
                User(
                    email=admin_email,
                    password_hash=generate_password_hash(admin_password),
                    role="ADMIN",
                    first_name="Admin",
                    is_active=True,
                    created_at=datetime.utcnow(),
                )
            )
            print(f"Created admin user {admin_email}", flush=True)
        elif user.role != "ADMIN":
            user.role = "ADMIN"
            print(f"Promoted {admin_email} to ADMIN", flush=True)


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
