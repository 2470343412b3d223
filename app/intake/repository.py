"""
Persistence gateway over SQLAlchemy.

Thin per-entity repositories used by the state machines. Writes flush but do not
commit: the caller owns the unit of work, so a state change and its audit entry
land in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.intake.errors import NotFound
from app.intake.models import Client, User

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(Generic[T]):
    model: type[T]
    # Column holding the owning client id; ordering for review queues.
    owner_column = "client_id"
    review_order: tuple[str, ...] = ("id",)

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, entity_id: int) -> T | None:
        return self.session.get(self.model, entity_id)

    def get_or_404(self, entity_id: int) -> T:
        obj = self.get_by_id(entity_id)
        if obj is None:
            raise NotFound(f"{self.model.__name__} {entity_id} not found")
        return obj

    def insert(self, obj: T) -> T:
        self.session.add(obj)
        self.session.flush()
        return obj

    def update_fields(self, obj: T, fields: dict[str, Any]) -> T:
        for key, value in fields.items():
            setattr(obj, key, value)
        self.session.flush()
        return obj

    def delete(self, obj: T) -> None:
        self.session.delete(obj)
        self.session.flush()

    def list_by_owner(self, owner_id: int) -> list[T]:
        col = getattr(self.model, self.owner_column)
        stmt = select(self.model).where(col == owner_id).order_by(*self._order())
        return list(self.session.scalars(stmt))

    def list_all_for_review(self) -> list[T]:
        return list(self.session.scalars(select(self.model).order_by(*self._order())))

    def _order(self) -> list[Any]:
        out = []
        for name in self.review_order:
            desc = name.startswith("-")
            col = getattr(self.model, name.lstrip("-"))
            out.append(col.desc() if desc else col.asc())
        return out


class ClientRepository(Repository[Client]):
    model = Client
    owner_column = "user_id"

    def for_user(self, user: User, *, create: bool = True) -> Client | None:
        """
        The client record behind a CLIENT user. Older accounts may predate the
        clients table, so one is created on first use.
        """
        client = self.session.scalars(select(Client).where(Client.user_id == user.id)).one_or_none()
        if client is None and create:
            now = datetime.utcnow()
            client = self.insert(Client(user_id=user.id, status="PENDING", created_at=now, updated_at=now))
            logger.info("Created client record %s for user %s", client.id, user.id)
        return client
