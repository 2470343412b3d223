"""
Typed domain events.

State machines call `emit(s, event)` while they mutate; events queue on the
session and are published only after that session commits. A rollback discards
them, so subscribers (notifications, blob cleanup) never hear about a transition
that was not persisted. `on_rollback` registers compensation for work done
outside the database (blob writes) that must be undone if the rows never land.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_PENDING_KEY = "intake_pending_events"
_ROLLBACK_KEY = "intake_rollback_callbacks"


@dataclass(frozen=True)
class Recipient:
    user_id: int
    email: str
    name: str


@dataclass(frozen=True)
class DocumentUploaded:
    document_id: int
    client_id: int
    document_type: str
    original_name: str
    owner: Recipient


@dataclass(frozen=True)
class DocumentStatusChanged:
    document_id: int
    client_id: int
    document_type: str
    original_name: str
    old_status: str
    new_status: str
    reason: str | None
    owner: Recipient


@dataclass(frozen=True)
class ClientDocumentsFullyApproved:
    client_id: int
    document_count: int
    owner: Recipient


@dataclass(frozen=True)
class ApplicationStatusChanged:
    application_id: int
    client_id: int
    business_name: str
    old_status: str
    new_status: str
    reason: str | None
    owner: Recipient


Handler = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, ev: Any) -> None:
        for handler in list(self._handlers.get(type(ev), ())):
            try:
                handler(ev)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(ev).__name__)


def emit(s: Session, ev: Any) -> None:
    s.info.setdefault(_PENDING_KEY, []).append(ev)


def on_rollback(s: Session, callback: Callable[[], None]) -> None:
    """Run `callback` if the current transaction rolls back instead of committing."""
    s.info.setdefault(_ROLLBACK_KEY, []).append(callback)


def install(sm: sessionmaker, bus: EventBus) -> None:
    @sa_event.listens_for(sm, "after_commit")
    def _publish_after_commit(session: Session) -> None:  # type: ignore[no-redef]
        # SAVEPOINT releases dispatch here too; only the outermost commit publishes.
        if session.in_nested_transaction():
            return
        session.info.pop(_ROLLBACK_KEY, None)
        events = session.info.pop(_PENDING_KEY, [])
        for ev in events:
            bus.publish(ev)

    @sa_event.listens_for(sm, "after_soft_rollback")
    def _discard_after_rollback(session: Session, previous_transaction) -> None:  # type: ignore[no-redef]
        # Savepoints and failed flushes roll back inner transactions; only the outermost one counts.
        if previous_transaction.parent is not None:
            return
        dropped = session.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.info("Discarded %d domain event(s) after rollback", len(dropped))
        for callback in session.info.pop(_ROLLBACK_KEY, []):
            try:
                callback()
            except Exception:
                logger.exception("Rollback callback %r failed", callback)
