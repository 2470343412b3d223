from __future__ import annotations

from typing import Any


class IntakeError(Exception):
    """
    Base for precondition failures surfaced to the routing layer.
    `code` is the stable client-facing identifier; `status_code` the HTTP mapping.
    """

    code = "IntakeError"
    status_code = 400

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationFailed(IntakeError):
    code = "ValidationFailed"


class InvalidStatus(IntakeError):
    code = "InvalidStatus"


class InvalidTransition(IntakeError):
    code = "InvalidTransition"
    status_code = 409


class MissingReason(IntakeError):
    code = "MissingReason"


class NotFound(IntakeError):
    code = "NotFound"
    status_code = 404


class OwnerNotFound(IntakeError):
    code = "OwnerNotFound"
    status_code = 404


class NotReady(IntakeError):
    code = "NotReady"
    status_code = 422

    def __init__(self, missing: list[str]) -> None:
        super().__init__("Application is missing required sections.", missing=list(missing))
        self.missing = list(missing)


class AlreadyTerminal(IntakeError):
    code = "AlreadyTerminal"
    status_code = 409


class StorageDegraded(RuntimeError):
    """Remote blob backend unavailable. Logged by callers, never surfaced."""


class AuditWriteFailed(RuntimeError):
    """Audit insert failed. Internal only."""
