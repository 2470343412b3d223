"""
Client-writable field allowlist for MerchantApplication.

Every field a partial save may touch is declared here with its kind. Anything
else in a payload (ids, status, review fields, timestamps, unknown keys) is
dropped before the payload reaches the sanitizer, and values that do not fit
their kind are dropped after it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any

from app.intake.sanitizer import sanitize

logger = logging.getLogger(__name__)

TEXT = "text"
INTEGER = "integer"
BOOLEAN = "boolean"
TEMPORAL = "temporal"
STRING_LIST = "string_list"
OBJECT_LIST = "object_list"
OBJECT = "object"

FIELDS: dict[str, str] = {
    # Business information
    "legal_business_name": TEXT,
    "dba_business_name": TEXT,
    "billing_address": TEXT,
    "location_address": TEXT,
    "city": TEXT,
    "state": TEXT,
    "zip": TEXT,
    "business_phone": TEXT,
    "business_fax_number": TEXT,
    "customer_service_phone": TEXT,
    "federal_tax_id_number": TEXT,
    "contact_name": TEXT,
    "contact_phone_number": TEXT,
    "contact_email": TEXT,
    "website_address": TEXT,
    # Business description
    "processing_categories": STRING_LIST,
    "ownership_type": TEXT,
    "principal_officers": OBJECT_LIST,
    # Settlement / banking
    "bank_name": TEXT,
    "aba_routing_number": TEXT,
    "account_name": TEXT,
    "dda_number": TEXT,
    "fee_schedule_data": OBJECT,
    "supporting_information": OBJECT,
    "equipment_data": OBJECT,
    "beneficial_owners": OBJECT_LIST,
    # MPA and sales
    "mpa_signed_date": TEMPORAL,
    "sales_rep_name": TEXT,
    # DBA details
    "product_or_service_sold": TEXT,
    "dba_website": TEXT,
    "multiple_locations": BOOLEAN,
    # Corporate information
    "legal_contact_name": TEXT,
    "legal_phone": TEXT,
    "legal_email": TEXT,
    "incorporation_state": TEXT,
    "entity_start_date": TEMPORAL,
    # Transactions and volume
    "average_ticket": TEXT,
    "high_ticket": TEXT,
    "monthly_sales_volume": TEXT,
    "monthly_transactions": INTEGER,
    "annual_volume": TEXT,
    "annual_transactions": INTEGER,
    # Bank account owner
    "account_owner_first_name": TEXT,
    "account_owner_last_name": TEXT,
    "name_on_bank_account": TEXT,
    "bank_officer_name": TEXT,
    "bank_officer_phone": TEXT,
    "bank_officer_email": TEXT,
    # Primary owner
    "owner_full_name": TEXT,
    "owner_first_name": TEXT,
    "owner_last_name": TEXT,
    "owner_officer": TEXT,
    "owner_title": TEXT,
    "owner_ownership_percentage": TEXT,
    "owner_mobile_phone": TEXT,
    "owner_email": TEXT,
    "owner_ssn": TEXT,
    "owner_birthday": TEMPORAL,
    "owner_state_issued_id_number": TEXT,
    "owner_id_exp_date": TEMPORAL,
    "owner_issuing_state": TEXT,
    "owner_id_date_issued": TEMPORAL,
    "owner_legal_address": TEXT,
    "owner_city": TEXT,
    "owner_state": TEXT,
    "owner_zip": TEXT,
    "owner_country": TEXT,
    "financial_representative": OBJECT,
    # Operations
    "business_type": TEXT,
    "refund_guarantee": BOOLEAN,
    "refund_days": INTEGER,
    "pos_system": TEXT,
    "authorized_contacts": OBJECT_LIST,
    "processed_cards_past": BOOLEAN,
    "previously_processed": BOOLEAN,
    "automatic_billing": BOOLEAN,
    "cardholder_data_3rd_party": BOOLEAN,
    # Corporate resolution and certification
    "corporate_resolution": TEXT,
    "merchant_signature": TEXT,
    "merchant_name": TEXT,
    "merchant_title": TEXT,
    "merchant_date": TEMPORAL,
    "agreement_accepted": BOOLEAN,
    "partner_signature": TEXT,
    "partner_name": TEXT,
    "partner_title": TEXT,
    "partner_date": TEMPORAL,
    # Wizard position
    "current_step": INTEGER,
}

TEMPORAL_FIELDS = frozenset(k for k, kind in FIELDS.items() if kind == TEMPORAL)

# Masked in API output unless an administrator explicitly reveals them.
SENSITIVE_FIELDS = ("owner_ssn", "dda_number", "aba_routing_number", "federal_tax_id_number")

# Wizard sections that must hold data before submission.
REQUIRED_SECTIONS: dict[str, tuple[str, ...]] = {
    "business_information": ("legal_business_name", "business_phone", "federal_tax_id_number", "location_address"),
    "ownership": ("ownership_type", "owner_first_name", "owner_last_name"),
    "banking": ("bank_name", "aba_routing_number", "dda_number"),
    "certification": ("merchant_signature", "agreement_accepted"),
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_TRUE = frozenset({"true", "1", "yes", "on", "y"})
_FALSE = frozenset({"false", "0", "no", "off", "n"})


# Keys the camelCase rule cannot recover, plus legacy form names.
_ALIASES = {
    "cardholder_data3rd_party": "cardholder_data_3rd_party",
    "corduro_signature": "partner_signature",
    "corduro_name": "partner_name",
    "corduro_title": "partner_title",
    "corduro_date": "partner_date",
}


def to_snake_key(key: str) -> str:
    """legalBusinessName -> legal_business_name; snake_case keys are returned unchanged."""
    snake = _CAMEL_BOUNDARY.sub("_", key).lower()
    return _ALIASES.get(snake, snake)


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _as_integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        raw = value.strip().replace(",", "")
        if re.fullmatch(r"-?\d+", raw):
            return int(raw)
    return None


def _as_boolean(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in _TRUE:
            return True
        if raw in _FALSE:
            return False
    return None


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        # Columns are naive UTC.
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def _coerce(kind: str, value: Any) -> Any:
    if kind == TEXT:
        return _as_text(value)
    if kind == INTEGER:
        return _as_integer(value)
    if kind == BOOLEAN:
        return _as_boolean(value)
    if kind == TEMPORAL:
        return _as_datetime(value)
    if kind == STRING_LIST:
        if not isinstance(value, list):
            return None
        items = [str(v).strip() for v in value if isinstance(v, (str, int)) and not isinstance(v, bool)]
        items = [v for v in items if v]
        return items or None
    if kind == OBJECT_LIST:
        if not isinstance(value, list):
            return None
        items = [v for v in value if isinstance(v, dict)]
        return items or None
    if kind == OBJECT:
        return value if isinstance(value, dict) and value else None
    return None


def prepare_update(payload: Mapping[str, Any] | None, max_lengths: Mapping[str, int] | None = None) -> dict[str, Any]:
    """
    Reduce a client payload to column values safe to merge:
    allowlist (camelCase accepted) -> sanitizer -> per-kind coercion.

    When a camelCase key and its snake_case twin both arrive, the first
    non-blank value wins. Text longer than `max_lengths[field]` is dropped.
    Never raises; anything unusable is omitted.
    """
    if not isinstance(payload, Mapping):
        return {}

    allowed: dict[str, Any] = {}
    for raw_key, value in payload.items():
        if not isinstance(raw_key, str):
            continue
        key = to_snake_key(raw_key)
        if key not in FIELDS:
            logger.debug("Ignoring non-writable merchant application field %s", raw_key)
            continue
        if key in allowed and not _is_unset(allowed[key]):
            logger.debug("Ignoring duplicate merchant application field %s", raw_key)
            continue
        allowed[key] = value

    limits = max_lengths or {}
    out: dict[str, Any] = {}
    for key, value in sanitize(allowed, TEMPORAL_FIELDS).items():
        coerced = _coerce(FIELDS[key], value)
        if coerced is None:
            logger.debug("Dropping merchant application field %s: value does not fit %s", key, FIELDS[key])
            continue
        limit = limits.get(key)
        if limit and isinstance(coerced, str) and len(coerced) > limit:
            logger.warning("Dropping merchant application field %s: %d chars exceeds %d", key, len(coerced), limit)
            continue
        out[key] = coerced
    return out


def missing_required_sections(application: Any) -> list[str]:
    """Default readiness check: names of sections with an unset required field."""
    missing = []
    for section, names in REQUIRED_SECTIONS.items():
        for name in names:
            value = getattr(application, name, None)
            if value is None or value is False or (isinstance(value, str) and not value.strip()):
                missing.append(section)
                break
    return missing
