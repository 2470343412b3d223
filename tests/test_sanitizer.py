"""Tests for the partial-update sanitizer and the merchant application allowlist."""
from datetime import date, datetime, timedelta, timezone

import pytest

from app.intake.modules.merchant_applications.fields import missing_required_sections, prepare_update, to_snake_key
from app.intake.sanitizer import parse_temporal, sanitize


SAMPLES = [
    {},
    {"a": None, "b": "", "c": "   ", "d": [], "e": {}},
    {"name": "Acme", "tags": ["x", None, "", "y"], "nested": {"k": None, "v": 1}},
    {"officers": [{"name": "Dana", "title": ""}, {"name": None}, None]},
    {"flag": False, "zero": 0, "when": "2024-01-15"},
    {"deep": {"deeper": {"deepest": ["", None]}}},
]


def _has_empty(value):
    if value is None or value == "":
        return True
    if isinstance(value, dict):
        return any(_has_empty(v) for v in value.values())
    if isinstance(value, list):
        return any(_has_empty(v) for v in value)
    return False


@pytest.mark.parametrize("payload", SAMPLES)
def test_sanitize_is_idempotent_and_drops_empties(payload):
    once = sanitize(payload, ["when"])
    assert sanitize(once, ["when"]) == once
    assert not _has_empty(once)


def test_sanitize_drops_blank_and_null_values():
    out = sanitize({"a": None, "b": "", "c": "  ", "d": [], "e": {}, "f": "keep"})
    assert out == {"f": "keep"}


def test_sanitize_cleans_nested_structures():
    out = sanitize(
        {
            "officers": [{"name": "Dana", "title": ""}, {"name": None}, None],
            "fees": {"rate": "2.9", "notes": ""},
        }
    )
    assert out == {"officers": [{"name": "Dana"}], "fees": {"rate": "2.9"}}


def test_sanitize_keeps_falsey_non_blank_values():
    out = sanitize({"flag": False, "count": 0})
    assert out == {"flag": False, "count": 0}


def test_sanitize_never_raises_on_non_mapping():
    assert sanitize(None) == {}
    assert sanitize(["not", "a", "dict"]) == {}


def test_temporal_fields_are_parsed_or_dropped():
    out = sanitize(
        {
            "entity_start_date": "2020-05-01",
            "owner_birthday": "not-a-date",
            "merchant_date": "",
            "partner_date": "2024-03-02T10:30:00Z",
        },
        ["entity_start_date", "owner_birthday", "merchant_date", "partner_date"],
    )
    assert out["entity_start_date"] == date(2020, 5, 1)
    assert "owner_birthday" not in out
    assert "merchant_date" not in out
    assert out["partner_date"] == datetime(2024, 3, 2, 10, 30, tzinfo=timezone.utc)


def test_parse_temporal_accepts_values_already_parsed():
    d = date(2021, 1, 2)
    assert parse_temporal(d) is d
    assert parse_temporal(12345) is None
    assert parse_temporal("   ") is None


def test_to_snake_key():
    assert to_snake_key("legalBusinessName") == "legal_business_name"
    assert to_snake_key("legal_business_name") == "legal_business_name"
    assert to_snake_key("cardholderData3rdParty") == "cardholder_data_3rd_party"
    assert to_snake_key("corduroSignature") == "partner_signature"


def test_prepare_update_keeps_bank_name_and_drops_blanks():
    out = prepare_update({"bankName": "First Bank", "dbaBusinessName": "", "city": None})
    assert out == {"bank_name": "First Bank"}


def test_prepare_update_first_non_blank_twin_wins():
    assert prepare_update({"bank_name": "Chase", "bankName": ""}) == {"bank_name": "Chase"}
    assert prepare_update({"bankName": None, "bank_name": "Chase"}) == {"bank_name": "Chase"}
    assert prepare_update({"bankName": "Chase", "bank_name": "Other"}) == {"bank_name": "Chase"}


def test_prepare_update_drops_text_over_column_length():
    out = prepare_update({"zip": "7" * 40, "city": "Austin"}, {"zip": 16, "city": 128})
    assert out == {"city": "Austin"}


def test_prepare_update_ignores_server_owned_and_unknown_keys():
    out = prepare_update(
        {
            "id": 99,
            "status": "APPROVED",
            "submittedAt": "2024-01-01",
            "reviewedBy": 1,
            "somethingElse": "x",
            "legalBusinessName": "Acme",
        }
    )
    assert out == {"legal_business_name": "Acme"}


def test_prepare_update_coerces_kinds():
    out = prepare_update(
        {
            "monthlyTransactions": "1,200",
            "refundDays": "thirty",
            "agreementAccepted": "true",
            "multipleLocations": False,
            "processingCategories": ["Retail", "", None],
            "principalOfficers": [{"name": "Dana"}, "junk"],
            "entityStartDate": "2020-05-01",
            "ownerBirthday": "1980-02-03T05:00:00-05:00",
        }
    )
    assert out["monthly_transactions"] == 1200
    assert "refund_days" not in out
    assert out["agreement_accepted"] is True
    assert out["multiple_locations"] is False
    assert out["processing_categories"] == ["Retail"]
    assert out["principal_officers"] == [{"name": "Dana"}]
    assert out["entity_start_date"] == datetime(2020, 5, 1)
    # Offsets are normalized to naive UTC.
    assert out["owner_birthday"] == datetime(1980, 2, 3, 10, 0)


def test_prepare_update_drops_wrong_kinds():
    out = prepare_update({"legalBusinessName": {"nested": "x"}, "currentStep": True, "feeScheduleData": []})
    assert out == {}


def test_prepare_update_never_raises_on_garbage():
    assert prepare_update(None) == {}
    assert prepare_update("payload") == {}
    assert prepare_update({1: "x", "ownerBirthday": object()}) == {}


class _Draft:
    legal_business_name = "Acme"
    business_phone = "555-0100"
    federal_tax_id_number = "12-3456789"
    location_address = "1 Main St"
    ownership_type = "LLC"
    owner_first_name = "Dana"
    owner_last_name = ""
    bank_name = None
    aba_routing_number = None
    dda_number = None
    merchant_signature = "Dana Lee"
    agreement_accepted = False


def test_missing_required_sections():
    assert missing_required_sections(_Draft()) == ["ownership", "banking", "certification"]


def test_entity_start_date_future_value_is_kept():
    future = (datetime.utcnow() + timedelta(days=30)).date().isoformat()
    out = prepare_update({"entityStartDate": future})
    assert out["entity_start_date"].date().isoformat() == future
