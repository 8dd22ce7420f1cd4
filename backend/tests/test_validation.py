# Overview: Pytest coverage for create-bill request parsing.

from decimal import Decimal

import pytest

from medbill.errors import InvalidRequest
from medbill.validation import parse_bill_request, parse_return_request


def _payload(**overrides):
    payload = {"items": [{"batch_id": 1, "quantity": 2}], "payment_mode": "CASH"}
    payload.update(overrides)
    return payload


def test_minimal_request():
    request = parse_bill_request(_payload())

    assert request.payment_mode == "CASH"
    assert request.items[0].batch_id == 1
    assert request.items[0].quantity == 2
    assert request.patient_info is None


def test_numeric_strings_accepted_for_ids():
    request = parse_bill_request(_payload(items=[{"batch_id": "3", "quantity": "4"}]))
    assert (request.items[0].batch_id, request.items[0].quantity) == (3, 4)


@pytest.mark.parametrize("quantity", [0, -1, 1.5, "2.0", "1e3", True, None])
def test_bad_quantities(quantity):
    with pytest.raises(InvalidRequest):
        parse_bill_request(_payload(items=[{"batch_id": 1, "quantity": quantity}]))


def test_percentage_discount_capped_at_100():
    with pytest.raises(InvalidRequest):
        parse_bill_request(_payload(discount_type="PERCENTAGE", discount_value=120))


def test_flat_discount_must_be_whole_cents():
    with pytest.raises(InvalidRequest):
        parse_bill_request(_payload(discount_type="FLAT", discount_value="10.5"))

    request = parse_bill_request(_payload(discount_type="flat", discount_value=150))
    assert request.discount_type == "FLAT"
    assert request.discount_value == Decimal("150")


def test_negative_tender_rejected():
    with pytest.raises(InvalidRequest):
        parse_bill_request(_payload(payment_mode="SPLIT", cash_amount_cents=-100))


def test_patient_info_parsed():
    request = parse_bill_request(_payload(patient_info={
        "patient_name": " Sita Devi ",
        "patient_age": 54,
        "patient_gender": "f",
        "prescription_date": "2025-01-15",
    }))

    info = request.patient_info
    assert info.patient_name == "Sita Devi"
    assert info.patient_gender == "F"
    assert info.prescription_date.isoformat() == "2025-01-15"
    assert info.missing_fields() == ["doctor_name", "prescription_text"]


def test_bad_patient_gender():
    with pytest.raises(InvalidRequest):
        parse_bill_request(_payload(patient_info={"patient_gender": "X"}))


def test_body_must_be_object():
    with pytest.raises(InvalidRequest):
        parse_bill_request(None)


@pytest.mark.parametrize("field,value", [
    ("batch_id", 10**30),
    ("batch_id", "99999999999"),
    ("quantity", 10**30),
])
def test_out_of_range_item_ints_rejected(field, value):
    item = {"batch_id": 1, "quantity": 1}
    item[field] = value
    with pytest.raises(InvalidRequest) as exc:
        parse_bill_request(_payload(items=[item]))
    assert exc.value.details["field"] == f"items[0].{field}"


def test_out_of_range_customer_id_rejected():
    with pytest.raises(InvalidRequest) as exc:
        parse_bill_request(_payload(customer_id=2**63))
    assert exc.value.details["field"] == "customer_id"


class TestReturnRequest:
    def test_defaults_to_cash_refund(self):
        parsed = parse_return_request({"items": [{"bill_item_id": "4", "quantity": 2}], "reason": " Damaged "})

        assert parsed.refund_mode == "CASH"
        assert parsed.reason == "Damaged"
        assert (parsed.items[0].bill_item_id, parsed.items[0].quantity) == (4, 2)

    @pytest.mark.parametrize("payload", [
        None,
        {"items": []},
        {"items": [{"bill_item_id": 1, "quantity": 0}]},
        {"items": [{"bill_item_id": 10**30, "quantity": 1}]},
        {"items": [{"bill_item_id": 1, "quantity": 1}], "refund_mode": "CHEQUE"},
    ])
    def test_rejected(self, payload):
        with pytest.raises(InvalidRequest):
            parse_return_request(payload)
