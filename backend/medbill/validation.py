from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from medbill.errors import InvalidRequest
from medbill.models.sales import PAYMENT_MODES, REFUND_MODES
from medbill.time_utils import parse_iso_date


DISCOUNT_TYPES = ("PERCENTAGE", "FLAT")
GENDERS = ("M", "F", "O")

# Maximum price: ₹9,99,99,999.99 (999,999,999 paise)
MAX_AMOUNT_CENTS = 999_999_999
# Row ids and quantities must fit a signed 32-bit INTEGER column
MAX_ID = 2_147_483_647


@dataclass(frozen=True)
class PatientInfo:
    patient_name: str | None = None
    patient_age: int | None = None
    patient_gender: str | None = None
    patient_phone: str | None = None
    patient_address: str | None = None
    doctor_name: str | None = None
    doctor_registration_number: str | None = None
    clinic_name: str | None = None
    prescription_number: str | None = None
    prescription_date: date | None = None
    prescription_text: str | None = None

    def missing_fields(self) -> list[str]:
        """Fields the controlled-item register cannot do without."""
        missing = []
        if not (self.patient_name or "").strip():
            missing.append("patient_name")
        if self.patient_age is None:
            missing.append("patient_age")
        if not self.patient_gender:
            missing.append("patient_gender")
        if not (self.doctor_name or "").strip():
            missing.append("doctor_name")
        if not (self.prescription_text or "").strip():
            missing.append("prescription_text")
        return missing


@dataclass(frozen=True)
class BillItemRequest:
    batch_id: int
    quantity: int
    discount_type: Optional[str] = None
    discount_value: Decimal = Decimal("0")


@dataclass(frozen=True)
class BillRequest:
    items: tuple
    payment_mode: str
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    doctor_name: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Decimal = Decimal("0")
    cash_amount_cents: Optional[int] = None
    online_amount_cents: Optional[int] = None
    notes: Optional[str] = None
    patient_info: Optional[PatientInfo] = field(default=None)


def _coerce_int(key: str, value: Any, *, required: bool = False, maximum: int | None = None) -> int | None:
    """Strict integer: rejects floats, bools, decimals and scientific notation."""
    result = _parse_int(key, value, required=required)
    if result is not None and maximum is not None and result > maximum:
        raise InvalidRequest(f"{key} must be <= {maximum}", details={"field": key})
    return result


def _parse_int(key: str, value: Any, *, required: bool) -> int | None:
    """Strict integer: rejects floats, bools, decimals and scientific notation."""
    if value is None:
        if required:
            raise InvalidRequest(f"{key} is required", details={"field": key})
        return None
    if isinstance(value, bool):
        raise InvalidRequest(f"{key} must be an integer", details={"field": key})
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            if required:
                raise InvalidRequest(f"{key} is required", details={"field": key})
            return None
        if "e" in stripped.lower() or "." in stripped:
            raise InvalidRequest(f"{key} must be a plain integer", details={"field": key})
        try:
            return int(stripped)
        except ValueError:
            raise InvalidRequest(f"{key} must be an integer", details={"field": key})
    raise InvalidRequest(f"{key} must be an integer", details={"field": key})


def _coerce_decimal(key: str, value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise InvalidRequest(f"{key} must be a number", details={"field": key})
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f"{key} must be a number", details={"field": key})
    if not result.is_finite():
        raise InvalidRequest(f"{key} must be a number", details={"field": key})
    return result


def _coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _parse_discount(prefix: str, data: dict) -> tuple[str | None, Decimal]:
    discount_type = _coerce_str(data.get("discount_type"))
    discount_value = _coerce_decimal(f"{prefix}discount_value", data.get("discount_value"))

    if discount_type is None:
        return None, Decimal("0")
    discount_type = discount_type.upper()
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidRequest(
            f"{prefix}discount_type must be one of {', '.join(DISCOUNT_TYPES)}",
            details={"field": f"{prefix}discount_type"},
        )
    if discount_value < 0:
        raise InvalidRequest(f"{prefix}discount_value must be >= 0", details={"field": f"{prefix}discount_value"})
    if discount_type == "PERCENTAGE" and discount_value > 100:
        raise InvalidRequest(
            f"{prefix}discount_value must be <= 100 for PERCENTAGE",
            details={"field": f"{prefix}discount_value"},
        )
    if discount_type == "FLAT" and discount_value != discount_value.to_integral_value():
        raise InvalidRequest(
            f"{prefix}discount_value must be whole cents for FLAT",
            details={"field": f"{prefix}discount_value"},
        )
    return discount_type, discount_value


def parse_patient_info(data: Any) -> PatientInfo | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise InvalidRequest("patient_info must be an object")

    gender = _coerce_str(data.get("patient_gender"))
    if gender is not None:
        gender = gender.upper()
        if gender not in GENDERS:
            raise InvalidRequest("patient_gender must be one of M, F, O", details={"field": "patient_gender"})

    age = _coerce_int("patient_age", data.get("patient_age"))
    if age is not None and not (0 <= age <= 150):
        raise InvalidRequest("patient_age must be between 0 and 150", details={"field": "patient_age"})

    try:
        prescription_date = parse_iso_date(data.get("prescription_date"))
    except (TypeError, ValueError, AttributeError):
        raise InvalidRequest("prescription_date must be YYYY-MM-DD", details={"field": "prescription_date"})

    return PatientInfo(
        patient_name=_coerce_str(data.get("patient_name")),
        patient_age=age,
        patient_gender=gender,
        patient_phone=_coerce_str(data.get("patient_phone")),
        patient_address=_coerce_str(data.get("patient_address")),
        doctor_name=_coerce_str(data.get("doctor_name")),
        doctor_registration_number=_coerce_str(data.get("doctor_registration_number")),
        clinic_name=_coerce_str(data.get("clinic_name")),
        prescription_number=_coerce_str(data.get("prescription_number")),
        prescription_date=prescription_date,
        prescription_text=_coerce_str(data.get("prescription_text")),
    )


def parse_bill_request(payload: Any) -> BillRequest:
    """
    Validate and normalize a create-bill JSON body.

    Shape checks only (types, ranges, enums). Stock, credit and compliance
    rules are enforced by billing_service against current data.
    """
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidRequest("items must be a non-empty list", details={"field": "items"})

    items = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise InvalidRequest(f"items[{i}] must be an object", details={"field": f"items[{i}]"})
        batch_id = _coerce_int(f"items[{i}].batch_id", raw.get("batch_id"), required=True, maximum=MAX_ID)
        quantity = _coerce_int(f"items[{i}].quantity", raw.get("quantity"), required=True, maximum=MAX_ID)
        if quantity <= 0:
            raise InvalidRequest(
                f"items[{i}].quantity must be > 0",
                details={"field": f"items[{i}].quantity", "quantity": quantity},
            )
        discount_type, discount_value = _parse_discount(f"items[{i}].", raw)
        items.append(BillItemRequest(
            batch_id=batch_id,
            quantity=quantity,
            discount_type=discount_type,
            discount_value=discount_value,
        ))

    payment_mode = (_coerce_str(payload.get("payment_mode")) or "").upper()
    if payment_mode not in PAYMENT_MODES:
        raise InvalidRequest(
            f"payment_mode must be one of {', '.join(PAYMENT_MODES)}",
            details={"field": "payment_mode"},
        )

    cash = _coerce_int("cash_amount_cents", payload.get("cash_amount_cents"))
    online = _coerce_int("online_amount_cents", payload.get("online_amount_cents"))
    for key, value in (("cash_amount_cents", cash), ("online_amount_cents", online)):
        if value is not None and not (0 <= value <= MAX_AMOUNT_CENTS):
            raise InvalidRequest(f"{key} must be between 0 and {MAX_AMOUNT_CENTS}", details={"field": key})

    discount_type, discount_value = _parse_discount("", payload)

    return BillRequest(
        items=tuple(items),
        payment_mode=payment_mode,
        customer_id=_coerce_int("customer_id", payload.get("customer_id"), maximum=MAX_ID),
        customer_name=_coerce_str(payload.get("customer_name")),
        doctor_name=_coerce_str(payload.get("doctor_name")),
        discount_type=discount_type,
        discount_value=discount_value,
        cash_amount_cents=cash,
        online_amount_cents=online,
        notes=_coerce_str(payload.get("notes")),
        patient_info=parse_patient_info(payload.get("patient_info")),
    )


@dataclass(frozen=True)
class ReturnItemRequest:
    bill_item_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnRequest:
    items: tuple
    reason: str
    refund_mode: str


def parse_return_request(payload: Any) -> ReturnRequest:
    """Validate a sales-return JSON body: {items: [{bill_item_id, quantity}], reason, refund_mode?}."""
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidRequest("items must be a non-empty list", details={"field": "items"})

    items = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise InvalidRequest(f"items[{i}] must be an object", details={"field": f"items[{i}]"})
        bill_item_id = _coerce_int(f"items[{i}].bill_item_id", raw.get("bill_item_id"), required=True, maximum=MAX_ID)
        quantity = _coerce_int(f"items[{i}].quantity", raw.get("quantity"), required=True, maximum=MAX_ID)
        if quantity <= 0:
            raise InvalidRequest(
                f"items[{i}].quantity must be > 0",
                details={"field": f"items[{i}].quantity", "quantity": quantity},
            )
        items.append(ReturnItemRequest(bill_item_id=bill_item_id, quantity=quantity))

    refund_mode = (_coerce_str(payload.get("refund_mode")) or "CASH").upper()
    if refund_mode not in REFUND_MODES:
        raise InvalidRequest(
            f"refund_mode must be one of {', '.join(REFUND_MODES)}",
            details={"field": "refund_mode"},
        )

    return ReturnRequest(
        items=tuple(items),
        reason=_coerce_str(payload.get("reason")) or "",
        refund_mode=refund_mode,
    )
