# Overview: Service-layer operations for billing; turns a proposed sale into a committed bill.

"""
Billing Service - atomic bill creation

create_bill runs every step inside one unit of work (with_transaction):

1. resolve and lock each batch; reject missing, short or expired stock
2. compute totals with tax_service
3. resolve the payment split (cash / online / credit)
4. enforce the customer's credit limit
5. enforce the controlled-item register requirements
6. take the next invoice number
7. write bill, lines, stock movements, credit entry and register records

Steps 1-5 write nothing. Any failure in 6-7 rolls back every write,
including the invoice counter, so no partial bill or numbering gap is
ever visible.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal

from ..extensions import db
from ..models import Bill, BillItem, Batch, Customer, ControlledSaleRecord
from ..models.sales import (
    BILL_COMPLETED,
    PAYMENT_CASH,
    PAYMENT_ONLINE,
    PAYMENT_CREDIT,
)
from ..errors import (
    BillingError,
    ExpiredStock,
    InsufficientStock,
    InvalidPaymentSplit,
    CustomerRequiredForCredit,
    CreditLimitExceeded,
    PatientInfoRequired,
)
from ..validation import BillRequest, BillItemRequest, PatientInfo
from medbill.time_utils import today, utcnow, to_iso_date
from .concurrency import with_transaction
from .audit_service import append_audit_event
from . import tax_service
from . import inventory_service
from . import credit_service
from . import sequence_service
from . import bill_queries


logger = logging.getLogger(__name__)

__all__ = [
    "BillRequest",
    "BillItemRequest",
    "PatientInfo",
    "create_bill",
    "preview_bill",
]


def _resolve_batches(request: BillRequest, *, lock: bool) -> dict[int, Batch]:
    """
    Fetch every requested batch and check it can be sold.

    Quantities for the same batch on several lines are summed before the
    availability check.
    """
    requested: "OrderedDict[int, int]" = OrderedDict()
    for item in request.items:
        requested[item.batch_id] = requested.get(item.batch_id, 0) + item.quantity

    on = today()
    batches: dict[int, Batch] = {}
    for batch_id, quantity in requested.items():
        batch = inventory_service.get_batch_for_sale(batch_id, lock=lock)
        if quantity > batch.quantity:
            raise InsufficientStock(batch_id, requested=quantity, available=batch.quantity, name=batch.medicine.name)
        if batch.is_expired(on):
            raise ExpiredStock(batch_id, to_iso_date(batch.expiry_date), name=batch.medicine.name)
        batches[batch_id] = batch
    return batches


def _discount_input(discount_type: str | None, value: Decimal) -> Decimal:
    # FLAT discounts arrive in cents; the calculator works in currency units
    if discount_type == tax_service.DISCOUNT_FLAT:
        return tax_service.from_cents(int(value))
    return value


def _calculate(request: BillRequest, batches: dict[int, Batch]) -> tax_service.BillResult:
    lines = [
        tax_service.LineInput(
            unit_price=tax_service.from_cents(batches[item.batch_id].selling_price_cents),
            quantity=item.quantity,
            tax_rate=tax_service.bps_to_rate(batches[item.batch_id].tax_rate_bps),
            pricing_mode=batches[item.batch_id].pricing_mode,
            discount_type=item.discount_type,
            discount_value=_discount_input(item.discount_type, item.discount_value),
        )
        for item in request.items
    ]
    return tax_service.calculate_bill(
        lines,
        request.discount_type,
        _discount_input(request.discount_type, request.discount_value),
    )


def _resolve_payment(request: BillRequest, final_cents: int) -> tuple[int, int, int]:
    """Return (cash, online, credit) in cents."""
    mode = request.payment_mode
    if mode == PAYMENT_CASH:
        return final_cents, 0, 0
    if mode == PAYMENT_ONLINE:
        return 0, final_cents, 0
    if mode == PAYMENT_CREDIT:
        return 0, 0, final_cents

    cash = request.cash_amount_cents or 0
    online = request.online_amount_cents or 0
    credit = final_cents - cash - online
    if credit < 0:
        raise InvalidPaymentSplit(
            "Cash and online amounts exceed the bill amount",
            details={
                "final_amount_cents": final_cents,
                "cash_amount_cents": cash,
                "online_amount_cents": online,
                "remainder_cents": credit,
            },
        )
    return cash, online, credit


def _check_credit(request: BillRequest, credit_cents: int, *, lock: bool) -> Customer | None:
    customer = None
    if request.customer_id is not None:
        customer = credit_service.get_customer_for_billing(request.customer_id, lock=lock)

    if credit_cents <= 0:
        return customer

    if customer is None:
        raise CustomerRequiredForCredit(credit_cents)

    if customer.current_balance_cents + credit_cents > customer.credit_limit_cents:
        raise CreditLimitExceeded(
            customer.id,
            credit_limit_cents=customer.credit_limit_cents,
            current_balance_cents=customer.current_balance_cents,
            credit_amount_cents=credit_cents,
        )
    return customer


def _check_compliance(request: BillRequest, batches: dict[int, Batch]) -> None:
    controlled = [batch_id for batch_id, batch in batches.items() if batch.is_controlled]
    if not controlled:
        return
    info = request.patient_info or PatientInfo()
    missing = info.missing_fields()
    if missing:
        raise PatientInfoRequired(missing, controlled)


def _totals_cents(calc: tax_service.BillResult) -> dict:
    c = tax_service.to_cents
    return {
        "subtotal_cents": c(calc.subtotal),
        "item_discount_cents": c(calc.item_discount_total),
        "discount_cents": c(calc.bill_discount),
        "taxable_total_cents": c(calc.taxable_total),
        "cgst_total_cents": c(calc.cgst_total),
        "sgst_total_cents": c(calc.sgst_total),
        "tax_total_cents": c(calc.total_tax),
        "grand_total_cents": c(calc.grand_total),
        "round_off_cents": c(calc.round_off),
        "final_amount_cents": c(calc.final_amount),
    }


def _persist(
    request: BillRequest,
    batches: dict[int, Batch],
    calc: tax_service.BillResult,
    tenders: tuple[int, int, int],
    customer: Customer | None,
    bill_number: str,
    user_id: int,
) -> Bill:
    cash, online, credit = tenders
    info = request.patient_info

    bill = Bill(
        bill_number=bill_number,
        bill_date=utcnow(),
        customer_id=customer.id if customer else None,
        customer_name=request.customer_name or (customer.name if customer else None),
        doctor_name=request.doctor_name or (info.doctor_name if info else None),
        user_id=user_id,
        discount_type=request.discount_type,
        discount_value=request.discount_value if request.discount_type else None,
        payment_mode=request.payment_mode,
        cash_cents=cash,
        online_cents=online,
        credit_cents=credit,
        status=BILL_COMPLETED,
        notes=request.notes,
        total_items=len(request.items),
        **_totals_cents(calc),
    )
    db.session.add(bill)
    db.session.flush()

    for item, result in zip(request.items, calc.lines):
        batch = batches[item.batch_id]
        medicine = batch.medicine
        line = BillItem(
            bill_id=bill.id,
            batch_id=batch.id,
            medicine_id=medicine.id,
            medicine_name=medicine.name,
            hsn_code=medicine.hsn_code,
            batch_number=batch.batch_number,
            expiry_date=batch.expiry_date,
            is_controlled=bool(medicine.is_controlled),
            quantity=item.quantity,
            unit_price_cents=batch.selling_price_cents,
            pricing_mode=batch.pricing_mode,
            tax_rate_bps=medicine.tax_rate_bps,
            discount_type=item.discount_type,
            discount_value=item.discount_value if item.discount_type else None,
            discount_cents=tax_service.to_cents(result.discount_amount),
            gross_cents=tax_service.to_cents(result.gross_amount),
            taxable_value_cents=tax_service.to_cents(result.taxable_value),
            cgst_cents=tax_service.to_cents(result.cgst),
            sgst_cents=tax_service.to_cents(result.sgst),
            tax_cents=tax_service.to_cents(result.total_tax),
            total_cents=tax_service.to_cents(result.total),
        )
        db.session.add(line)
        db.session.flush()

        inventory_service.apply_stock_delta(
            batch.id,
            -item.quantity,
            movement_type=inventory_service.MOVEMENT_SALE,
            bill_id=bill.id,
            user_id=user_id,
            note=f"Sale {bill_number}",
            mark_sold=True,
        )

        if line.is_controlled:
            db.session.add(ControlledSaleRecord(
                bill_id=bill.id,
                bill_item_id=line.id,
                medicine_id=medicine.id,
                batch_id=batch.id,
                patient_name=info.patient_name,
                patient_age=info.patient_age,
                patient_gender=info.patient_gender,
                patient_phone=info.patient_phone,
                patient_address=info.patient_address,
                doctor_name=info.doctor_name,
                doctor_registration_number=info.doctor_registration_number,
                clinic_name=info.clinic_name,
                prescription_number=info.prescription_number,
                prescription_date=info.prescription_date,
                prescription_text=info.prescription_text,
                quantity=item.quantity,
            ))

    if credit > 0:
        credit_service.record_movement(
            customer.id,
            bill.id,
            credit_service.ENTRY_SALE,
            credit,
            user_id=user_id,
            note=f"Sale {bill_number}",
        )

    append_audit_event(
        user_id=user_id,
        action="CREATE",
        entity_type="bill",
        entity_id=bill.id,
        description=f"Bill {bill_number} for {bill.final_amount_cents} cents ({request.payment_mode})",
    )
    db.session.flush()
    return bill


def create_bill(request: BillRequest, user_id: int) -> Bill:
    """
    Validate and commit a sale as one atomic unit. Returns the bill with its
    line items loaded.

    Raises a BillingError subclass on any failure; in that case nothing was
    written.
    """
    def _op():
        batches = _resolve_batches(request, lock=True)
        calc = _calculate(request, batches)
        tenders = _resolve_payment(request, tax_service.to_cents(calc.final_amount))
        customer = _check_credit(request, tenders[2], lock=True)
        _check_compliance(request, batches)
        bill_number = sequence_service.next_invoice_number()
        bill = _persist(request, batches, calc, tenders, customer, bill_number, user_id)
        return bill.id, bill_number

    try:
        bill_id, bill_number = with_transaction(_op, description="create bill")
    except BillingError as exc:
        if exc.fatal:
            logger.error("Bill creation failed (%s): %s", exc.kind, exc)
        else:
            logger.warning("Bill rejected (%s): %s", exc.kind, exc)
        raise

    logger.info("Bill %s created by user %s", bill_number, user_id)
    return bill_queries.get_bill(bill_id)


def preview_bill(request: BillRequest) -> dict:
    """
    Totals and payment split for a proposed sale without writing anything.

    Runs the same stock, split, credit and compliance checks as create_bill,
    but without row locks; a later create_bill re-checks everything.
    """
    batches = _resolve_batches(request, lock=False)
    calc = _calculate(request, batches)
    cash, online, credit = _resolve_payment(request, tax_service.to_cents(calc.final_amount))
    _check_credit(request, credit, lock=False)
    _check_compliance(request, batches)

    rates = [
        (tax_service.bps_to_rate(batches[item.batch_id].tax_rate_bps), result)
        for item, result in zip(request.items, calc.lines)
    ]
    breakdown = [
        {
            "tax_rate": str(rate),
            "taxable_value_cents": tax_service.to_cents(bucket["taxable_value"]),
            "cgst_cents": tax_service.to_cents(bucket["cgst"]),
            "sgst_cents": tax_service.to_cents(bucket["sgst"]),
            "tax_cents": tax_service.to_cents(bucket["total_tax"]),
        }
        for rate, bucket in sorted(tax_service.group_by_tax_rate(rates).items())
    ]
    lines = [
        {
            "batch_id": item.batch_id,
            "quantity": item.quantity,
            "unit_price_cents": batches[item.batch_id].selling_price_cents,
            "gross_cents": tax_service.to_cents(result.gross_amount),
            "discount_cents": tax_service.to_cents(result.discount_amount),
            "taxable_value_cents": tax_service.to_cents(result.taxable_value),
            "cgst_cents": tax_service.to_cents(result.cgst),
            "sgst_cents": tax_service.to_cents(result.sgst),
            "tax_cents": tax_service.to_cents(result.total_tax),
            "total_cents": tax_service.to_cents(result.total),
        }
        for item, result in zip(request.items, calc.lines)
    ]
    return {
        **_totals_cents(calc),
        "payment_mode": request.payment_mode,
        "cash_cents": cash,
        "online_cents": online,
        "credit_cents": credit,
        "lines": lines,
        "tax_breakdown": breakdown,
    }
