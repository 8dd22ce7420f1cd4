# Overview: Service-layer operations for sales returns; partial reversal of a committed sale.

"""
Sales Return Invariants (authoritative)

- A return never edits the bill. Returned quantities are recorded as
  SalesReturn / SalesReturnItem rows against the bill's lines.
- Per bill line: SUM(returned quantity) <= sold quantity. Each request is
  checked against what is still returnable under the bill row lock.
- Stock goes back to the sold batch as a SALE_RETURN movement through
  inventory_service.apply_stock_delta.
- Refunds are prorated from the line total and scaled by the bill-level
  discount (final_amount / sum of line totals). Amounts are computed on the
  cumulative returned quantity, so the refunds for a line never add up to
  more than its share of the bill.
- A CREDIT refund reduces the customer's balance with an ADJUSTMENT entry
  and cannot exceed the bill's credit component not yet refunded.
- Only COMPLETED bills accept returns. Once a bill has a return it can no
  longer be cancelled (see cancellation_service).
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Bill, BillItem, SalesReturn, SalesReturnItem
from ..models.sales import REFUND_CREDIT, REFUND_MODES
from ..errors import (
    AlreadyCancelled,
    BillingError,
    BillNotFound,
    InvalidRequest,
    ReturnQuantityExceeded,
)
from ..validation import ReturnItemRequest
from medbill.time_utils import utcnow
from .concurrency import lock_for_update, with_transaction
from .audit_service import append_audit_event
from . import inventory_service
from . import credit_service


logger = logging.getLogger(__name__)


def _cumulative_share(total_cents: int, returned: int, quantity: int, num: int = 1, den: int = 1) -> int:
    if quantity <= 0 or den <= 0:
        return 0
    return (total_cents * returned * num) // (quantity * den)


def returned_quantities(bill_id: int) -> dict[int, int]:
    """bill_item_id -> quantity already returned."""
    rows = (
        db.session.query(SalesReturnItem.bill_item_id, func.sum(SalesReturnItem.quantity))
        .join(SalesReturn, SalesReturnItem.return_id == SalesReturn.id)
        .filter(SalesReturn.bill_id == bill_id)
        .group_by(SalesReturnItem.bill_item_id)
        .all()
    )
    return {item_id: int(qty or 0) for item_id, qty in rows}


def credit_refunded(bill_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(SalesReturn.refund_cents), 0))
        .filter(SalesReturn.bill_id == bill_id, SalesReturn.refund_mode == REFUND_CREDIT)
        .scalar()
        or 0
    )


def return_count(bill_id: int) -> int:
    return db.session.query(func.count(SalesReturn.id)).filter(SalesReturn.bill_id == bill_id).scalar() or 0


def _requested(items) -> "OrderedDict[int, int]":
    requested: "OrderedDict[int, int]" = OrderedDict()
    for item in items:
        if isinstance(item, ReturnItemRequest):
            bill_item_id, quantity = item.bill_item_id, item.quantity
        else:
            bill_item_id, quantity = item
        if quantity is None or quantity <= 0:
            raise InvalidRequest("return quantity must be > 0", details={"bill_item_id": bill_item_id})
        requested[bill_item_id] = requested.get(bill_item_id, 0) + quantity
    if not requested:
        raise InvalidRequest("items must be a non-empty list", details={"field": "items"})
    return requested


def create_return(
    bill_id: int,
    items,
    user_id: int,
    reason: str,
    refund_mode: str = "CASH",
) -> SalesReturn:
    """
    Return some or all of a bill's items as one atomic unit.

    `items` is a sequence of ReturnItemRequest or (bill_item_id, quantity)
    pairs. Raises a BillingError subclass on any failure; in that case
    nothing was written.
    """
    if not reason or not reason.strip():
        raise InvalidRequest("reason is required for a return", details={"field": "reason"})
    reason = reason.strip()[:255]
    if refund_mode not in REFUND_MODES:
        raise InvalidRequest(
            f"refund_mode must be one of {', '.join(REFUND_MODES)}",
            details={"field": "refund_mode"},
        )
    requested = _requested(items)

    def _op():
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if bill is None:
            raise BillNotFound(bill_id)
        if bill.is_cancelled:
            raise AlreadyCancelled(bill.id, bill.bill_number)

        lines = {item.id: item for item in db.session.query(BillItem).filter_by(bill_id=bill.id)}
        already = returned_quantities(bill.id)

        for bill_item_id, quantity in requested.items():
            line = lines.get(bill_item_id)
            if line is None:
                raise InvalidRequest(
                    f"Bill item {bill_item_id} is not on bill {bill.bill_number}",
                    details={"bill_item_id": bill_item_id, "bill_id": bill.id},
                )
            returnable = line.quantity - already.get(bill_item_id, 0)
            if quantity > returnable:
                raise ReturnQuantityExceeded(bill_item_id, requested=quantity, returnable=returnable)

        # Bill-level discount is spread over lines in proportion to their totals
        lines_total = sum(line.total_cents for line in lines.values())
        sales_return = SalesReturn(
            return_number=f"SR-{bill.bill_number}-{return_count(bill.id) + 1:02d}",
            return_date=utcnow(),
            bill_id=bill.id,
            customer_id=bill.customer_id,
            user_id=user_id,
            reason=reason,
            refund_mode=refund_mode,
        )
        db.session.add(sales_return)
        db.session.flush()

        refund_total = 0
        tax_total = 0
        for bill_item_id, quantity in requested.items():
            line = lines[bill_item_id]
            before = already.get(bill_item_id, 0)
            after = before + quantity

            def share(total, num=1, den=1):
                return (
                    _cumulative_share(total, after, line.quantity, num, den)
                    - _cumulative_share(total, before, line.quantity, num, den)
                )

            refund = share(line.total_cents, bill.final_amount_cents, lines_total)
            cgst = share(line.cgst_cents)
            sgst = share(line.sgst_cents)
            db.session.add(SalesReturnItem(
                return_id=sales_return.id,
                bill_item_id=line.id,
                batch_id=line.batch_id,
                quantity=quantity,
                tax_rate_bps=line.tax_rate_bps,
                cgst_cents=cgst,
                sgst_cents=sgst,
                tax_cents=cgst + sgst,
                refund_cents=refund,
            ))
            refund_total += refund
            tax_total += cgst + sgst

            inventory_service.apply_stock_delta(
                line.batch_id,
                quantity,
                movement_type=inventory_service.MOVEMENT_SALE_RETURN,
                bill_id=bill.id,
                user_id=user_id,
                note=f"Return {sales_return.return_number}",
            )

        if refund_mode == REFUND_CREDIT:
            if bill.customer_id is None:
                raise InvalidRequest(
                    "A CREDIT refund needs a bill with a customer",
                    details={"bill_id": bill.id, "refund_mode": refund_mode},
                )
            outstanding = bill.credit_cents - credit_refunded(bill.id)
            if refund_total > outstanding:
                raise InvalidRequest(
                    "Refund exceeds the bill's unrefunded credit",
                    details={
                        "bill_id": bill.id,
                        "refund_cents": refund_total,
                        "refundable_credit_cents": outstanding,
                    },
                )
            if refund_total > 0:
                credit_service.record_movement(
                    bill.customer_id,
                    bill.id,
                    credit_service.ENTRY_ADJUSTMENT,
                    -refund_total,
                    user_id=user_id,
                    note=f"Return {sales_return.return_number}: {reason}",
                )

        sales_return.refund_cents = refund_total
        sales_return.tax_cents = tax_total

        append_audit_event(
            user_id=user_id,
            action="RETURN",
            entity_type="bill",
            entity_id=bill.id,
            description=f"Return {sales_return.return_number} of {refund_total} cents ({refund_mode}): {reason}",
        )
        db.session.flush()
        return sales_return.id, sales_return.return_number

    try:
        return_id, return_number = with_transaction(_op, description="sales return")
    except BillingError as exc:
        if exc.fatal:
            logger.error("Return against bill %s failed (%s): %s", bill_id, exc.kind, exc)
        else:
            logger.warning("Return against bill %s rejected (%s): %s", bill_id, exc.kind, exc)
        raise

    logger.info("Return %s recorded by user %s", return_number, user_id)
    return get_return(return_id)


def get_return(return_id: int) -> SalesReturn | None:
    return (
        db.session.query(SalesReturn)
        .options(selectinload(SalesReturn.items))
        .filter(SalesReturn.id == return_id)
        .first()
    )


def list_returns(bill_id: int) -> list[SalesReturn]:
    return (
        db.session.query(SalesReturn)
        .options(selectinload(SalesReturn.items))
        .filter(SalesReturn.bill_id == bill_id)
        .order_by(SalesReturn.id)
        .all()
    )
