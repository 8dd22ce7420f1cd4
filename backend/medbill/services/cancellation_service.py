# Overview: Service-layer operations for bill cancellation; atomic reversal of a committed sale.

"""
Cancellation Invariants (authoritative)

- COMPLETED -> CANCELLED is the only transition a bill ever makes, and it is
  terminal. A second cancel fails with AlreadyCancelled.
- Reversal is symmetric: every sold quantity goes back to its batch as a
  SALE_CANCEL movement, and any credit component is negated by a new
  ADJUSTMENT entry. Nothing already written is edited or deleted.
- A bill with any sales return cannot be cancelled (BillHasReturns); the
  remaining items go back through further returns instead.
- Stock restore, credit reversal, status flip and audit entry commit
  together or not at all.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Bill
from ..models.sales import BILL_CANCELLED
from ..errors import BillingError, BillNotFound, AlreadyCancelled, BillHasReturns, InvalidRequest
from medbill.time_utils import utcnow
from .concurrency import lock_for_update, with_transaction
from .audit_service import append_audit_event
from . import inventory_service
from . import credit_service
from . import bill_queries
from . import return_service


logger = logging.getLogger(__name__)


def cancel_bill(bill_id: int, user_id: int, reason: str) -> Bill:
    """Cancel a completed bill and reverse its stock and credit effects."""
    if not reason or not reason.strip():
        raise InvalidRequest("reason is required to cancel a bill", details={"field": "reason"})
    reason = reason.strip()[:255]

    def _op():
        # Row lock is the transition guard against a concurrent cancel
        bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
        if bill is None:
            raise BillNotFound(bill_id)
        if bill.is_cancelled:
            raise AlreadyCancelled(bill.id, bill.bill_number)
        returns = return_service.return_count(bill.id)
        if returns:
            raise BillHasReturns(bill.id, bill.bill_number, returns)

        for item in bill.items:
            inventory_service.apply_stock_delta(
                item.batch_id,
                item.quantity,
                movement_type=inventory_service.MOVEMENT_SALE_CANCEL,
                bill_id=bill.id,
                user_id=user_id,
                note=f"Cancel {bill.bill_number}",
            )

        if bill.credit_cents > 0 and bill.customer_id is not None:
            credit_service.record_movement(
                bill.customer_id,
                bill.id,
                credit_service.ENTRY_ADJUSTMENT,
                -bill.credit_cents,
                user_id=user_id,
                note=f"Cancel {bill.bill_number}: {reason}",
            )

        bill.status = BILL_CANCELLED
        bill.cancelled_at = utcnow()
        bill.cancelled_by_user_id = user_id
        bill.cancel_reason = reason

        append_audit_event(
            user_id=user_id,
            action="CANCEL",
            entity_type="bill",
            entity_id=bill.id,
            description=f"Bill {bill.bill_number} cancelled: {reason}",
        )
        db.session.flush()
        return bill.bill_number

    try:
        bill_number = with_transaction(_op, description="cancel bill")
    except BillingError as exc:
        if exc.fatal:
            logger.error("Cancellation of bill %s failed (%s): %s", bill_id, exc.kind, exc)
        else:
            logger.warning("Cancellation of bill %s rejected (%s): %s", bill_id, exc.kind, exc)
        raise

    logger.info("Bill %s cancelled by user %s", bill_number, user_id)
    return bill_queries.get_bill(bill_id)
