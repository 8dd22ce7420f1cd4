# Overview: Service-layer operations for inventory; batch lookup and signed stock deltas.

"""
medbill Stock Ledger Invariants (authoritative)

- Batch.quantity is never written directly. Every change goes through
  apply_stock_delta, which issues one conditional UPDATE
  (quantity = quantity + delta WHERE quantity + delta >= 0) and appends a
  StockMovement row in the same transaction.
- For every batch: quantity == SUM(stock_movements.quantity_delta).
- Quantity can never go negative: the guard in the UPDATE is the final word,
  even if a caller skipped the availability check.
- A batch whose expiry date is on or before today cannot be sold.
"""

from __future__ import annotations

import logging
from datetime import date

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Medicine, Batch, StockMovement
from ..models.inventory import PRICING_MODES
from ..errors import InvalidRequest, InvalidTaxRate, StockNotFound, InsufficientStock
from medbill.time_utils import today
from .concurrency import lock_for_update, with_transaction
from .audit_service import append_audit_event
from . import tax_service


logger = logging.getLogger(__name__)

MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_CANCEL = "SALE_CANCEL"
MOVEMENT_SALE_RETURN = "SALE_RETURN"
MOVEMENT_ADJUST = "ADJUST"


def create_medicine(
    *,
    name: str,
    tax_rate_percent,
    hsn_code: str | None = None,
    generic_name: str | None = None,
    manufacturer: str | None = None,
    is_controlled: bool = False,
) -> Medicine:
    if not name or not name.strip():
        raise InvalidRequest("name is required")

    allowed = current_app.config.get("ALLOWED_TAX_RATES", (0, 5, 12, 18))
    if not tax_service.is_valid_tax_rate(tax_rate_percent, allowed):
        raise InvalidTaxRate(
            f"Tax rate must be one of {', '.join(str(r) for r in allowed)}",
            details={"tax_rate": str(tax_rate_percent)},
        )

    medicine = Medicine(
        name=name.strip(),
        generic_name=generic_name,
        manufacturer=manufacturer,
        hsn_code=hsn_code or tax_service.default_hsn_code(tax_rate_percent),
        tax_rate_bps=int(tax_rate_percent) * 100,
        is_controlled=bool(is_controlled),
    )
    db.session.add(medicine)
    db.session.commit()
    return medicine


def create_batch(
    *,
    medicine_id: int,
    batch_number: str,
    expiry_date: date,
    selling_price_cents: int,
    quantity: int,
    pricing_mode: str = "INCLUSIVE",
    purchase_price_cents: int | None = None,
    mrp_cents: int | None = None,
    user_id: int | None = None,
) -> Batch:
    """Create a batch and record its opening stock as a RECEIVE movement."""
    if pricing_mode not in PRICING_MODES:
        raise InvalidRequest(f"pricing_mode must be one of {', '.join(PRICING_MODES)}")
    if selling_price_cents is None or selling_price_cents < 0:
        raise InvalidRequest("selling_price_cents must be >= 0")
    if quantity is None or quantity < 0:
        raise InvalidRequest("quantity must be >= 0")
    if not batch_number or not batch_number.strip():
        raise InvalidRequest("batch_number is required")

    def _op():
        medicine = db.session.query(Medicine).filter_by(id=medicine_id).first()
        if medicine is None:
            raise InvalidRequest(f"Medicine not found: {medicine_id}", details={"medicine_id": medicine_id})

        batch = Batch(
            medicine_id=medicine_id,
            batch_number=batch_number.strip(),
            expiry_date=expiry_date,
            purchase_price_cents=purchase_price_cents,
            mrp_cents=mrp_cents,
            selling_price_cents=selling_price_cents,
            pricing_mode=pricing_mode,
            quantity=0,
        )
        db.session.add(batch)
        db.session.flush()

        if quantity:
            apply_stock_delta(
                batch.id,
                quantity,
                movement_type=MOVEMENT_RECEIVE,
                user_id=user_id,
                note=f"Opening stock for batch {batch.batch_number}",
            )
        return batch

    batch = with_transaction(_op, description="create batch")
    db.session.refresh(batch)
    return batch


def get_batch(batch_id: int) -> Batch | None:
    return db.session.query(Batch).filter_by(id=batch_id).first()


def get_batch_for_sale(batch_id: int, *, lock: bool = True) -> Batch:
    """
    Active batch of an active medicine, row-locked for the rest of the
    transaction. Raises StockNotFound otherwise.
    """
    query = (
        db.session.query(Batch)
        .join(Medicine, Batch.medicine_id == Medicine.id)
        .filter(Batch.id == batch_id, Batch.is_active.is_(True), Medicine.is_active.is_(True))
    )
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise StockNotFound(batch_id)
    return batch


def apply_stock_delta(
    batch_id: int,
    delta: int,
    *,
    movement_type: str,
    bill_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    mark_sold: bool = False,
) -> int:
    """
    Apply a signed quantity change and record it. Returns the new quantity.

    Runs in the caller's transaction; does not commit.
    """
    if delta == 0:
        raise InvalidRequest("quantity delta must be non-zero")

    values = {"quantity": Batch.quantity + delta}
    if mark_sold:
        values["last_sold_date"] = today()

    stmt = (
        update(Batch)
        .where(Batch.id == batch_id, Batch.quantity + delta >= 0)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if not result.rowcount:
        available = db.session.query(Batch.quantity).filter(Batch.id == batch_id).scalar()
        if available is None:
            raise StockNotFound(batch_id)
        raise InsufficientStock(batch_id, requested=-delta, available=available)

    db.session.add(StockMovement(
        batch_id=batch_id,
        movement_type=movement_type,
        quantity_delta=delta,
        bill_id=bill_id,
        user_id=user_id,
        note=note,
    ))
    db.session.flush()

    new_quantity = db.session.query(Batch.quantity).filter(Batch.id == batch_id).scalar()
    # Keep any loaded Batch instance in step with the row
    batch = db.session.identity_map.get(db.session.identity_key(Batch, batch_id))
    if batch is not None:
        db.session.expire(batch, ["quantity", "last_sold_date", "updated_at"])
    return new_quantity


def adjust_stock(batch_id: int, delta: int, *, user_id: int, note: str) -> Batch:
    """Manual stock correction (damage, count variance)."""
    if not note or not note.strip():
        raise InvalidRequest("note is required for stock adjustments")

    def _op():
        get_batch_for_sale(batch_id)
        apply_stock_delta(batch_id, delta, movement_type=MOVEMENT_ADJUST, user_id=user_id, note=note.strip())
        append_audit_event(
            user_id=user_id,
            action="ADJUST",
            entity_type="batch",
            entity_id=batch_id,
            description=f"{delta:+d}: {note.strip()}",
        )

    with_transaction(_op, description="stock adjustment")
    logger.info("Stock adjusted on batch %s by %+d", batch_id, delta)
    return get_batch(batch_id)


def movement_total(batch_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.batch_id == batch_id)
        .scalar()
        or 0
    )


def verify_stock_ledger(batch_id: int) -> bool:
    """True when the batch quantity equals the sum of its movements."""
    quantity = db.session.query(Batch.quantity).filter(Batch.id == batch_id).scalar()
    if quantity is None:
        raise StockNotFound(batch_id)
    return quantity == movement_total(batch_id)
