# Overview: Read-only bill lookups and listings.

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Bill


DEFAULT_LIMIT = 50
MAX_LIMIT = 500


def get_bill(bill_id: int) -> Bill | None:
    return (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.id == bill_id)
        .first()
    )


def get_bill_by_number(bill_number: str) -> Bill | None:
    return (
        db.session.query(Bill)
        .options(selectinload(Bill.items))
        .filter(Bill.bill_number == bill_number)
        .first()
    )


def day_bounds(start_date: date | None, end_date: date | None) -> tuple[datetime | None, datetime | None]:
    """Inclusive calendar-day range -> [start, end) datetimes."""
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None
    return start, end


def list_bills(
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    customer_id: int | None = None,
    payment_mode: str | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> tuple[list[Bill], int]:
    """Newest first. Returns (page, total matching)."""
    query = db.session.query(Bill)

    start, end = day_bounds(start_date, end_date)
    if start is not None:
        query = query.filter(Bill.bill_date >= start)
    if end is not None:
        query = query.filter(Bill.bill_date < end)
    if customer_id is not None:
        query = query.filter(Bill.customer_id == customer_id)
    if payment_mode:
        query = query.filter(Bill.payment_mode == payment_mode)
    if status:
        query = query.filter(Bill.status == status)

    total = query.count()
    limit = max(1, min(limit or DEFAULT_LIMIT, MAX_LIMIT))
    bills = (
        query.order_by(Bill.bill_date.desc(), Bill.id.desc())
        .offset(max(offset or 0, 0))
        .limit(limit)
        .all()
    )
    return bills, total
