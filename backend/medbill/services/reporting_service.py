# Overview: Service-layer operations for reporting; aggregates over completed bills.

from __future__ import annotations

from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Bill, BillItem, Batch, Medicine, ControlledSaleRecord, SalesReturn
from ..models.sales import BILL_COMPLETED, BILL_CANCELLED, PAYMENT_MODES
from ..errors import InvalidRequest
from medbill.time_utils import to_utc_z
from .bill_queries import day_bounds


def _check_range(start_date: date | None, end_date: date | None) -> None:
    if start_date and end_date and start_date > end_date:
        raise InvalidRequest(
            "start_date must be on or before end_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def _in_range(query, start_date: date | None, end_date: date | None):
    start, end = day_bounds(start_date, end_date)
    if start is not None:
        query = query.filter(Bill.bill_date >= start)
    if end is not None:
        query = query.filter(Bill.bill_date < end)
    return query


def _range_dict(start_date, end_date) -> dict:
    return {
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
    }


def sales_summary(start_date: date | None = None, end_date: date | None = None) -> dict:
    """
    Totals over completed bills in the range. Cancelled bills are counted
    separately and excluded from every amount.
    Returns dated in the range are reported as return_count / refund_cents;
    they do not change the bill amounts.
    """
    _check_range(start_date, end_date)

    query = db.session.query(
        func.count(Bill.id),
        func.coalesce(func.sum(Bill.subtotal_cents), 0),
        func.coalesce(func.sum(Bill.item_discount_cents + Bill.discount_cents), 0),
        func.coalesce(func.sum(Bill.taxable_total_cents), 0),
        func.coalesce(func.sum(Bill.tax_total_cents), 0),
        func.coalesce(func.sum(Bill.round_off_cents), 0),
        func.coalesce(func.sum(Bill.final_amount_cents), 0),
        func.coalesce(func.sum(Bill.cash_cents), 0),
        func.coalesce(func.sum(Bill.online_cents), 0),
        func.coalesce(func.sum(Bill.credit_cents), 0),
    ).filter(Bill.status == BILL_COMPLETED)
    row = _in_range(query, start_date, end_date).one()

    cancelled = _in_range(
        db.session.query(func.count(Bill.id)).filter(Bill.status == BILL_CANCELLED),
        start_date,
        end_date,
    ).scalar()

    start, end = day_bounds(start_date, end_date)
    returns_query = db.session.query(func.count(SalesReturn.id), func.coalesce(func.sum(SalesReturn.refund_cents), 0))
    if start is not None:
        returns_query = returns_query.filter(SalesReturn.return_date >= start)
    if end is not None:
        returns_query = returns_query.filter(SalesReturn.return_date < end)
    return_count, refund = (int(v or 0) for v in returns_query.one())

    (count, subtotal, discount, taxable, tax, round_off, final, cash, online, credit) = (int(v or 0) for v in row)
    return {
        **_range_dict(start_date, end_date),
        "bill_count": count,
        "cancelled_count": int(cancelled or 0),
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "taxable_cents": taxable,
        "tax_cents": tax,
        "round_off_cents": round_off,
        "net_sales_cents": final,
        "cash_cents": cash,
        "online_cents": online,
        "credit_cents": credit,
        "average_bill_cents": final // count if count else 0,
        "return_count": return_count,
        "refund_cents": refund,
    }


def payment_mode_breakdown(start_date: date | None = None, end_date: date | None = None) -> list[dict]:
    """Bill count and amount per payment mode; every mode is listed."""
    _check_range(start_date, end_date)

    query = db.session.query(
        Bill.payment_mode,
        func.count(Bill.id),
        func.coalesce(func.sum(Bill.final_amount_cents), 0),
    ).filter(Bill.status == BILL_COMPLETED)
    rows = _in_range(query, start_date, end_date).group_by(Bill.payment_mode).all()

    by_mode = {mode: (int(count), int(amount or 0)) for mode, count, amount in rows}
    return [
        {
            "payment_mode": mode,
            "bill_count": by_mode.get(mode, (0, 0))[0],
            "amount_cents": by_mode.get(mode, (0, 0))[1],
        }
        for mode in PAYMENT_MODES
    ]


def tax_summary(start_date: date | None = None, end_date: date | None = None) -> dict:
    """Taxable value and CGST/SGST per tax rate for completed bills."""
    _check_range(start_date, end_date)

    query = (
        db.session.query(
            BillItem.tax_rate_bps,
            func.coalesce(func.sum(BillItem.taxable_value_cents), 0),
            func.coalesce(func.sum(BillItem.cgst_cents), 0),
            func.coalesce(func.sum(BillItem.sgst_cents), 0),
            func.coalesce(func.sum(BillItem.tax_cents), 0),
        )
        .join(Bill, BillItem.bill_id == Bill.id)
        .filter(Bill.status == BILL_COMPLETED)
    )
    rows = (
        _in_range(query, start_date, end_date)
        .group_by(BillItem.tax_rate_bps)
        .order_by(BillItem.tax_rate_bps)
        .all()
    )

    rates = [
        {
            "tax_rate_bps": int(bps),
            "taxable_value_cents": int(taxable or 0),
            "cgst_cents": int(cgst or 0),
            "sgst_cents": int(sgst or 0),
            "tax_cents": int(tax or 0),
        }
        for bps, taxable, cgst, sgst, tax in rows
    ]
    return {
        **_range_dict(start_date, end_date),
        "rates": rates,
        "taxable_value_cents": sum(r["taxable_value_cents"] for r in rates),
        "tax_cents": sum(r["tax_cents"] for r in rates),
    }


def controlled_register(
    start_date: date | None = None,
    end_date: date | None = None,
    *,
    include_cancelled: bool = False,
) -> dict:
    """
    Controlled-item register for the range, newest first.

    Each record carries the patient and prescriber details joined with the
    medicine name, batch number and bill number. Lines of cancelled bills
    are left out unless include_cancelled is set; bill_status tells them
    apart either way.
    """
    _check_range(start_date, end_date)

    query = (
        db.session.query(
            ControlledSaleRecord,
            Medicine.name,
            Batch.batch_number,
            Bill.bill_number,
            Bill.bill_date,
            Bill.status,
        )
        .join(Medicine, ControlledSaleRecord.medicine_id == Medicine.id)
        .join(Batch, ControlledSaleRecord.batch_id == Batch.id)
        .join(Bill, ControlledSaleRecord.bill_id == Bill.id)
    )
    if not include_cancelled:
        query = query.filter(Bill.status != BILL_CANCELLED)
    rows = _in_range(query, start_date, end_date).order_by(ControlledSaleRecord.id.desc()).all()

    records = []
    for record, medicine_name, batch_number, bill_number, bill_date, status in rows:
        data = record.to_dict()
        data.update({
            "medicine_name": medicine_name,
            "batch_number": batch_number,
            "bill_number": bill_number,
            "bill_date": to_utc_z(bill_date),
            "bill_status": status,
        })
        records.append(data)

    return {
        **_range_dict(start_date, end_date),
        "records": records,
        "total_records": len(records),
        "total_quantity": sum(r["quantity"] for r in records),
    }
