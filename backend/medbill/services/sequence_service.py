# Overview: Service-layer operations for invoice numbering; single persisted counter.

"""
Invoice Sequence

Invariants:
- One counter row (id=1) holds prefix, current number and fiscal year.
- next_invoice_number() increments in the caller's transaction. If the bill
  transaction rolls back, so does the increment: numbers are gap-free.
- A missing or unreadable counter is fatal (SequenceCorrupted). We never
  guess a starting value.

Format: {prefix}-{fiscal year code}{number zero-padded}, e.g. INV-242500001
for fiscal year 2024-25.
"""

from __future__ import annotations

import logging
import re
from datetime import date

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import InvoiceSequence
from ..models.documents import INVOICE_SEQUENCE_ID
from ..errors import InvalidRequest, SequenceCorrupted
from .concurrency import lock_for_update, with_transaction


logger = logging.getLogger(__name__)

FISCAL_YEAR_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _parse_fiscal_year(fiscal_year: str) -> int:
    """Return the starting calendar year of 'YYYY-YY', or raise ValueError."""
    match = FISCAL_YEAR_RE.match(fiscal_year or "")
    if not match:
        raise ValueError(f"invalid fiscal year: {fiscal_year!r}")
    start = int(match.group(1))
    if int(match.group(2)) != (start + 1) % 100:
        raise ValueError(f"invalid fiscal year: {fiscal_year!r}")
    return start


def fiscal_year_for(day: date, start_month: int = 4) -> str:
    """fiscal_year_for(date(2025, 5, 1)) -> '2025-26' with an April start."""
    start = day.year if day.month >= start_month else day.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def fiscal_year_code(fiscal_year: str) -> str:
    """'2024-25' -> '2425'"""
    start = _parse_fiscal_year(fiscal_year)
    return f"{start % 100:02d}{(start + 1) % 100:02d}"


def format_invoice_number(prefix: str, fiscal_year: str, number: int, pad: int = 5) -> str:
    return f"{prefix}-{fiscal_year_code(fiscal_year)}{number:0{pad}d}"


def next_invoice_number() -> str:
    """
    Atomically allocate the next invoice number.

    Must run inside the caller's unit of work (see concurrency.with_transaction).
    The UPDATE takes the row lock before the new value is read back.
    """
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.id == INVOICE_SEQUENCE_ID)
        .values(current_number=InvoiceSequence.current_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        logger.error("Invoice sequence row is missing")
        raise SequenceCorrupted("Invoice sequence not initialized")

    row = (
        db.session.query(
            InvoiceSequence.prefix,
            InvoiceSequence.current_number,
            InvoiceSequence.fiscal_year,
        )
        .filter(InvoiceSequence.id == INVOICE_SEQUENCE_ID)
        .one_or_none()
    )
    if row is None:
        raise SequenceCorrupted("Invoice sequence not initialized")

    prefix, number, fiscal_year = row
    if not prefix or not isinstance(number, int) or number < 1:
        logger.error("Invoice sequence is unreadable: prefix=%r number=%r", prefix, number)
        raise SequenceCorrupted(
            "Invoice sequence is corrupted",
            details={"prefix": prefix, "current_number": number},
        )

    pad = current_app.config.get("INVOICE_NUMBER_PAD", 5)
    try:
        return format_invoice_number(prefix, fiscal_year, number, pad)
    except ValueError as exc:
        logger.error("Invoice sequence has a bad fiscal year: %r", fiscal_year)
        raise SequenceCorrupted(
            "Invoice sequence is corrupted",
            details={"fiscal_year": fiscal_year},
        ) from exc


def peek_invoice_sequence() -> InvoiceSequence | None:
    return db.session.query(InvoiceSequence).filter_by(id=INVOICE_SEQUENCE_ID).first()


def init_invoice_sequence(prefix: str | None = None, fiscal_year: str | None = None) -> InvoiceSequence:
    """
    Create the counter row if it does not exist yet (idempotent).

    Defaults come from INVOICE_PREFIX and the fiscal year of today.
    """
    existing = peek_invoice_sequence()
    if existing:
        return existing

    prefix = prefix or current_app.config.get("INVOICE_PREFIX", "INV")
    if fiscal_year is None:
        fiscal_year = fiscal_year_for(date.today(), current_app.config.get("FISCAL_YEAR_START_MONTH", 4))
    try:
        _parse_fiscal_year(fiscal_year)
    except ValueError as exc:
        raise InvalidRequest(str(exc), details={"fiscal_year": fiscal_year}) from exc

    seq = InvoiceSequence(id=INVOICE_SEQUENCE_ID, prefix=prefix, current_number=0, fiscal_year=fiscal_year)
    db.session.add(seq)
    db.session.commit()
    logger.info("Invoice sequence initialised: %s %s", prefix, fiscal_year)
    return seq


def start_fiscal_year(fiscal_year: str, prefix: str | None = None) -> InvoiceSequence:
    """
    Begin numbering for a new fiscal year; the counter restarts at zero.

    Only moves forward: a year equal to or before the active one is refused,
    since that would reissue numbers.
    """
    try:
        new_start = _parse_fiscal_year(fiscal_year)
    except ValueError as exc:
        raise InvalidRequest(str(exc), details={"fiscal_year": fiscal_year}) from exc

    def _op():
        seq = lock_for_update(
            db.session.query(InvoiceSequence).filter_by(id=INVOICE_SEQUENCE_ID)
        ).first()
        if seq is None:
            raise SequenceCorrupted("Invoice sequence not initialized")

        try:
            current_start = _parse_fiscal_year(seq.fiscal_year)
        except ValueError as exc:
            raise SequenceCorrupted(
                "Invoice sequence is corrupted",
                details={"fiscal_year": seq.fiscal_year},
            ) from exc

        if new_start <= current_start:
            raise InvalidRequest(
                f"Fiscal year {fiscal_year} is not after the active year {seq.fiscal_year}",
                details={"fiscal_year": fiscal_year, "active_fiscal_year": seq.fiscal_year},
            )

        seq.fiscal_year = fiscal_year
        seq.current_number = 0
        if prefix:
            seq.prefix = prefix
        return seq

    seq = with_transaction(_op, description="start fiscal year")
    logger.info("Invoice numbering moved to fiscal year %s", fiscal_year)
    return seq
