# Overview: Service-layer operations for customer credit; append-only ledger with running balance.

"""
medbill Credit Ledger Invariants (authoritative)

- credit_ledger_entries is append-only. Reversals are new entries with the
  opposite sign.
- Customer.current_balance_cents is updated in the same transaction as the
  entry that moves it, and each entry stores the resulting balance. For every
  customer: current_balance_cents == SUM(amount_cents).
- record_movement does not check the credit limit. The caller enforces the
  limit before any write (see billing_service).
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CreditLedgerEntry
from ..errors import CustomerNotFound, InvalidRequest
from .concurrency import lock_for_update, with_transaction
from .audit_service import append_audit_event


logger = logging.getLogger(__name__)

ENTRY_SALE = "SALE"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_ADJUSTMENT = "ADJUSTMENT"
ENTRY_TYPES = (ENTRY_SALE, ENTRY_PAYMENT, ENTRY_ADJUSTMENT)

# Tenders a customer can settle credit with
PAYMENT_TENDERS = ("CASH", "ONLINE")


def create_customer(
    *,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    gstin: str | None = None,
    address: str | None = None,
    credit_limit_cents: int = 0,
) -> Customer:
    if not name or not name.strip():
        raise InvalidRequest("name is required")
    if credit_limit_cents is None or credit_limit_cents < 0:
        raise InvalidRequest("credit_limit_cents must be >= 0")

    customer = Customer(
        name=name.strip(),
        phone=phone,
        email=email,
        gstin=gstin,
        address=address,
        credit_limit_cents=credit_limit_cents,
        current_balance_cents=0,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise CustomerNotFound(customer_id)
    return customer


def get_customer_for_billing(customer_id: int, *, lock: bool = True) -> Customer:
    """
    Active customer, row-locked for the rest of the transaction.
    Deactivated customers cannot be billed; raises CustomerNotFound.
    """
    query = db.session.query(Customer).filter(Customer.id == customer_id, Customer.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise CustomerNotFound(customer_id)
    return customer


def deactivate_customer(customer_id: int, *, user_id: int) -> Customer:
    """Soft delete. Ledger history and any outstanding balance are kept."""
    def _op():
        customer = get_customer(customer_id, lock=True)
        if customer.is_active:
            customer.is_active = False
            append_audit_event(
                user_id=user_id,
                action="DEACTIVATE",
                entity_type="customer",
                entity_id=customer_id,
                description=f"Customer {customer.name} deactivated",
            )
        return customer

    customer = with_transaction(_op, description="deactivate customer")
    logger.info("Customer %s deactivated by user %s", customer_id, user_id)
    return customer


def current_balance(customer_id: int) -> int:
    return get_customer(customer_id).current_balance_cents


def record_movement(
    customer_id: int,
    bill_id: int | None,
    entry_type: str,
    amount_cents: int,
    *,
    user_id: int | None = None,
    payment_mode: str | None = None,
    reference: str | None = None,
    note: str | None = None,
) -> int:
    """
    Append one signed movement and return the new balance.

    Runs in the caller's transaction; does not commit.
    """
    if entry_type not in ENTRY_TYPES:
        raise InvalidRequest(f"unknown credit entry type: {entry_type}")
    if amount_cents == 0:
        raise InvalidRequest("credit movement amount must be non-zero")

    customer = get_customer(customer_id, lock=True)
    customer.current_balance_cents = customer.current_balance_cents + amount_cents

    db.session.add(CreditLedgerEntry(
        customer_id=customer_id,
        bill_id=bill_id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        balance_after_cents=customer.current_balance_cents,
        payment_mode=payment_mode,
        reference=reference,
        note=note,
        user_id=user_id,
    ))
    db.session.flush()
    return customer.current_balance_cents


def _payment_tender(value) -> str:
    mode = value.strip().upper() if isinstance(value, str) else None
    if mode not in PAYMENT_TENDERS:
        raise InvalidRequest(
            f"payment_mode must be one of {', '.join(PAYMENT_TENDERS)}",
            details={"field": "payment_mode"},
        )
    return mode


def record_payment(
    customer_id: int,
    amount_cents: int,
    *,
    user_id: int,
    payment_mode: str = "CASH",
    reference: str | None = None,
    note: str | None = None,
) -> CreditLedgerEntry:
    """Customer pays down their outstanding balance."""
    if amount_cents is None or amount_cents <= 0:
        raise InvalidRequest("amount_cents must be > 0", details={"amount_cents": amount_cents})
    payment_mode = _payment_tender(payment_mode)

    def _op():
        record_movement(
            customer_id,
            None,
            ENTRY_PAYMENT,
            -amount_cents,
            user_id=user_id,
            payment_mode=payment_mode,
            reference=reference,
            note=note,
        )
        append_audit_event(
            user_id=user_id,
            action="PAYMENT",
            entity_type="customer",
            entity_id=customer_id,
            description=f"Credit payment of {amount_cents} cents",
        )
        return (
            db.session.query(CreditLedgerEntry)
            .filter_by(customer_id=customer_id)
            .order_by(CreditLedgerEntry.id.desc())
            .first()
        )

    entry = with_transaction(_op, description="credit payment")
    logger.info("Customer %s paid %s cents, balance now %s", customer_id, amount_cents, entry.balance_after_cents)
    return entry


def ledger_balance(customer_id: int) -> int:
    """Balance derived from the ledger itself."""
    return int(
        db.session.query(func.coalesce(func.sum(CreditLedgerEntry.amount_cents), 0))
        .filter(CreditLedgerEntry.customer_id == customer_id)
        .scalar()
        or 0
    )


def verify_customer_balance(customer_id: int) -> bool:
    return current_balance(customer_id) == ledger_balance(customer_id)


def customer_ledger(customer_id: int, limit: int = 50) -> list[CreditLedgerEntry]:
    get_customer(customer_id)
    return (
        db.session.query(CreditLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CreditLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )
