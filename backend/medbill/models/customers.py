from __future__ import annotations

from ..extensions import db
from medbill.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with a running credit balance.

    current_balance_cents is denormalized from credit_ledger_entries and is
    only updated by credit_service.record_movement, in the same transaction
    as the entry it reflects.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "gstin": self.gstin,
            "address": self.address,
            "credit_limit_cents": self.credit_limit_cents,
            "current_balance_cents": self.current_balance_cents,
            "available_credit_cents": self.credit_limit_cents - self.current_balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditLedgerEntry(db.Model):
    """
    Append-only credit movement for a customer.

    amount_cents is signed: SALE entries are positive, PAYMENT entries and
    cancellation ADJUSTMENTs are negative. Reversals are new entries, never
    edits.
    """
    __tablename__ = "credit_ledger_entries"
    __table_args__ = (
        db.Index("ix_credit_ledger_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)

    # SALE, PAYMENT, ADJUSTMENT
    entry_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    payment_mode = db.Column(db.String(16), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("credit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "bill_id": self.bill_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "payment_mode": self.payment_mode,
            "reference": self.reference,
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
