from __future__ import annotations

from ..extensions import db
from medbill.time_utils import to_utc_z


INVOICE_SEQUENCE_ID = 1


class InvoiceSequence(db.Model):
    """
    Single-row invoice counter for the active fiscal year.

    WHY: The counter is advanced inside the same transaction as the bill it
    numbers, so a rolled-back bill also rolls back its number (no gaps).
    """
    __tablename__ = "invoice_sequence"
    __table_args__ = (
        db.CheckConstraint("id = 1", name="ck_invoice_sequence_single_row"),
    )

    id = db.Column(db.Integer, primary_key=True, default=INVOICE_SEQUENCE_ID)
    prefix = db.Column(db.String(16), nullable=False, default="INV")
    current_number = db.Column(db.Integer, nullable=False, default=0)
    fiscal_year = db.Column(db.String(7), nullable=False)  # "2024-25"
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "current_number": self.current_number,
            "fiscal_year": self.fiscal_year,
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditLogEntry(db.Model):
    """Append-only audit trail. Written in the same transaction as the action."""
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(32), nullable=False)  # CREATE, CANCEL, RETURN, PAYMENT, ADJUST, DEACTIVATE
    entity_type = db.Column(db.String(32), nullable=False)  # bill, customer, batch
    entity_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
