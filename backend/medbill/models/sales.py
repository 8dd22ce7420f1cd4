from __future__ import annotations

from ..extensions import db
from medbill.time_utils import to_utc_z, to_iso_date


BILL_COMPLETED = "COMPLETED"
BILL_CANCELLED = "CANCELLED"

PAYMENT_CASH = "CASH"
PAYMENT_ONLINE = "ONLINE"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_SPLIT = "SPLIT"
PAYMENT_MODES = (PAYMENT_CASH, PAYMENT_ONLINE, PAYMENT_CREDIT, PAYMENT_SPLIT)


def _decimal_str(value):
    return str(value) if value is not None else None


class Bill(db.Model):
    """
    One finalized sale.

    Totals are written once by billing_service.create_bill. The only
    permitted mutation afterwards is cancellation (status + cancel_* fields).
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("bill_number", name="uq_bills_bill_number"),
        db.Index("ix_bills_status_date", "status", "bill_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_number = db.Column(db.String(64), nullable=False)
    bill_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    doctor_name = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=False)

    # Amounts (all in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    item_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Bill-level discount, applied to the sum of line totals
    discount_type = db.Column(db.String(16), nullable=True)  # PERCENTAGE, FLAT
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)  # percent, or cents for FLAT
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    taxable_total_cents = db.Column(db.Integer, nullable=False, default=0)
    cgst_total_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)

    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    round_off_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Tender breakdown
    payment_mode = db.Column(db.String(16), nullable=False)
    cash_cents = db.Column(db.Integer, nullable=False, default=0)
    online_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=BILL_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("bills", lazy=True))
    items = db.relationship(
        "BillItem",
        back_populates="bill",
        order_by="BillItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_cancelled(self) -> bool:
        return self.status == BILL_CANCELLED

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "bill_number": self.bill_number,
            "bill_date": to_utc_z(self.bill_date),
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "doctor_name": self.doctor_name,
            "user_id": self.user_id,
            "subtotal_cents": self.subtotal_cents,
            "item_discount_cents": self.item_discount_cents,
            "discount_type": self.discount_type,
            "discount_value": _decimal_str(self.discount_value),
            "discount_cents": self.discount_cents,
            "taxable_total_cents": self.taxable_total_cents,
            "cgst_total_cents": self.cgst_total_cents,
            "sgst_total_cents": self.sgst_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "grand_total_cents": self.grand_total_cents,
            "round_off_cents": self.round_off_cents,
            "final_amount_cents": self.final_amount_cents,
            "payment_mode": self.payment_mode,
            "cash_cents": self.cash_cents,
            "online_cents": self.online_cents,
            "credit_cents": self.credit_cents,
            "status": self.status,
            "is_cancelled": self.is_cancelled,
            "notes": self.notes,
            "total_items": self.total_items,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class BillItem(db.Model):
    """
    One batch/quantity line on a bill.

    Price, pricing mode, tax rate and product details are a snapshot taken
    at sale time; never re-read from the batch afterwards.
    """
    __tablename__ = "bill_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False, index=True)

    # Snapshot
    medicine_name = db.Column(db.String(255), nullable=False)
    hsn_code = db.Column(db.String(16), nullable=False)
    batch_number = db.Column(db.String(64), nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)
    is_controlled = db.Column(db.Boolean, nullable=False, default=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    pricing_mode = db.Column(db.String(16), nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    gross_cents = db.Column(db.Integer, nullable=False)
    taxable_value_cents = db.Column(db.Integer, nullable=False)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bill = db.relationship("Bill", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "batch_id": self.batch_id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "hsn_code": self.hsn_code,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "is_controlled": self.is_controlled,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "pricing_mode": self.pricing_mode,
            "tax_rate_bps": self.tax_rate_bps,
            "discount_type": self.discount_type,
            "discount_value": _decimal_str(self.discount_value),
            "discount_cents": self.discount_cents,
            "gross_cents": self.gross_cents,
            "taxable_value_cents": self.taxable_value_cents,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class ControlledSaleRecord(db.Model):
    """Register entry for one controlled-item line (patient + prescriber)."""
    __tablename__ = "controlled_sale_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    bill_item_id = db.Column(db.Integer, db.ForeignKey("bill_items.id"), nullable=False, index=True)
    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False)

    patient_name = db.Column(db.String(255), nullable=False)
    patient_age = db.Column(db.Integer, nullable=False)
    patient_gender = db.Column(db.String(1), nullable=False)  # M, F, O
    patient_phone = db.Column(db.String(32), nullable=True)
    patient_address = db.Column(db.Text, nullable=True)

    doctor_name = db.Column(db.String(255), nullable=False)
    doctor_registration_number = db.Column(db.String(64), nullable=True)
    clinic_name = db.Column(db.String(255), nullable=True)
    prescription_number = db.Column(db.String(64), nullable=True)
    prescription_date = db.Column(db.Date, nullable=True)
    prescription_text = db.Column(db.Text, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "bill_item_id": self.bill_item_id,
            "medicine_id": self.medicine_id,
            "batch_id": self.batch_id,
            "patient_name": self.patient_name,
            "patient_age": self.patient_age,
            "patient_gender": self.patient_gender,
            "patient_phone": self.patient_phone,
            "patient_address": self.patient_address,
            "doctor_name": self.doctor_name,
            "doctor_registration_number": self.doctor_registration_number,
            "clinic_name": self.clinic_name,
            "prescription_number": self.prescription_number,
            "prescription_date": to_iso_date(self.prescription_date),
            "prescription_text": self.prescription_text,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }


REFUND_CASH = "CASH"
REFUND_ONLINE = "ONLINE"
REFUND_CREDIT = "CREDIT"
REFUND_MODES = (REFUND_CASH, REFUND_ONLINE, REFUND_CREDIT)


class SalesReturn(db.Model):
    """
    Partial or full return against a completed bill.

    The bill itself is never edited; returned quantities live here and in
    SalesReturnItem. A bill with any return can no longer be cancelled.
    """
    __tablename__ = "sales_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_sales_returns_return_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(80), nullable=False)
    return_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    refund_mode = db.Column(db.String(16), nullable=False)  # CASH, ONLINE, CREDIT

    # Amounts (all in cents)
    refund_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "SalesReturnItem",
        back_populates="sales_return",
        order_by="SalesReturnItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "return_date": to_utc_z(self.return_date),
            "bill_id": self.bill_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "refund_mode": self.refund_mode,
            "refund_cents": self.refund_cents,
            "tax_cents": self.tax_cents,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SalesReturnItem(db.Model):
    __tablename__ = "sales_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id", ondelete="CASCADE"), nullable=False, index=True)
    bill_item_id = db.Column(db.Integer, db.ForeignKey("bill_items.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sales_return = db.relationship("SalesReturn", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "bill_item_id": self.bill_item_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "tax_rate_bps": self.tax_rate_bps,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "tax_cents": self.tax_cents,
            "refund_cents": self.refund_cents,
        }
