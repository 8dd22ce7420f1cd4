from __future__ import annotations

from datetime import date, timedelta

from ..extensions import db
from medbill.time_utils import to_utc_z, to_iso_date


PRICING_INCLUSIVE = "INCLUSIVE"
PRICING_EXCLUSIVE = "EXCLUSIVE"
PRICING_MODES = (PRICING_INCLUSIVE, PRICING_EXCLUSIVE)


class Medicine(db.Model):
    """
    Product master data.

    Tax rate and the controlled-item flag live on the product; every batch
    of the product inherits them. Bills copy both onto their lines at sale time.
    """
    __tablename__ = "medicines"
    __table_args__ = (
        db.Index("ix_medicines_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    manufacturer = db.Column(db.String(255), nullable=True)
    hsn_code = db.Column(db.String(16), nullable=False, default="3004")

    # 1200 = 12%
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    # Scheduled drugs: patient and prescriber details are recorded on sale
    is_controlled = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "generic_name": self.generic_name,
            "manufacturer": self.manufacturer,
            "hsn_code": self.hsn_code,
            "tax_rate_bps": self.tax_rate_bps,
            "is_controlled": self.is_controlled,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Batch(db.Model):
    """
    A priced, dated lot of one medicine.

    quantity is in the smallest sellable unit and is only ever changed by
    inventory_service.apply_stock_delta, which records a StockMovement for
    every change.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("medicine_id", "batch_number", name="uq_batches_medicine_batch_number"),
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        db.Index("ix_batches_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)

    purchase_price_cents = db.Column(db.Integer, nullable=True)
    mrp_cents = db.Column(db.Integer, nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    pricing_mode = db.Column(db.String(16), nullable=False, default=PRICING_INCLUSIVE)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    last_sold_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    medicine = db.relationship("Medicine", backref=db.backref("batches", lazy=True))

    @property
    def tax_rate_bps(self) -> int:
        return self.medicine.tax_rate_bps

    @property
    def is_controlled(self) -> bool:
        return bool(self.medicine.is_controlled)

    def is_expired(self, on: date) -> bool:
        # A batch cannot be sold on its expiry date
        return self.expiry_date <= on

    def expiry_status(self, on: date, warning_days: int = 30) -> str:
        if self.is_expired(on):
            return "EXPIRED"
        if self.expiry_date <= on + timedelta(days=warning_days):
            return "EXPIRING_SOON"
        return "OK"

    def to_dict(self, on: date | None = None, warning_days: int = 30) -> dict:
        data = {
            "id": self.id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine.name if self.medicine else None,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "purchase_price_cents": self.purchase_price_cents,
            "mrp_cents": self.mrp_cents,
            "selling_price_cents": self.selling_price_cents,
            "pricing_mode": self.pricing_mode,
            "tax_rate_bps": self.tax_rate_bps if self.medicine else None,
            "is_controlled": self.is_controlled if self.medicine else None,
            "quantity": self.quantity,
            "last_sold_date": to_iso_date(self.last_sold_date),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if on is not None:
            data["expiry_status"] = self.expiry_status(on, warning_days)
        return data


class StockMovement(db.Model):
    """
    Append-only record of one signed quantity change on a batch.

    For every batch: quantity == SUM(quantity_delta).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_batch_created", "batch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)

    # RECEIVE, SALE, SALE_CANCEL, SALE_RETURN, ADJUST
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "bill_id": self.bill_id,
            "user_id": self.user_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
