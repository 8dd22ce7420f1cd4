# Overview: Pytest coverage for batch stock and its movement ledger.

from datetime import timedelta

import pytest

from medbill.extensions import db
from medbill.errors import InvalidRequest, InvalidTaxRate, InsufficientStock, StockNotFound, PersistenceFailure
from medbill.models import Batch, StockMovement, AuditLogEntry
from medbill.services import inventory_service
from medbill.time_utils import today

from conftest import reload, USER_ID


class TestMedicines:
    def test_tax_rate_stored_in_basis_points(self, make_medicine):
        medicine = make_medicine(tax_rate=12)

        assert medicine.tax_rate_bps == 1200
        assert medicine.hsn_code == "3004"

    def test_rate_outside_slabs_rejected(self, make_medicine):
        with pytest.raises(InvalidTaxRate) as exc:
            make_medicine(tax_rate=7)
        assert exc.value.kind == "InvalidTaxRate"


class TestBatches:
    def test_opening_stock_is_a_receive_movement(self, make_batch):
        batch = make_batch(quantity=100)

        movements = db.session.query(StockMovement).filter_by(batch_id=batch.id).all()
        assert batch.quantity == 100
        assert [(m.movement_type, m.quantity_delta) for m in movements] == [("RECEIVE", 100)]
        assert inventory_service.verify_stock_ledger(batch.id)

    def test_duplicate_batch_number_for_same_medicine_is_persistence_failure(self, make_batch):
        batch = make_batch()
        with pytest.raises(PersistenceFailure):
            inventory_service.create_batch(
                medicine_id=batch.medicine_id,
                batch_number=batch.batch_number,
                expiry_date=batch.expiry_date,
                selling_price_cents=500,
                quantity=1,
            )

    def test_negative_price_rejected(self, make_medicine):
        medicine = make_medicine()
        with pytest.raises(InvalidRequest):
            inventory_service.create_batch(
                medicine_id=medicine.id,
                batch_number="X1",
                expiry_date=today() + timedelta(days=30),
                selling_price_cents=-1,
                quantity=1,
            )

    def test_expiry_status(self, make_batch):
        on = today()
        assert make_batch(expiry_date=on).expiry_status(on) == "EXPIRED"
        assert make_batch(expiry_date=on + timedelta(days=10)).expiry_status(on) == "EXPIRING_SOON"
        assert make_batch(expiry_date=on + timedelta(days=90)).expiry_status(on) == "OK"

    def test_get_batch_for_sale_skips_inactive(self, make_batch):
        batch = make_batch()
        batch.is_active = False
        db.session.commit()

        with pytest.raises(StockNotFound):
            inventory_service.get_batch_for_sale(batch.id)
        db.session.rollback()


class TestStockDelta:
    def test_guard_refuses_to_go_negative(self, make_batch):
        batch = make_batch(quantity=5)

        with pytest.raises(InsufficientStock) as exc:
            inventory_service.apply_stock_delta(batch.id, -6, movement_type="SALE", user_id=USER_ID)
        db.session.rollback()

        assert exc.value.details["shortfall"] == 1
        assert reload(Batch, batch.id).quantity == 5
        assert inventory_service.verify_stock_ledger(batch.id)

    def test_unknown_batch(self, db_session):
        with pytest.raises(StockNotFound):
            inventory_service.apply_stock_delta(999, -1, movement_type="SALE")
        db.session.rollback()

    def test_loaded_instance_sees_new_quantity(self, make_batch):
        batch = make_batch(quantity=10)

        new_qty = inventory_service.apply_stock_delta(batch.id, -3, movement_type="SALE", mark_sold=True)
        db.session.commit()

        assert new_qty == 7
        assert batch.quantity == 7
        assert batch.last_sold_date == today()


class TestAdjustStock:
    def test_adjustment_is_recorded_and_audited(self, make_batch):
        batch = make_batch(quantity=10)

        adjusted = inventory_service.adjust_stock(batch.id, -2, user_id=USER_ID, note="Damaged strip")

        assert adjusted.quantity == 8
        assert inventory_service.verify_stock_ledger(batch.id)
        audit = db.session.query(AuditLogEntry).filter_by(entity_type="batch", entity_id=batch.id).one()
        assert audit.action == "ADJUST"
        assert audit.user_id == USER_ID

    def test_note_required(self, make_batch):
        batch = make_batch()
        with pytest.raises(InvalidRequest):
            inventory_service.adjust_stock(batch.id, 1, user_id=USER_ID, note="  ")
