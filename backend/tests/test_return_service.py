# Overview: Pytest coverage for partial sales returns and their ledger effects.

"""
Sales returns.

Returned quantity per line is capped at sold minus already returned; stock
and credit move back symmetrically; a rejected return writes nothing.
"""

from decimal import Decimal

import pytest

from medbill.extensions import db
from medbill.errors import (
    AlreadyCancelled,
    BillHasReturns,
    BillNotFound,
    InvalidRequest,
    ReturnQuantityExceeded,
)
from medbill.models import AuditLogEntry, Batch, Bill, CreditLedgerEntry, Customer, SalesReturn, StockMovement
from medbill.services import billing_service, cancellation_service, credit_service, inventory_service, return_service
from medbill.validation import BillRequest, BillItemRequest, ReturnItemRequest

from conftest import reload, USER_ID


def sale(*lines, payment_mode="CASH", **kwargs) -> BillRequest:
    items = tuple(BillItemRequest(batch_id=batch_id, quantity=quantity) for batch_id, quantity in lines)
    return BillRequest(items=items, payment_mode=payment_mode, **kwargs)


class TestCreateReturn:
    def test_partial_return_restores_stock(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        bill = billing_service.create_bill(sale((batch.id, 10)), USER_ID)
        line = bill.items[0]

        sales_return = return_service.create_return(
            bill.id, [ReturnItemRequest(bill_item_id=line.id, quantity=3)], USER_ID, "Patient changed dose"
        )

        assert sales_return.return_number == f"SR-{bill.bill_number}-01"
        assert sales_return.refund_mode == "CASH"
        assert sales_return.refund_cents == 3000
        assert sales_return.tax_cents == sales_return.items[0].cgst_cents + sales_return.items[0].sgst_cents
        assert sales_return.tax_cents > 0
        assert reload(Batch, batch.id).quantity == 93
        assert inventory_service.verify_stock_ledger(batch.id)

        movement = db.session.query(StockMovement).filter_by(movement_type="SALE_RETURN").one()
        assert (movement.batch_id, movement.quantity_delta, movement.bill_id) == (batch.id, 3, bill.id)

        # The bill itself is untouched
        bill = reload(Bill, bill.id)
        assert bill.status == "COMPLETED"
        assert bill.final_amount_cents == 10000
        assert db.session.query(AuditLogEntry).filter_by(action="RETURN", entity_id=bill.id).count() == 1

    def test_over_return_rejected(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100)
        bill = billing_service.create_bill(sale((batch.id, 5)), USER_ID)
        line_id = bill.items[0].id

        with pytest.raises(ReturnQuantityExceeded) as exc:
            return_service.create_return(bill.id, [(line_id, 6)], USER_ID, "Too many")

        assert exc.value.details == {"bill_item_id": line_id, "requested": 6, "returnable": 5}
        assert db.session.query(SalesReturn).count() == 0
        assert reload(Batch, batch.id).quantity == 95

    def test_returns_accumulate_against_sold_quantity(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100)
        bill = billing_service.create_bill(sale((batch.id, 5)), USER_ID)
        line_id = bill.items[0].id

        return_service.create_return(bill.id, [(line_id, 3)], USER_ID, "First")
        with pytest.raises(ReturnQuantityExceeded) as exc:
            return_service.create_return(bill.id, [(line_id, 1), (line_id, 2)], USER_ID, "Second")

        assert exc.value.details["returnable"] == 2
        assert exc.value.details["requested"] == 3
        assert reload(Batch, batch.id).quantity == 98

        second = return_service.create_return(bill.id, [(line_id, 2)], USER_ID, "Rest")
        assert second.return_number.endswith("-02")
        assert return_service.returned_quantities(bill.id) == {line_id: 5}
        assert reload(Batch, batch.id).quantity == 100

    def test_refunds_add_up_to_the_bill(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        bill = billing_service.create_bill(
            sale((batch.id, 10), discount_type="FLAT", discount_value=Decimal("1000")), USER_ID
        )
        line_id = bill.items[0].id
        assert bill.final_amount_cents == 9000

        refunds = [
            return_service.create_return(bill.id, [(line_id, qty)], USER_ID, "Split return").refund_cents
            for qty in (3, 3, 4)
        ]

        assert refunds[0] == 2700
        assert sum(refunds) == 9000

    def test_credit_refund_is_symmetric(self, invoice_sequence, make_batch, make_customer):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        customer = make_customer(credit_limit_cents=100000)
        bill = billing_service.create_bill(
            sale((batch.id, 10), payment_mode="CREDIT", customer_id=customer.id), USER_ID
        )
        line_id = bill.items[0].id
        assert reload(Customer, customer.id).current_balance_cents == 10000

        return_service.create_return(bill.id, [(line_id, 4)], USER_ID, "Unopened", refund_mode="CREDIT")
        assert reload(Customer, customer.id).current_balance_cents == 6000

        return_service.create_return(bill.id, [(line_id, 6)], USER_ID, "Unopened", refund_mode="CREDIT")

        assert reload(Customer, customer.id).current_balance_cents == 0
        assert reload(Batch, batch.id).quantity == 100
        entries = (
            db.session.query(CreditLedgerEntry)
            .filter_by(bill_id=bill.id)
            .order_by(CreditLedgerEntry.id)
            .all()
        )
        assert [(e.entry_type, e.amount_cents) for e in entries] == [
            ("SALE", 10000), ("ADJUSTMENT", -4000), ("ADJUSTMENT", -6000),
        ]
        assert credit_service.verify_customer_balance(customer.id)
        assert inventory_service.verify_stock_ledger(batch.id)

    def test_cash_refund_leaves_credit_alone(self, invoice_sequence, make_batch, make_customer):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        customer = make_customer(credit_limit_cents=100000)
        bill = billing_service.create_bill(
            sale((batch.id, 2), payment_mode="CREDIT", customer_id=customer.id), USER_ID
        )

        return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "Cash back")

        assert reload(Customer, customer.id).current_balance_cents == 2000

    def test_credit_refund_needs_unrefunded_credit(self, invoice_sequence, make_batch, make_customer):
        batch = make_batch(quantity=100)
        customer = make_customer()
        bill = billing_service.create_bill(sale((batch.id, 2), customer_id=customer.id), USER_ID)

        with pytest.raises(InvalidRequest) as exc:
            return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "No credit", refund_mode="CREDIT")

        assert exc.value.details["refundable_credit_cents"] == 0
        assert db.session.query(SalesReturn).count() == 0
        assert reload(Batch, batch.id).quantity == 98

    def test_credit_refund_needs_a_customer(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100)
        bill = billing_service.create_bill(sale((batch.id, 2)), USER_ID)

        with pytest.raises(InvalidRequest):
            return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "Walk-in", refund_mode="CREDIT")
        assert reload(Batch, batch.id).quantity == 98

    def test_item_from_another_bill(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100)
        first = billing_service.create_bill(sale((batch.id, 1)), USER_ID)
        second = billing_service.create_bill(sale((batch.id, 1)), USER_ID)

        with pytest.raises(InvalidRequest) as exc:
            return_service.create_return(second.id, [(first.items[0].id, 1)], USER_ID, "Wrong bill")
        assert exc.value.details["bill_item_id"] == first.items[0].id

    def test_reason_required(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=10)
        bill = billing_service.create_bill(sale((batch.id, 1)), USER_ID)

        with pytest.raises(InvalidRequest):
            return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "  ")

    def test_unknown_bill(self, db_session):
        with pytest.raises(BillNotFound):
            return_service.create_return(999, [(1, 1)], USER_ID, "Missing")

    def test_cancelled_bill_rejects_returns(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=10)
        bill = billing_service.create_bill(sale((batch.id, 2)), USER_ID)
        cancellation_service.cancel_bill(bill.id, USER_ID, "Voided")

        with pytest.raises(AlreadyCancelled):
            return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "Late")
        assert reload(Batch, batch.id).quantity == 10


class TestCancelAfterReturn:
    def test_bill_with_returns_cannot_be_cancelled(self, invoice_sequence, make_batch, make_customer):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        customer = make_customer(credit_limit_cents=100000)
        bill = billing_service.create_bill(
            sale((batch.id, 4), payment_mode="CREDIT", customer_id=customer.id), USER_ID
        )
        return_service.create_return(bill.id, [(bill.items[0].id, 1)], USER_ID, "One back", refund_mode="CREDIT")

        with pytest.raises(BillHasReturns) as exc:
            cancellation_service.cancel_bill(bill.id, USER_ID, "Undo")

        assert exc.value.http_status == 409
        assert exc.value.details["return_count"] == 1
        assert reload(Bill, bill.id).status == "COMPLETED"
        assert reload(Batch, batch.id).quantity == 97
        assert reload(Customer, customer.id).current_balance_cents == 3000
