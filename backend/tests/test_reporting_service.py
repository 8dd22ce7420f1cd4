# Overview: Pytest coverage for the controlled-item register and return totals in reports.

from datetime import timedelta

import pytest

from medbill.errors import InvalidRequest
from medbill.services import billing_service, cancellation_service, reporting_service, return_service
from medbill.time_utils import today
from medbill.validation import BillRequest, BillItemRequest, PatientInfo

from conftest import USER_ID


PATIENT = PatientInfo(
    patient_name="Sita Devi",
    patient_age=54,
    patient_gender="F",
    doctor_name="Dr. Rao",
    prescription_number="RX-118",
    prescription_text="Alprazolam 0.25mg, 1 at night, 10 days",
)


def controlled_sale(batch_id: int, quantity: int) -> BillRequest:
    return BillRequest(
        items=(BillItemRequest(batch_id=batch_id, quantity=quantity),),
        payment_mode="CASH",
        patient_info=PATIENT,
    )


class TestControlledRegister:
    def test_records_joined_with_medicine_batch_and_bill(self, invoice_sequence, make_medicine, make_batch):
        medicine = make_medicine(name="Alprazolam 0.25", tax_rate=12, is_controlled=True)
        batch = make_batch(medicine, quantity=50)
        plain = make_batch(quantity=50)
        bill = billing_service.create_bill(
            BillRequest(
                items=(BillItemRequest(batch_id=batch.id, quantity=2), BillItemRequest(batch_id=plain.id, quantity=1)),
                payment_mode="CASH",
                patient_info=PATIENT,
            ),
            USER_ID,
        )

        report = reporting_service.controlled_register()

        assert report["total_records"] == 1
        assert report["total_quantity"] == 2
        record = report["records"][0]
        assert record["medicine_name"] == "Alprazolam 0.25"
        assert record["batch_number"] == batch.batch_number
        assert record["bill_number"] == bill.bill_number
        assert record["bill_status"] == "COMPLETED"
        assert record["patient_name"] == "Sita Devi"
        assert record["doctor_name"] == "Dr. Rao"
        assert record["prescription_number"] == "RX-118"

    def test_cancelled_bills_left_out_unless_asked(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=50, is_controlled=True)
        kept = billing_service.create_bill(controlled_sale(batch.id, 1), USER_ID)
        voided = billing_service.create_bill(controlled_sale(batch.id, 3), USER_ID)
        cancellation_service.cancel_bill(voided.id, USER_ID, "Wrong patient")

        default = reporting_service.controlled_register()
        everything = reporting_service.controlled_register(include_cancelled=True)

        assert [r["bill_number"] for r in default["records"]] == [kept.bill_number]
        assert default["total_quantity"] == 1
        # Newest first
        assert [(r["bill_number"], r["bill_status"]) for r in everything["records"]] == [
            (voided.bill_number, "CANCELLED"),
            (kept.bill_number, "COMPLETED"),
        ]

    def test_date_range(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=50, is_controlled=True)
        billing_service.create_bill(controlled_sale(batch.id, 1), USER_ID)

        later = today() + timedelta(days=2)
        assert reporting_service.controlled_register(later, later + timedelta(days=1))["total_records"] == 0

        with pytest.raises(InvalidRequest):
            reporting_service.controlled_register(later, today())


class TestReturnsInSummary:
    def test_refunds_reported_separately(self, invoice_sequence, make_batch):
        batch = make_batch(quantity=100, price_cents=1000, tax_rate=12)
        bill = billing_service.create_bill(
            BillRequest(items=(BillItemRequest(batch_id=batch.id, quantity=10),), payment_mode="CASH"),
            USER_ID,
        )
        return_service.create_return(bill.id, [(bill.items[0].id, 2)], USER_ID, "Damaged strip")

        summary = reporting_service.sales_summary()

        assert summary["net_sales_cents"] == 10000
        assert summary["return_count"] == 1
        assert summary["refund_cents"] == 2000
