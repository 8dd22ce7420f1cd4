# Overview: Pytest coverage for invoice numbering.

from datetime import date

import pytest

from medbill.extensions import db
from medbill.errors import InvalidRequest, SequenceCorrupted
from medbill.models import InvoiceSequence
from medbill.services import sequence_service

from conftest import reload


class TestFiscalYear:
    def test_fiscal_year_starts_in_april(self):
        assert sequence_service.fiscal_year_for(date(2025, 3, 31)) == "2024-25"
        assert sequence_service.fiscal_year_for(date(2025, 4, 1)) == "2025-26"

    def test_century_rollover(self):
        assert sequence_service.fiscal_year_for(date(2099, 12, 1)) == "2099-00"
        assert sequence_service.fiscal_year_code("2099-00") == "9900"

    def test_format(self):
        assert sequence_service.fiscal_year_code("2024-25") == "2425"
        assert sequence_service.format_invoice_number("INV", "2024-25", 1) == "INV-242500001"

    def test_bad_fiscal_year_rejected(self):
        with pytest.raises(ValueError):
            sequence_service.fiscal_year_code("2024-26")


class TestNextInvoiceNumber:
    def test_numbers_are_consecutive(self, invoice_sequence):
        first = sequence_service.next_invoice_number()
        second = sequence_service.next_invoice_number()
        db.session.commit()

        assert first == "INV-242500001"
        assert second == "INV-242500002"
        assert reload(InvoiceSequence, 1).current_number == 2

    def test_rollback_returns_the_number(self, invoice_sequence):
        sequence_service.next_invoice_number()
        db.session.rollback()

        assert sequence_service.next_invoice_number() == "INV-242500001"
        db.session.commit()

    def test_missing_counter_is_fatal(self, db_session):
        with pytest.raises(SequenceCorrupted) as exc:
            sequence_service.next_invoice_number()
        assert exc.value.fatal is True
        assert exc.value.http_status == 500

    def test_unreadable_fiscal_year_is_fatal(self, invoice_sequence):
        invoice_sequence.fiscal_year = "garbage"
        db.session.commit()

        with pytest.raises(SequenceCorrupted):
            sequence_service.next_invoice_number()
        db.session.rollback()


class TestSequenceAdmin:
    def test_init_is_idempotent(self, invoice_sequence):
        again = sequence_service.init_invoice_sequence(prefix="XYZ", fiscal_year="2030-31")

        assert again.prefix == "INV"
        assert again.fiscal_year == "2024-25"
        assert db.session.query(InvoiceSequence).count() == 1

    def test_init_defaults_from_config(self, app, db_session):
        seq = sequence_service.init_invoice_sequence()

        assert seq.prefix == app.config["INVOICE_PREFIX"]
        assert seq.fiscal_year == sequence_service.fiscal_year_for(date.today())
        assert seq.current_number == 0

    def test_start_fiscal_year_resets_counter(self, invoice_sequence):
        sequence_service.next_invoice_number()
        db.session.commit()

        seq = sequence_service.start_fiscal_year("2025-26", prefix="MB")

        assert seq.current_number == 0
        assert sequence_service.next_invoice_number() == "MB-252600001"
        db.session.commit()

    def test_start_fiscal_year_only_moves_forward(self, invoice_sequence):
        with pytest.raises(InvalidRequest):
            sequence_service.start_fiscal_year("2024-25")
        with pytest.raises(InvalidRequest):
            sequence_service.start_fiscal_year("2023-24")

        assert reload(InvoiceSequence, 1).fiscal_year == "2024-25"
