# Overview: Pytest coverage for the flask CLI groups.

from medbill.extensions import db
from medbill.models import Customer, InvoiceSequence

from conftest import reload


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--prefix", "MB", "--fiscal-year", "2025-26"])
    second = runner.invoke(args=["system", "init", "--prefix", "XX"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    seq = reload(InvoiceSequence, 1)
    assert (seq.prefix, seq.fiscal_year) == ("MB", "2025-26")
    assert "ignored" in second.output


def test_sequence_show_and_start_year(app, invoice_sequence):
    runner = app.test_cli_runner()

    shown = runner.invoke(args=["sequence", "show"])
    moved = runner.invoke(args=["sequence", "start-year", "2025-26"])
    backwards = runner.invoke(args=["sequence", "start-year", "2020-21"])

    assert "2024-25" in shown.output
    assert moved.exit_code == 0, moved.output
    assert backwards.exit_code != 0
    assert reload(InvoiceSequence, 1).fiscal_year == "2025-26"


def test_ledger_verify_flags_divergence(app, make_customer, make_batch):
    runner = app.test_cli_runner()
    customer = make_customer(balance_cents=1000)
    make_batch(quantity=5)

    clean = runner.invoke(args=["ledger", "verify"])

    customer = reload(Customer, customer.id)
    customer.current_balance_cents = 999
    db.session.commit()
    dirty = runner.invoke(args=["ledger", "verify"])

    assert clean.exit_code == 0, clean.output
    assert dirty.exit_code == 1
    assert f"Customer {customer.id}" in dirty.output
