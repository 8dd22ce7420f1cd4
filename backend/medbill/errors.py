# Overview: Billing error taxonomy shared by services and routes.

"""
Every failure the billing core can report, with structured details.

Errors are raised by services and returned to the caller untouched; routes
map them to HTTP status codes. `kind` is the stable machine-readable code.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for billing failures."""

    kind = "BillingError"
    http_status = 400
    fatal = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class InvalidRequest(BillingError):
    """Malformed or out-of-range input."""
    kind = "InvalidRequest"


class InvalidTaxRate(InvalidRequest):
    kind = "InvalidTaxRate"


class StockNotFound(BillingError):
    kind = "StockNotFound"
    http_status = 404

    def __init__(self, batch_id: int):
        super().__init__(f"Batch not found: {batch_id}", details={"batch_id": batch_id})


class InsufficientStock(BillingError):
    kind = "InsufficientStock"

    def __init__(self, batch_id: int, requested: int, available: int, name: str | None = None):
        shortfall = requested - available
        label = name or f"batch {batch_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available} (short by {shortfall})",
            details={
                "batch_id": batch_id,
                "requested": requested,
                "available": available,
                "shortfall": shortfall,
            },
        )
        self.shortfall = shortfall


class ExpiredStock(BillingError):
    kind = "ExpiredStock"

    def __init__(self, batch_id: int, expiry_date: str, name: str | None = None):
        label = name or f"batch {batch_id}"
        super().__init__(
            f"Cannot sell expired stock: {label} expired on {expiry_date}",
            details={"batch_id": batch_id, "expiry_date": expiry_date},
        )


class InvalidPaymentSplit(BillingError):
    kind = "InvalidPaymentSplit"


class CustomerNotFound(BillingError):
    kind = "CustomerNotFound"
    http_status = 404

    def __init__(self, customer_id: int):
        super().__init__(f"Customer not found: {customer_id}", details={"customer_id": customer_id})


class CustomerRequiredForCredit(BillingError):
    kind = "CustomerRequiredForCredit"

    def __init__(self, credit_amount_cents: int):
        super().__init__(
            "A customer is required when any amount is sold on credit",
            details={"credit_amount_cents": credit_amount_cents},
        )


class CreditLimitExceeded(BillingError):
    kind = "CreditLimitExceeded"

    def __init__(self, customer_id: int, credit_limit_cents: int, current_balance_cents: int, credit_amount_cents: int):
        would_be = current_balance_cents + credit_amount_cents
        super().__init__(
            f"Credit limit exceeded for customer {customer_id}: "
            f"limit {credit_limit_cents}, balance would be {would_be} (cents)",
            details={
                "customer_id": customer_id,
                "credit_limit_cents": credit_limit_cents,
                "current_balance_cents": current_balance_cents,
                "credit_amount_cents": credit_amount_cents,
                "would_be_balance_cents": would_be,
            },
        )


class PatientInfoRequired(BillingError):
    kind = "PatientInfoRequired"

    def __init__(self, missing: list[str], batch_ids: list[int]):
        super().__init__(
            "Patient and prescription details are required for controlled items: missing "
            + ", ".join(missing),
            details={"missing": missing, "batch_ids": batch_ids},
        )


class SequenceCorrupted(BillingError):
    """The invoice counter is missing or unreadable. Not user-correctable."""
    kind = "SequenceCorrupted"
    http_status = 500
    fatal = True


class BillNotFound(BillingError):
    kind = "BillNotFound"
    http_status = 404

    def __init__(self, bill_ref):
        super().__init__(f"Bill not found: {bill_ref}", details={"bill": bill_ref})


class AlreadyCancelled(BillingError):
    kind = "AlreadyCancelled"
    http_status = 409

    def __init__(self, bill_id: int, bill_number: str):
        super().__init__(
            f"Bill {bill_number} is already cancelled",
            details={"bill_id": bill_id, "bill_number": bill_number},
        )


class BillHasReturns(BillingError):
    """Items were already returned; the bill can no longer be cancelled."""
    kind = "BillHasReturns"
    http_status = 409

    def __init__(self, bill_id: int, bill_number: str, return_count: int):
        super().__init__(
            f"Bill {bill_number} has {return_count} return(s) and cannot be cancelled",
            details={"bill_id": bill_id, "bill_number": bill_number, "return_count": return_count},
        )


class ReturnQuantityExceeded(BillingError):
    kind = "ReturnQuantityExceeded"

    def __init__(self, bill_item_id: int, requested: int, returnable: int):
        super().__init__(
            f"Cannot return {requested} of bill item {bill_item_id}: only {returnable} returnable",
            details={"bill_item_id": bill_item_id, "requested": requested, "returnable": returnable},
        )


class PersistenceFailure(BillingError):
    """Storage error during the write phase; everything was rolled back."""
    kind = "PersistenceFailure"
    http_status = 500
    fatal = True
