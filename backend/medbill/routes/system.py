# backend/medbill/routes/system.py
"""
System health endpoint.

Reports database reachability and whether invoice numbering is ready.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Bill, Batch
from ..services import sequence_service
from medbill.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        bill_count = db.session.query(Bill).count()
        batch_count = db.session.query(Batch).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"bills": bill_count, "batches": batch_count},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_invoice_sequence_health() -> dict:
    """Bills cannot be created until `flask system init` has run."""
    try:
        seq = sequence_service.peek_invoice_sequence()
    except SQLAlchemyError:
        current_app.logger.exception("Invoice sequence health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Database error"}

    if seq is None:
        return {"status": "degraded", "warning": "Invoice sequence not initialized"}
    return {"status": "healthy", "details": seq.to_dict()}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (numbering not initialised)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    sequence_health = (
        check_invoice_sequence_health()
        if database_health["status"] == "healthy"
        else {"status": "unhealthy", "error": "Database unavailable"}
    )

    all_checks = [database_health, sequence_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200  # still serves reads
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "invoice_sequence": sequence_health,
        },
    }, http_status
