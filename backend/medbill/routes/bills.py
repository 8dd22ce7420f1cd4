# Overview: Flask API routes for bills; create, preview, look up, list and cancel.

"""
Bill API routes

All routes need the X-User-Id header (see decorators.require_user).
Errors come back as {"error", "kind", "details"} with the status of the
BillingError subclass.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BillingError, InvalidRequest
from ..models.sales import PAYMENT_MODES, BILL_COMPLETED, BILL_CANCELLED
from ..services import billing_service, cancellation_service, bill_queries, return_service
from ..validation import parse_bill_request, parse_return_request
from ..decorators import require_user
from medbill.time_utils import parse_iso_date


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


def _date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise InvalidRequest(f"{name} must be YYYY-MM-DD", details={"field": name})


@bills_bp.post("/")
@require_user
def create_bill_route():
    """
    Finalize a sale.

    Body: {items: [{batch_id, quantity, discount_type?, discount_value?}],
           payment_mode, customer_id?, customer_name?, doctor_name?,
           discount_type?, discount_value?, cash_amount_cents?,
           online_amount_cents?, notes?, patient_info?}
    """
    try:
        bill_request = parse_bill_request(request.get_json(silent=True))
        bill = billing_service.create_bill(bill_request, g.user_id)
        return jsonify({"bill": bill.to_dict(include_items=True)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/preview")
@require_user
def preview_bill_route():
    """Totals and tax breakdown for a proposed sale; writes nothing."""
    try:
        bill_request = parse_bill_request(request.get_json(silent=True))
        return jsonify({"preview": billing_service.preview_bill(bill_request)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to preview bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/")
@require_user
def list_bills_route():
    """
    Query parameters: start_date, end_date (YYYY-MM-DD, inclusive),
    customer_id, payment_mode, status, limit (default 50), offset.
    """
    try:
        payment_mode = (request.args.get("payment_mode") or "").upper() or None
        if payment_mode and payment_mode not in PAYMENT_MODES:
            raise InvalidRequest(f"payment_mode must be one of {', '.join(PAYMENT_MODES)}")
        status = (request.args.get("status") or "").upper() or None
        if status and status not in (BILL_COMPLETED, BILL_CANCELLED):
            raise InvalidRequest("status must be COMPLETED or CANCELLED")

        limit = request.args.get("limit", bill_queries.DEFAULT_LIMIT, type=int)
        offset = request.args.get("offset", 0, type=int)
        bills, total = bill_queries.list_bills(
            start_date=_date_arg("start_date"),
            end_date=_date_arg("end_date"),
            customer_id=request.args.get("customer_id", type=int),
            payment_mode=payment_mode,
            status=status,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [b.to_dict() for b in bills],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@bills_bp.get("/<int:bill_id>")
@require_user
def get_bill_route(bill_id: int):
    bill = bill_queries.get_bill(bill_id)
    if not bill:
        return jsonify({"error": "Bill not found", "kind": "BillNotFound", "details": {"bill": bill_id}}), 404
    return jsonify({"bill": bill.to_dict(include_items=True)}), 200


@bills_bp.get("/number/<bill_number>")
@require_user
def get_bill_by_number_route(bill_number: str):
    bill = bill_queries.get_bill_by_number(bill_number)
    if not bill:
        return jsonify({"error": "Bill not found", "kind": "BillNotFound", "details": {"bill": bill_number}}), 404
    return jsonify({"bill": bill.to_dict(include_items=True)}), 200


@bills_bp.post("/<int:bill_id>/cancel")
@require_user
def cancel_bill_route(bill_id: int):
    """Body: {reason}"""
    try:
        data = request.get_json(silent=True) or {}
        bill = cancellation_service.cancel_bill(bill_id, g.user_id, data.get("reason") or "")
        return jsonify({"bill": bill.to_dict(include_items=True)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/returns")
@require_user
def create_return_route(bill_id: int):
    """Body: {items: [{bill_item_id, quantity}], reason, refund_mode? (CASH, ONLINE, CREDIT)}"""
    try:
        parsed = parse_return_request(request.get_json(silent=True))
        sales_return = return_service.create_return(
            bill_id,
            parsed.items,
            g.user_id,
            parsed.reason,
            parsed.refund_mode,
        )
        return jsonify({"return": sales_return.to_dict(include_items=True)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record sales return")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/returns")
@require_user
def list_returns_route(bill_id: int):
    if not bill_queries.get_bill(bill_id):
        return jsonify({"error": "Bill not found", "kind": "BillNotFound", "details": {"bill": bill_id}}), 404
    returns = return_service.list_returns(bill_id)
    return jsonify({
        "bill_id": bill_id,
        "returns": [r.to_dict(include_items=True) for r in returns],
        "returned_quantities": {str(k): v for k, v in return_service.returned_quantities(bill_id).items()},
    }), 200
