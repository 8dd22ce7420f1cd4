# Overview: Flask API routes for customers and their credit ledger.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BillingError, InvalidRequest
from ..services import credit_service
from ..decorators import require_user


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _int_field(data: dict, key: str, default=None):
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequest(f"{key} must be an integer (cents)", details={"field": key})
    return value


@customers_bp.post("/")
@require_user
def create_customer_route():
    """Body: {name, phone?, email?, gstin?, address?, credit_limit_cents?}"""
    try:
        data = request.get_json(silent=True) or {}
        customer = credit_service.create_customer(
            name=data.get("name") or "",
            phone=data.get("phone"),
            email=data.get("email"),
            gstin=data.get("gstin"),
            address=data.get("address"),
            credit_limit_cents=_int_field(data, "credit_limit_cents", 0),
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@customers_bp.get("/<int:customer_id>")
@require_user
def get_customer_route(customer_id: int):
    try:
        customer = credit_service.get_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@customers_bp.get("/<int:customer_id>/ledger")
@require_user
def customer_ledger_route(customer_id: int):
    """Newest entries first. Query: limit (default 50)."""
    try:
        limit = request.args.get("limit", 50, type=int)
        entries = credit_service.customer_ledger(customer_id, limit=max(1, min(limit, 500)))
        return jsonify({
            "customer_id": customer_id,
            "balance_cents": credit_service.current_balance(customer_id),
            "entries": [e.to_dict() for e in entries],
        }), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@customers_bp.post("/<int:customer_id>/payments")
@require_user
def record_payment_route(customer_id: int):
    """Body: {amount_cents, payment_mode?, reference?, note?}"""
    try:
        data = request.get_json(silent=True) or {}
        entry = credit_service.record_payment(
            customer_id,
            _int_field(data, "amount_cents"),
            user_id=g.user_id,
            payment_mode=data.get("payment_mode") or "CASH",
            reference=data.get("reference"),
            note=data.get("note"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/deactivate")
@require_user
def deactivate_customer_route(customer_id: int):
    try:
        customer = credit_service.deactivate_customer(customer_id, user_id=g.user_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
