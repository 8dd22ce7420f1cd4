# Overview: Flask API routes for medicines and batches; stock intake and corrections.

"""
Inventory routes

Stock quantities only change through inventory_service.apply_stock_delta:
creating a batch records its opening stock, and manual corrections go
through /batches/<id>/adjust with a mandatory note.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BillingError, InvalidRequest
from ..services import inventory_service
from ..decorators import require_user
from medbill.time_utils import parse_iso_date, today


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _int_field(data: dict, key: str, *, required: bool = False, default=None):
    value = data.get(key, default)
    if value is None:
        if required:
            raise InvalidRequest(f"{key} is required", details={"field": key})
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequest(f"{key} must be an integer", details={"field": key})
    return value


def _batch_dict(batch) -> dict:
    return batch.to_dict(on=today(), warning_days=current_app.config.get("EXPIRY_WARNING_DAYS", 30))


@inventory_bp.post("/medicines")
@require_user
def create_medicine_route():
    """Body: {name, tax_rate, hsn_code?, generic_name?, manufacturer?, is_controlled?}"""
    try:
        data = request.get_json(silent=True) or {}
        tax_rate = data.get("tax_rate")
        if tax_rate is None:
            raise InvalidRequest("tax_rate is required", details={"field": "tax_rate"})
        medicine = inventory_service.create_medicine(
            name=data.get("name") or "",
            tax_rate_percent=tax_rate,
            hsn_code=data.get("hsn_code"),
            generic_name=data.get("generic_name"),
            manufacturer=data.get("manufacturer"),
            is_controlled=bool(data.get("is_controlled", False)),
        )
        return jsonify({"medicine": medicine.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.post("/batches")
@require_user
def create_batch_route():
    """
    Body: {medicine_id, batch_number, expiry_date (YYYY-MM-DD),
           selling_price_cents, quantity, pricing_mode?,
           purchase_price_cents?, mrp_cents?}
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            expiry_date = parse_iso_date(data.get("expiry_date"))
        except (TypeError, ValueError, AttributeError):
            raise InvalidRequest("expiry_date must be YYYY-MM-DD", details={"field": "expiry_date"})
        if expiry_date is None:
            raise InvalidRequest("expiry_date is required", details={"field": "expiry_date"})

        batch = inventory_service.create_batch(
            medicine_id=_int_field(data, "medicine_id", required=True),
            batch_number=data.get("batch_number") or "",
            expiry_date=expiry_date,
            selling_price_cents=_int_field(data, "selling_price_cents", required=True),
            quantity=_int_field(data, "quantity", default=0),
            pricing_mode=(data.get("pricing_mode") or "INCLUSIVE").upper(),
            purchase_price_cents=_int_field(data, "purchase_price_cents"),
            mrp_cents=_int_field(data, "mrp_cents"),
            user_id=g.user_id,
        )
        return jsonify({"batch": _batch_dict(batch)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/batches/<int:batch_id>")
@require_user
def get_batch_route(batch_id: int):
    batch = inventory_service.get_batch(batch_id)
    if not batch:
        return jsonify({"error": "Batch not found", "kind": "StockNotFound", "details": {"batch_id": batch_id}}), 404
    return jsonify({"batch": _batch_dict(batch)}), 200


@inventory_bp.post("/batches/<int:batch_id>/adjust")
@require_user
def adjust_batch_route(batch_id: int):
    """Body: {quantity_delta (signed, non-zero), note}"""
    try:
        data = request.get_json(silent=True) or {}
        batch = inventory_service.adjust_stock(
            batch_id,
            _int_field(data, "quantity_delta", required=True),
            user_id=g.user_id,
            note=data.get("note") or "",
        )
        return jsonify({"batch": _batch_dict(batch)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
