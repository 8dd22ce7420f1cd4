from flask import Blueprint, jsonify, request

from ..decorators import require_user
from ..errors import BillingError, InvalidRequest
from ..services import reporting_service
from medbill.time_utils import parse_iso_date


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_args():
    try:
        return parse_iso_date(request.args.get("start_date")), parse_iso_date(request.args.get("end_date"))
    except ValueError:
        raise InvalidRequest("start_date and end_date must be YYYY-MM-DD")


@reports_bp.get("/sales-summary")
@require_user
def sales_summary_report():
    try:
        start_date, end_date = _range_args()
        report = reporting_service.sales_summary(start_date, end_date)
        report["payment_modes"] = reporting_service.payment_mode_breakdown(start_date, end_date)
        return jsonify(report), 200
    except BillingError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/tax-summary")
@require_user
def tax_summary_report():
    try:
        start_date, end_date = _range_args()
        return jsonify(reporting_service.tax_summary(start_date, end_date)), 200
    except BillingError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/controlled-register")
@require_user
def controlled_register_report():
    """Query: start_date?, end_date?, include_cancelled? (true/false)"""
    try:
        start_date, end_date = _range_args()
        include_cancelled = request.args.get("include_cancelled", "false").lower() in ("1", "true", "yes")
        report = reporting_service.controlled_register(start_date, end_date, include_cancelled=include_cancelled)
        return jsonify(report), 200
    except BillingError as exc:
        return jsonify(exc.to_dict()), exc.http_status
