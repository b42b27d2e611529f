"""
MOC Studio
Reporting blueprint: windowed report, dashboard headline stats, risk matrix.

Endpoints:
    GET /api/v1/reports/summary?from=YYYY-MM-DD&to=YYYY-MM-DD
    GET /api/v1/reports/dashboard
    GET /api/v1/risk/assess?probability=&severity=
"""

from datetime import timedelta

from flask import Blueprint, jsonify, request

from mocstudio.blueprints import current_user_id, register_error_handlers
from mocstudio.services import reporting
from mocstudio.services.permission import get_profile
from mocstudio.services.risk_scoring import assess_risk, validate_risk_value
from mocstudio.utils.errors import E, api_error
from mocstudio.utils.helpers import parse_date, utc_today

reporting_bp = Blueprint("reporting", __name__, url_prefix="/api/v1")
register_error_handlers(reporting_bp)

# Default window when the caller gives none
_DEFAULT_WINDOW_DAYS = 180


@reporting_bp.route("/reports/summary", methods=["GET"])
def report_summary():
    get_profile(current_user_id())
    raw_from, raw_to = request.args.get("from"), request.args.get("to")
    date_to = parse_date(raw_to) if raw_to else utc_today()
    date_from = parse_date(raw_from) if raw_from else (date_to and date_to - timedelta(days=_DEFAULT_WINDOW_DAYS))
    if date_from is None or date_to is None:
        return api_error(E.VALIDATION_INVALID, "from/to must be dates (YYYY-MM-DD)")
    return jsonify(reporting.build_report(date_from, date_to))


@reporting_bp.route("/reports/dashboard", methods=["GET"])
def dashboard():
    get_profile(current_user_id())
    return jsonify(reporting.build_dashboard_stats())


@reporting_bp.route("/risk/assess", methods=["GET"])
def assess():
    """Score a probability/severity pair without touching a request."""
    probability = validate_risk_value("probability", request.args.get("probability"))
    severity = validate_risk_value("severity", request.args.get("severity"))
    return jsonify(assess_risk(probability, severity).to_dict())
