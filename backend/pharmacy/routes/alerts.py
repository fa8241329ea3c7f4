# Overview: Flask API route for low-stock and expiring-soon alerts.

from flask import Blueprint, jsonify, request

from ..services.alert_service import current_alerts
from ..time_utils import parse_iso_date


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.get("")
def get_alerts_route():
    """
    Current alerts evaluated against today's UTC date.

    Query params:
    - as_of: YYYY-MM-DD (optional) - evaluate against another day
    """
    try:
        today = parse_iso_date(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "as_of must be YYYY-MM-DD"}), 400

    report = current_alerts(today)
    return jsonify(report.to_dict()), 200
