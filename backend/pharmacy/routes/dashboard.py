# Overview: Flask API route for the overview dashboard figures.

from flask import Blueprint, jsonify

from ..services.dashboard_service import get_overview


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("")
def get_dashboard_route():
    return jsonify({"overview": get_overview()}), 200
