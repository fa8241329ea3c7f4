# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/pharmacy/routes/medicines.py
"""
Medicine (stock ledger) routes.

Reads are open; writes require an X-Actor-Id header (see require_actor),
which is stamped into updated_by.

Payload fields: name, quantity, price (number or "1.50" string),
expiry_date ("YYYY-MM-DD" or null).
"""
from flask import Blueprint, Response, current_app, g, jsonify, request

from ..errors import PharmacyError
from ..extensions import feeds
from ..decorators import require_actor
from ..services import stock_service
from ..services.feed_service import open_event_stream


medicines_bp = Blueprint("medicines", __name__, url_prefix="/api/medicines")


@medicines_bp.get("")
def list_medicines_route():
    """
    List medicines ordered by name.

    Query params:
    - search: str (optional) - case-insensitive substring match on name
    """
    search = request.args.get("search")
    medicines = stock_service.list_medicines(search=search)
    return jsonify({"medicines": [m.to_dict() for m in medicines]}), 200


@medicines_bp.get("/<int:medicine_id>")
def get_medicine_route(medicine_id: int):
    try:
        medicine = stock_service.get_medicine(medicine_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"medicine": medicine.to_dict()}), 200


@medicines_bp.post("")
@require_actor
def create_medicine_route():
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        medicine_id = stock_service.create_medicine(payload, g.actor_id)
        medicine = stock_service.get_medicine(medicine_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create medicine")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"medicine": medicine.to_dict()}), 201


@medicines_bp.route("/<int:medicine_id>", methods=["PATCH", "PUT"])
@require_actor
def update_medicine_route(medicine_id: int):
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        medicine = stock_service.update_medicine(medicine_id, payload, g.actor_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update medicine")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"medicine": medicine.to_dict()}), 200


@medicines_bp.delete("/<int:medicine_id>")
@require_actor
def delete_medicine_route(medicine_id: int):
    """
    Hard-delete a medicine.

    The caller is expected to have confirmed the deletion with the user.
    """
    try:
        stock_service.delete_medicine(medicine_id, g.actor_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete medicine")
        return jsonify({"error": "Internal server error"}), 500

    return "", 204


@medicines_bp.get("/stream")
def stream_medicines_route():
    """
    Live feed of the ledger as Server-Sent Events.

    Every event carries the full snapshot ordered by name.
    """
    subscription, events = open_event_stream(
        feeds.medicines,
        lambda snapshot: {
            "version": snapshot.version,
            "medicines": [m.to_dict() for m in snapshot.items],
        },
        current_app.config["FEED_KEEPALIVE_SECONDS"],
    )
    response = Response(events, mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.unsubscribe)
    return response
