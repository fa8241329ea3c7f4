# Overview: Flask API routes for the sales journal and unfinished-commit recovery.

# backend/pharmacy/routes/sales.py
"""
Sales journal routes.

The journal is append-only: there are no update or delete endpoints.
Sales are created through cart checkout (see routes/carts.py).
"""
from flask import Blueprint, Response, current_app, g, jsonify, request

from ..errors import PartialCommitError, PharmacyError
from ..extensions import feeds
from ..decorators import require_actor
from ..services import journal_service, sale_service
from ..services.feed_service import open_event_stream


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
def list_sales_route():
    """
    List sales newest-first.

    Query params:
    - limit: int (optional, >= 1)
    """
    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        return jsonify({"error": "limit must be >= 1"}), 400

    sales = journal_service.list_sales(limit=limit)
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Sale with its line items and stock deduction log."""
    try:
        sale = journal_service.get_sale(sale_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code

    deductions = journal_service.list_deductions(sale_id)
    return jsonify({
        "sale": sale.to_dict(),
        "deductions": [d.to_dict() for d in deductions],
    }), 200


@sales_bp.get("/unfinished")
def list_unfinished_route():
    """Sales whose stock deductions are still PENDING or have FAILED."""
    return jsonify({"unfinished": sale_service.list_unfinished_commits()}), 200


@sales_bp.post("/<int:sale_id>/resume")
@require_actor
def resume_sale_route(sale_id: int):
    """
    Apply deductions left PENDING by an interrupted checkout.

    Returns the deduction rows and how many this call applied; 500 with the
    failed and still-pending rows when any deduction cannot be applied.
    """
    try:
        result = sale_service.resume_commit(sale_id, g.actor_id)
    except PartialCommitError as e:
        return jsonify({**e.to_dict(), "partial": True}), e.status_code
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resume sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 200


@sales_bp.get("/stream")
def stream_sales_route():
    """Live feed of the journal (newest-first) as Server-Sent Events."""
    subscription, events = open_event_stream(
        feeds.sales,
        lambda snapshot: {
            "version": snapshot.version,
            "sales": [s.to_dict() for s in snapshot.items],
        },
        current_app.config["FEED_KEEPALIVE_SECONDS"],
    )
    response = Response(events, mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.unsubscribe)
    return response
