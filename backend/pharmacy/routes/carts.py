# Overview: Flask API routes for point-of-sale carts and checkout.

# backend/pharmacy/routes/carts.py
"""
Cart routes.

Carts live in server memory only and belong to the actor that opened them
(X-Actor-Id). Another actor's cart token answers 404.

Stock checks on cart mutations are advisory; checkout re-validates.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import PartialCommitError, PharmacyError
from ..decorators import require_actor
from ..services import sale_service
from ..services.cart_service import get_cart_registry
from ..services.journal_service import get_sale


carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _cart_response(token: str, cart, status: int = 200):
    return jsonify({"cart": {"token": token, **cart.to_dict()}}), status


@carts_bp.post("")
@require_actor
def open_cart_route():
    token, cart = get_cart_registry().open(g.actor_id)
    return _cart_response(token, cart, 201)


@carts_bp.delete("")
@require_actor
def end_session_route():
    """Discard every cart of the calling actor (session end)."""
    discarded = get_cart_registry().discard_owner(g.actor_id)
    return jsonify({"discarded": discarded}), 200


@carts_bp.get("/<token>")
@require_actor
def get_cart_route(token: str):
    try:
        cart = get_cart_registry().get(token, g.actor_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    return _cart_response(token, cart)


@carts_bp.delete("/<token>")
@require_actor
def clear_cart_route(token: str):
    registry = get_cart_registry()
    try:
        registry.get(token, g.actor_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    registry.discard(token)
    return "", 204


@carts_bp.post("/<token>/lines")
@require_actor
def add_line_route(token: str):
    """
    Add one unit of a medicine to the cart.

    Body: {"medicine_id": int}
    """
    data = request.get_json(silent=True) or {}
    medicine_id = data.get("medicine_id")
    if not isinstance(medicine_id, int) or isinstance(medicine_id, bool):
        return jsonify({"error": "medicine_id (integer) required"}), 400

    try:
        cart = get_cart_registry().get(token, g.actor_id)
        cart.add_line(medicine_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500

    return _cart_response(token, cart)


@carts_bp.put("/<token>/lines/<int:medicine_id>")
@require_actor
def set_line_quantity_route(token: str, medicine_id: int):
    """
    Set a line's quantity. Zero or less removes the line.

    Body: {"quantity": int}
    """
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        return jsonify({"error": "quantity required"}), 400

    try:
        cart = get_cart_registry().get(token, g.actor_id)
        cart.set_line_quantity(medicine_id, data["quantity"])
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart line")
        return jsonify({"error": "Internal server error"}), 500

    return _cart_response(token, cart)


@carts_bp.delete("/<token>/lines/<int:medicine_id>")
@require_actor
def remove_line_route(token: str, medicine_id: int):
    try:
        cart = get_cart_registry().get(token, g.actor_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    cart.remove_line(medicine_id)
    return _cart_response(token, cart)


@carts_bp.post("/<token>/checkout")
@require_actor
def checkout_route(token: str):
    """
    Commit the cart as a sale by the calling actor.

    - 201: sale recorded and all stock deducted; the cart is closed
    - 409: stock changed since the lines were added; cart unchanged
    - 500 with details.sale_id: sale recorded but some deductions failed
    """
    registry = get_cart_registry()
    try:
        cart = registry.get(token, g.actor_id)
        sale_id = sale_service.commit_sale(cart, g.actor_id)
    except PartialCommitError as e:
        registry.discard(token)
        current_app.logger.error("Partial commit on checkout: %s", e.details)
        return jsonify({**e.to_dict(), "partial": True}), e.status_code
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500

    registry.discard(token)
    return jsonify({"sale": get_sale(sale_id).to_dict()}), 201
