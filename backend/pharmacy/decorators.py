# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .validation import MAX_ACTOR_ID_LENGTH

ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an actor id on the request.

    Identity is issued by an external collaborator; the id is opaque here and
    only used to stamp updated_by / cashier_id.

    Sets:
    - g.actor_id: the trimmed header value

    Returns 401 if the X-Actor-Id header is missing or blank,
    400 if it is longer than the stored column allows.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()

        if not actor_id:
            return jsonify({"error": "Actor identification required"}), 401

        if len(actor_id) > MAX_ACTOR_ID_LENGTH:
            return jsonify({"error": f"{ACTOR_HEADER} exceeds max length {MAX_ACTOR_ID_LENGTH}"}), 400

        g.actor_id = actor_id

        return f(*args, **kwargs)

    return decorated_function
