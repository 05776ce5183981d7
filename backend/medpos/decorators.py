# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


OWNER_HEADER = "X-Owner-Id"
IDEMPOTENCY_HEADER = "Idempotency-Key"


def require_owner(f):
    """
    Require the owner context forwarded by the marketplace auth layer.

    Sets the following Flask g attributes:
    - g.owner_id: The professional whose drawers the request operates on

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        owner_id = (request.headers.get(OWNER_HEADER) or "").strip()

        if not owner_id:
            return jsonify({"error": "Owner context required", "code": "UNAUTHORIZED"}), 401
        if len(owner_id) > 64:
            return jsonify({"error": "Invalid owner id", "code": "UNAUTHORIZED"}), 401

        g.owner_id = owner_id

        return f(*args, **kwargs)

    return decorated_function
