# Overview: Flask API routes for drawers and shift opening; parses input and returns JSON responses.

# backend/medpos/routes/drawers.py
"""
Drawer API Routes

DESIGN:
- Drawers are scoped to the owner in X-Owner-Id
- Listing a drawer always reports its currently open session (queried live)
- Opening a shift is a drawer-level action; closing is a session-level one
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import drawer_service, shift_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_owner


drawers_bp = Blueprint("drawers", __name__, url_prefix="/api/drawers")


@drawers_bp.post("/")
@drawers_bp.post("")
@require_owner
def create_drawer_route():
    """
    Create a new cash drawer.

    Request body:
    {
        "name": "Reception",
        "code": "FRONT"  (optional, generated from the name)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        drawer = drawer_service.create_drawer(
            owner_id=g.owner_id,
            name=data.get("name"),
            code=data.get("code"),
        )

        return jsonify({"drawer": drawer.to_dict()}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create drawer")
        return jsonify({"error": "Internal server error"}), 500


@drawers_bp.get("/")
@drawers_bp.get("")
@require_owner
def list_drawers_route():
    """List the owner's drawers, each with its current session (or null)."""
    return jsonify({
        "drawers": drawer_service.list_drawers(g.owner_id)
    }), 200


@drawers_bp.post("/<int:drawer_id>/sessions")
@require_owner
def start_session_route(drawer_id: int):
    """
    Open a new shift on a drawer.

    Request body:
    {
        "opening_balance_cents": 10000,  (optional, defaults to last counted cash)
        "notes": "Morning shift"  (optional)
    }

    Returns 409 if the drawer already has an open session.
    """
    try:
        data = request.get_json(silent=True) or {}

        session = shift_service.start_shift(
            drawer_id,
            opening_balance_cents=data.get("opening_balance_cents"),
            notes=data.get("notes"),
            owner_id=g.owner_id,
        )

        return jsonify({"session": session.to_dict()}), 201

    except (ValidationError, NotFoundError, ConflictError) as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to start session")
        return jsonify({"error": "Internal server error"}), 500
