# Overview: Flask API routes for drawer sessions and sale commits; parses input and returns JSON responses.

# backend/medpos/routes/sessions.py
"""
Session API Routes

WHY: A till works against one open session at a time. Every sale is
committed to an explicit session id; closing the session freezes the
cash count.

DESIGN:
- Session ids are always passed explicitly (no "current session" state)
- Sale commits accept an Idempotency-Key header (or body field) so a till
  can retry safely after a timeout
- A replayed commit answers 200 with the original sale; a new one 201
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import payment_service, reconciliation_service, shift_service
from ..services.cart import Cart
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import IDEMPOTENCY_HEADER, require_owner


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


@sessions_bp.get("/")
@sessions_bp.get("")
@require_owner
def list_sessions_route():
    """
    List sessions for the owner's drawers, newest first.

    Query params:
    - drawer_id: int (optional)
    - active_only: bool (optional) - only open sessions
    - limit: int (optional, default SESSION_LIST_LIMIT)
    """
    drawer_id = request.args.get("drawer_id", type=int)
    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        return jsonify({"error": "limit must be a positive integer", "code": "VALIDATION_ERROR"}), 400

    sessions = shift_service.list_sessions(
        g.owner_id,
        drawer_id=drawer_id,
        active_only=_flag(request.args.get("active_only")),
        limit=limit,
    )

    return jsonify({
        "sessions": [s.to_dict() for s in sessions],
        "count": len(sessions),
    }), 200


@sessions_bp.post("/<int:session_id>/close")
@require_owner
def close_session_route(session_id: int):
    """
    Close a session with the counted cash.

    IMMUTABLE: Once closed, session cannot be modified.

    Request body:
    {
        "counted_cash_cents": 115000,
        "notes": "Short one bill"  (optional)
    }

    Returns the closed session and its reconciliation report.
    """
    try:
        data = request.get_json(silent=True) or {}

        session, report = shift_service.close_shift(
            session_id,
            data.get("counted_cash_cents"),
            notes=data.get("notes"),
            owner_id=g.owner_id,
        )

        return jsonify({"session": session.to_dict(), "report": report}), 200

    except (ValidationError, NotFoundError, ConflictError) as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/<int:session_id>/report")
@require_owner
def session_report_route(session_id: int):
    """Shift report re-derived from the committed sales of the session."""
    try:
        session = shift_service.get_session(session_id, owner_id=g.owner_id)
        return jsonify({"report": reconciliation_service.build_report(session)}), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), e.status_code


@sessions_bp.post("/<int:session_id>/sales")
@require_owner
def commit_sale_route(session_id: int):
    """
    Commit a sale on an open session.

    Headers:
    - Idempotency-Key: client token (optional, also accepted as body field)

    Request body:
    {
        "lines": [
            {"kind": "catalog", "service_ref": "SVC-1", "description": "Consultation",
             "quantity": 1, "unit_price_cents": 100000, "insurance_flag": true,
             "reimbursement_rate": 80},
            {"kind": "freeform", "description": "Bandage", "quantity": 2,
             "unit_price_cents": 500, "discount_percent": "10"}
        ],
        "cash_cents": 20000,
        "card_cents": 0,
        "customer_ref": "PAT-42",  (optional)
        "appointment_id": "APT-7"  (optional)
    }

    Returns:
    - 201 with the new sale
    - 200 with the original sale when the idempotency key was already used
    - 409 when the session is closed
    - 422 with shortfall_cents when payment is insufficient
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "JSON body required", "code": "VALIDATION_ERROR"}), 400

        cart = Cart.from_payload(
            data.get("lines"),
            customer_ref=data.get("customer_ref"),
            appointment_id=data.get("appointment_id"),
        )

        result = payment_service.commit_sale(
            session_id,
            cart,
            cash_cents=data.get("cash_cents", 0),
            card_cents=data.get("card_cents", 0),
            idempotency_key=request.headers.get(IDEMPOTENCY_HEADER) or data.get("idempotency_key"),
            owner_id=g.owner_id,
        )

        return jsonify({
            "sale": result.sale.to_dict(),
            "replayed": result.replayed,
        }), 200 if result.replayed else 201

    except (ValidationError, NotFoundError, ConflictError) as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/<int:session_id>/sales")
@require_owner
def list_session_sales_route(session_id: int):
    """
    List a session's sales in sale_number order.

    Query params:
    - page: int (optional, default 1)
    - per_page: int (optional, default SALES_PAGE_SIZE)
    """
    try:
        shift_service.get_session(session_id, owner_id=g.owner_id)

        result = payment_service.list_sales(
            session_id,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), e.status_code
