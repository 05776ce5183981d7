# Overview: Sale committer; settles a cart against an open drawer session in one transaction.

"""
Payment Processing Service

WHY: A sale is only real once its lines, its payment split and its place in
the drawer session are written together. Half-written sales would make the
end-of-shift cash count unexplainable.

DESIGN PRINCIPLES:
- One transaction per sale: sale + line items + payment split, or nothing
- Session status is re-checked under a row lock at commit time
- Change is paid out of cash only, so change <= cash always holds
- Idempotency keys make retries safe: a replay returns the original sale
- Committed sales are immutable (no update path exists)
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Drawer, DrawerSession, PaymentSplit, Sale, SaleLineItem
from ..signals import sale_committed
from ..validation import (
    ConflictError,
    InsufficientPaymentError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    optional_text,
)
from .cart import Cart
from .concurrency import lock_for_update, run_with_retry
from .settlement_service import compute_totals


@dataclass(frozen=True)
class CommitResult:
    sale: Sale
    replayed: bool = False


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def fingerprint(payload: dict) -> str:
    """sha256 of the canonical JSON form of a commit request."""
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _request_payload(session_id, cart: Cart, cash_cents: int, card_cents: int, customer_ref, appointment_id) -> dict:
    return {
        "session_id": session_id,
        "lines": cart.to_payload(),
        "customer_ref": customer_ref,
        "appointment_id": appointment_id,
        "cash_cents": cash_cents,
        "card_cents": card_cents,
    }


def find_by_idempotency_key(key: str, owner_id: str | None = None) -> Sale | None:
    """Sale committed with this key; with owner_id, only among that owner's drawers."""
    if not key:
        return None
    query = db.session.query(Sale).filter(Sale.idempotency_key == key)
    if owner_id is not None:
        query = query.join(DrawerSession, Sale.session_id == DrawerSession.id).join(
            Drawer, DrawerSession.drawer_id == Drawer.id
        ).filter(Drawer.owner_id == owner_id)
    return query.first()


def _replay(existing: Sale, request_hash: str) -> CommitResult:
    if existing.request_fingerprint and existing.request_fingerprint != request_hash:
        raise ConflictError(
            f"Idempotency key '{existing.idempotency_key}' was already used for a different sale"
        )
    return CommitResult(sale=existing, replayed=True)


# =============================================================================
# COMMIT
# =============================================================================

def commit_sale(
    session_id: int,
    cart: Cart,
    cash_cents: int = 0,
    card_cents: int = 0,
    customer_ref: str | None = None,
    appointment_id: str | None = None,
    idempotency_key: str | None = None,
    *,
    owner_id: str | None = None,
) -> CommitResult:
    """
    Commit a cart as a sale on an open drawer session.

    Args:
        session_id: Open session the sale belongs to
        cart: Cart to settle (must not be empty)
        cash_cents: Cash handed over by the patient
        card_cents: Card amount (never more than the patient portion)
        customer_ref: Optional patient/customer reference (defaults to the cart's)
        appointment_id: Optional appointment link (defaults to the cart's)
        idempotency_key: Client token; a second commit with the same key
            returns the first sale instead of creating another
        owner_id: When given, the session's drawer must belong to this owner

    Returns:
        CommitResult(sale, replayed)

    Raises:
        ValidationError: empty cart, bad amounts, card above amount due
        InsufficientPaymentError: cash + card below the patient portion
        ConflictError: session closed, or key reused with a different payload
        NotFoundError: unknown session
    """
    if not isinstance(cart, Cart):
        raise ValidationError("cart is required")

    cash = coerce_cents(cash_cents, "cash_cents")
    card = coerce_cents(card_cents, "card_cents")
    key = optional_text(idempotency_key, "idempotency_key", max_length=64)
    customer_ref = optional_text(customer_ref, "customer_ref", max_length=128) or cart.customer_ref
    appointment_id = optional_text(appointment_id, "appointment_id", max_length=64) or cart.appointment_id

    request_hash = fingerprint(_request_payload(session_id, cart, cash, card, customer_ref, appointment_id))

    totals = compute_totals(cart)
    due = totals.patient_due_cents

    if card > due:
        raise ValidationError("card amount cannot exceed amount due")
    tendered = cash + card
    if tendered < due:
        raise InsufficientPaymentError(due, tendered)
    change = tendered - due

    def _op() -> CommitResult:
        if key:
            existing = find_by_idempotency_key(key, owner_id)
            if existing:
                return _replay(existing, request_hash)

        session = lock_for_update(db.session.query(DrawerSession).filter_by(id=session_id)).first()
        if not session or (owner_id is not None and session.drawer.owner_id != owner_id):
            raise NotFoundError("Session not found")
        if not session.is_open:
            raise ConflictError(f"session closed: {session.session_number} no longer accepts sales")

        # Bumping the counter also bumps version_id, so a racing close retries
        session.sale_count = session.sale_count + 1

        sale = Sale(
            session_id=session.id,
            sale_number=session.sale_count,
            customer_ref=customer_ref,
            appointment_id=appointment_id,
            idempotency_key=key,
            request_fingerprint=request_hash,
        )
        db.session.add(sale)

        for line_no, (line, settled) in enumerate(zip(cart, totals.lines), start=1):
            db.session.add(SaleLineItem(
                sale=sale,
                line_no=line_no,
                kind=line.kind,
                service_ref=getattr(line, "service_ref", None),
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                discount_amount_cents=line.discount_amount_cents,
                discount_percent=line.discount_percent,
                insurance_flag=line.insurance_flag,
                reimbursement_rate=line.reimbursement_rate,
                line_subtotal_cents=settled.line_subtotal_cents,
                line_net_cents=settled.line_net_cents,
                insurance_cents=settled.insurance_cents,
                patient_cents=settled.patient_cents,
            ))

        db.session.add(PaymentSplit(
            sale=sale,
            cash_cents=cash,
            card_cents=card,
            insurance_covered_cents=totals.insurance_covered_cents,
            change_given_cents=change,
        ))

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # Same key committed by a concurrent request
            existing = find_by_idempotency_key(key, owner_id) if key else None
            if existing:
                return _replay(existing, request_hash)
            if key and find_by_idempotency_key(key) is not None:
                # Held by another owner's sale
                raise ConflictError("Idempotency key cannot be used for this sale")
            raise

        return CommitResult(sale=sale, replayed=False)

    result = run_with_retry(_op)

    if result.replayed:
        current_app.logger.info("Replayed sale %s for idempotency key %s", result.sale.id, key)
    else:
        current_app.logger.info(
            "Sale %s committed on session %s: due %d, cash %d, card %d, change %d",
            result.sale.id, session_id, due, cash, card, change,
        )
        sale_committed.send(current_app._get_current_object(), sale=result.sale)

    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int, owner_id: str | None = None) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale or (owner_id is not None and sale.session.drawer.owner_id != owner_id):
        raise NotFoundError("Sale not found")
    return sale


def list_sales(session_id: int, page: int = 1, per_page: int | None = None) -> dict:
    """
    Sales of one session in sale_number order, paginated.

    Returns:
        Dict with 'items', 'count' and 'pagination' metadata.
    """
    per_page = min(per_page or current_app.config.get("SALES_PAGE_SIZE", 50), 200)
    page = max(page or 1, 1)

    base_query = db.session.query(Sale).filter_by(session_id=session_id).order_by(Sale.sale_number)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    sales = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict(include_lines=False) for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def recompute_totals(sale: Sale):
    """
    Re-settle a committed sale from its persisted line inputs.

    The result must equal the snapshot stored on the line items; any
    difference means the stored sale no longer explains itself.
    """
    cart = Cart.from_payload(
        [
            {
                "kind": line.kind,
                "service_ref": line.service_ref,
                "description": line.description,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "insurance_flag": line.insurance_flag,
                "reimbursement_rate": line.reimbursement_rate,
                "discount_amount_cents": line.discount_amount_cents,
                "discount_percent": line.discount_percent,
            }
            for line in sale.lines
        ],
        customer_ref=sale.customer_ref,
        appointment_id=sale.appointment_id,
    )
    return compute_totals(cart)
