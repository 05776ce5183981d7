# Overview: Shift reconciliation; re-derives drawer totals from committed sale rows.

"""
Reconciliation Engine

Every figure is re-scanned from sales + payment_splits + sale_line_items.
No running total on the session is trusted. Once a session is closed, the
counted cash, expected cash and variance frozen at close are reported as-is.

    expected_cash = opening_balance + sum(cash_i - change_i)
    variance      = counted_cash - expected_cash   (> 0 surplus, < 0 shortage)
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import DrawerSession, PaymentSplit, Sale, SaleLineItem, SESSION_CLOSED
from ..time_utils import to_utc_z


def net_cash_collected(session_id: int) -> int:
    """sum(cash - change) over every sale committed to the session."""
    total = db.session.query(
        func.coalesce(func.sum(PaymentSplit.cash_cents - PaymentSplit.change_given_cents), 0)
    ).join(
        Sale, Sale.id == PaymentSplit.sale_id
    ).filter(
        Sale.session_id == session_id
    ).scalar()
    return int(total or 0)


def expected_cash(session: DrawerSession) -> int:
    return session.opening_balance_cents + net_cash_collected(session.id)


def get_tender_summary(session_id: int) -> dict:
    """
    Tender totals for a session, cash net of change.

    Returns:
        {"transactions": 3, "cash": 21500, "card": 5000, "insurance": 80000,
         "change": 500, "net_sales": 106500}
    """
    row = db.session.query(
        func.count(PaymentSplit.id),
        func.coalesce(func.sum(PaymentSplit.cash_cents), 0),
        func.coalesce(func.sum(PaymentSplit.card_cents), 0),
        func.coalesce(func.sum(PaymentSplit.insurance_covered_cents), 0),
        func.coalesce(func.sum(PaymentSplit.change_given_cents), 0),
    ).join(
        Sale, Sale.id == PaymentSplit.sale_id
    ).filter(
        Sale.session_id == session_id
    ).one()

    transactions, cash, card, insurance, change = (int(v or 0) for v in row)

    net_sales = db.session.query(
        func.coalesce(func.sum(SaleLineItem.line_net_cents), 0)
    ).join(
        Sale, Sale.id == SaleLineItem.sale_id
    ).filter(
        Sale.session_id == session_id
    ).scalar()

    return {
        "transactions": transactions,
        "cash": cash - change,
        "card": card,
        "insurance": insurance,
        "change": change,
        "net_sales": int(net_sales or 0),
    }


def build_report(session: DrawerSession) -> dict:
    """
    Shift report for an open or closed session.

    For an open session counted_cash and variance are None; expected cash is
    what the drawer should hold right now.
    """
    tenders = get_tender_summary(session.id)
    computed_expected = session.opening_balance_cents + tenders["cash"]

    if session.status == SESSION_CLOSED:
        expected = session.expected_cash_cents
        counted = session.counted_cash_cents
        variance = session.variance_cents
    else:
        expected = computed_expected
        counted = None
        variance = None

    return {
        "session_id": session.id,
        "session_number": session.session_number,
        "drawer_id": session.drawer_id,
        "status": session.status,
        "opened_at": to_utc_z(session.opened_at),
        "closed_at": to_utc_z(session.closed_at) if session.closed_at else None,
        "opening_balance_cents": session.opening_balance_cents,
        "transactions": tenders["transactions"],
        "total_sales_cents": tenders["net_sales"],
        "total_cash_cents": tenders["cash"],
        "total_card_cents": tenders["card"],
        "total_insurance_covered_cents": tenders["insurance"],
        "total_change_cents": tenders["change"],
        "expected_cash_cents": expected,
        "counted_cash_cents": counted,
        "variance_cents": variance,
    }
