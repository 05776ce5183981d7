"""
Shift (Drawer Session) Management Service

WHY: Each shift is a period of cash accountability on one drawer: an
opening float goes in, sales move cash, and at close the counted cash is
compared with what the sales say should be there.

DESIGN PRINCIPLES:
- One open session per drawer, enforced by a partial unique index
- Sessions are immutable once closed (open -> closed is terminal)
- Expected cash is recomputed from sale rows at close, never from a running total
- Opening float carries forward from the drawer's last counted cash
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Drawer, DrawerSession, DocumentSequence, SESSION_OPEN, SESSION_CLOSED
from ..signals import shift_closed
from ..time_utils import day_stamp, utcnow
from ..validation import ConflictError, NotFoundError, coerce_cents, optional_text
from .concurrency import lock_for_update, run_with_retry
from .drawer_service import get_drawer
from .reconciliation_service import build_report, expected_cash


def next_session_number(owner_id: str, when) -> str:
    """
    Allocate the next session number for an owner and day.

    SESSION-20260118-0001, SESSION-20260118-0002, ...
    Runs inside the caller's transaction; a concurrent first allocation for
    the same day is absorbed by the savepoint.
    """
    prefix = f"SESSION-{day_stamp(when)}"
    document_type = prefix[:32]

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.owner_id == owner_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    def _bump() -> int | None:
        result = db.session.execute(stmt)
        if not result.rowcount:
            return None
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(owner_id=owner_id, document_type=document_type)
            .scalar()
        )
        return current - 1

    next_num = _bump()
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(owner_id=owner_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump()
            if next_num is None:
                raise

    return f"{prefix}-{next_num:04d}"


def get_open_session(drawer_id: int) -> DrawerSession | None:
    """Get the currently open session for a drawer, if any."""
    return db.session.query(DrawerSession).filter_by(
        drawer_id=drawer_id,
        status=SESSION_OPEN,
    ).first()


def get_session(session_id: int, owner_id: str | None = None) -> DrawerSession:
    session = db.session.get(DrawerSession, session_id)
    if not session or (owner_id is not None and session.drawer.owner_id != owner_id):
        raise NotFoundError("Session not found")
    return session


def _carry_forward_float(drawer_id: int) -> int:
    previous = db.session.query(DrawerSession).filter(
        DrawerSession.drawer_id == drawer_id,
        DrawerSession.status == SESSION_CLOSED,
        DrawerSession.counted_cash_cents.isnot(None),
    ).order_by(
        DrawerSession.closed_at.desc(),
        DrawerSession.id.desc(),
    ).first()
    return previous.counted_cash_cents if previous else 0


def start_shift(
    drawer_id: int,
    opening_balance_cents: int | None = None,
    notes: str | None = None,
    *,
    owner_id: str | None = None,
) -> DrawerSession:
    """
    Open a new shift on a drawer.

    Args:
        drawer_id: Drawer to open the shift on
        opening_balance_cents: Starting float; defaults to the last counted cash
        notes: Optional opening notes
        owner_id: When given, the drawer must belong to this owner

    Raises:
        ConflictError: drawer busy (already has an open session)
        ValidationError: negative opening balance
        NotFoundError: unknown drawer
    """
    opening = coerce_cents(opening_balance_cents, "opening_balance_cents", allow_none=True)
    notes = optional_text(notes, "notes", max_length=2000)

    def _op() -> DrawerSession:
        drawer = get_drawer(drawer_id, owner_id)

        existing = get_open_session(drawer.id)
        if existing:
            raise ConflictError(
                f"drawer busy: {drawer.code} already has open session {existing.session_number}"
            )

        balance = opening if opening is not None else _carry_forward_float(drawer.id)
        now = utcnow()

        session = DrawerSession(
            drawer_id=drawer.id,
            session_number=next_session_number(drawer.owner_id, now),
            status=SESSION_OPEN,
            opening_balance_cents=balance,
            sale_count=0,
            opened_at=now,
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost the race: another terminal opened this drawer first
            db.session.rollback()
            raise ConflictError(f"drawer busy: {drawer.code} already has an open session")
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Session %s opened on drawer %s with float %d", session.session_number, session.drawer_id, session.opening_balance_cents
    )
    return session


def close_shift(
    session_id: int,
    counted_cash_cents: int,
    notes: str | None = None,
    *,
    owner_id: str | None = None,
) -> tuple[DrawerSession, dict]:
    """
    Close a shift and freeze its cash variance.

    IMMUTABLE: Once closed, the session and every sale beneath it are final.

    Returns:
        (closed session, reconciliation report)

    Raises:
        NotFoundError: unknown session
        ConflictError: session already closed
        ValidationError: negative counted cash
    """
    counted = coerce_cents(counted_cash_cents, "counted_cash_cents")
    notes = optional_text(notes, "notes", max_length=2000)

    def _op() -> DrawerSession:
        session = lock_for_update(db.session.query(DrawerSession).filter_by(id=session_id)).first()
        if not session or (owner_id is not None and session.drawer.owner_id != owner_id):
            raise NotFoundError("Session not found")

        if not session.is_open:
            raise ConflictError(f"session closed: {session.session_number} was already closed")

        expected = expected_cash(session)

        session.status = SESSION_CLOSED
        session.closed_at = utcnow()
        session.counted_cash_cents = counted
        session.expected_cash_cents = expected
        session.variance_cents = counted - expected
        session.closing_notes = notes

        db.session.commit()
        return session

    session = run_with_retry(_op)
    report = build_report(session)

    current_app.logger.info(
        "Session %s closed: expected %d, counted %d, variance %d",
        session.session_number, session.expected_cash_cents, session.counted_cash_cents, session.variance_cents,
    )
    shift_closed.send(current_app._get_current_object(), session=session, report=report)

    return session, report


def list_sessions(
    owner_id: str,
    *,
    drawer_id: int | None = None,
    active_only: bool = False,
    limit: int | None = None,
) -> list[DrawerSession]:
    """Sessions for an owner's drawers, newest first."""
    if limit is None:
        limit = current_app.config.get("SESSION_LIST_LIMIT", 100)

    query = db.session.query(DrawerSession).join(
        Drawer, Drawer.id == DrawerSession.drawer_id
    ).filter(
        Drawer.owner_id == owner_id
    )

    if drawer_id is not None:
        query = query.filter(DrawerSession.drawer_id == drawer_id)
    if active_only:
        query = query.filter(DrawerSession.status == SESSION_OPEN)

    return query.order_by(DrawerSession.opened_at.desc(), DrawerSession.id.desc()).limit(limit).all()
