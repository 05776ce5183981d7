from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import ConflictError

SESSION_OPEN = "open"
SESSION_CLOSED = "closed"


class Drawer(db.Model):
    """
    Physical cash drawer (till) owned by a professional.

    Drawers are persistent and outlive every session opened against them.
    The code is what staff see on the till label and is unique per owner.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "code", name="uq_cash_drawers_owner_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)

    # Human-readable identifier (e.g., "MAIN", "FRONT-2")
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "code": self.code,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class DrawerSession(db.Model):
    """
    Shift on a drawer, from opening float to counted cash.

    LIFECYCLE:
    - open: shift is active, sales may be committed against it
    - closed: cash counted, variance frozen (terminal, never reopened)

    At most one open session per drawer; the partial unique index below is
    the arbiter when two terminals race to start a shift.
    """
    __tablename__ = "drawer_sessions"
    __table_args__ = (
        db.Index(
            "uq_drawer_sessions_one_open",
            "drawer_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        db.Index("ix_drawer_sessions_drawer_opened", "drawer_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)
    session_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # frozen at close
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    # Last sale number handed out in this session
    sale_count = db.Column(db.Integer, nullable=False, default=0)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    drawer = db.relationship("Drawer", backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "drawer_id": self.drawer_id,
            "session_number": self.session_number,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "sale_count": self.sale_count,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "closing_notes": self.closing_notes,
            "version_id": self.version_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-owner number sequences (session numbers).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "document_type", name="uq_doc_sequences_owner_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


@event.listens_for(DrawerSession, "before_update")
def _reject_closed_session_update(mapper, connection, target):
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous == SESSION_CLOSED:
        raise ConflictError(f"Session {target.id} is closed and cannot be modified")
