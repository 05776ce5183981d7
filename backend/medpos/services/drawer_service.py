"""
Drawer Registry Service

WHY: A drawer must exist before a shift can be opened on it. Each drawer is
a physical till tracked independently for cash accountability.

DESIGN PRINCIPLES:
- Drawer codes are unique per owner (database constraint, not just a check)
- Drawers are never deleted; sessions reference them forever
- "Current session" is always queried, never cached on the drawer
"""

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Drawer, DrawerSession, SESSION_OPEN
from ..validation import NotFoundError, ValidationError, optional_text, require_text

MAX_CODE_LENGTH = 32
_CODE_STRIP = re.compile(r"[^A-Z0-9]+")


def _slugify_code(name: str) -> str:
    slug = _CODE_STRIP.sub("-", name.upper()).strip("-")
    return (slug or "DRAWER")[:24].rstrip("-")


def _code_taken(owner_id: str, code: str) -> bool:
    return db.session.query(Drawer.id).filter_by(owner_id=owner_id, code=code).first() is not None


def generate_code(owner_id: str, name: str) -> str:
    """
    Derive a drawer code from its name, unique for this owner.

    "Main" -> "MAIN", then "MAIN-2", "MAIN-3", ... on collision.
    """
    base = _slugify_code(name)
    candidate = base
    suffix = 2
    while _code_taken(owner_id, candidate):
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def create_drawer(owner_id: str, name: str, code: str | None = None) -> Drawer:
    """
    Create a new cash drawer.

    Args:
        owner_id: Professional that owns the till
        name: Display name (e.g., "Main", "Reception")
        code: Optional explicit code; generated from the name when omitted

    Raises:
        ValidationError: blank name, or code already used by this owner
    """
    owner_id = require_text(owner_id, "owner_id", max_length=64)
    name = require_text(name, "name", max_length=128)
    code = optional_text(code, "code", max_length=MAX_CODE_LENGTH)

    if code is None:
        code = generate_code(owner_id, name)
    else:
        code = code.upper()
        if _code_taken(owner_id, code):
            raise ValidationError(f"Drawer code '{code}' already exists")

    drawer = Drawer(owner_id=owner_id, name=name, code=code)
    db.session.add(drawer)
    try:
        db.session.commit()
    except IntegrityError:
        # Another terminal created the same code between our check and insert
        db.session.rollback()
        raise ValidationError(f"Drawer code '{code}' already exists")

    return drawer


def get_drawer(drawer_id: int, owner_id: str | None = None) -> Drawer:
    drawer = db.session.get(Drawer, drawer_id)
    if not drawer or (owner_id is not None and drawer.owner_id != owner_id):
        raise NotFoundError("Drawer not found")
    return drawer


def list_drawers(owner_id: str) -> list[dict]:
    """All drawers for an owner, each annotated with its open session (or None)."""
    drawers = db.session.query(Drawer).filter_by(owner_id=owner_id).order_by(Drawer.code).all()

    open_sessions = {
        s.drawer_id: s
        for s in db.session.query(DrawerSession).filter(
            DrawerSession.drawer_id.in_([d.id for d in drawers]),
            DrawerSession.status == SESSION_OPEN,
        ).all()
    } if drawers else {}

    result = []
    for drawer in drawers:
        d = drawer.to_dict()
        current_session = open_sessions.get(drawer.id)
        d["current_session"] = current_session.to_dict() if current_session else None
        result.append(d)
    return result
