from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import ConflictError

LINE_KIND_CATALOG = "catalog"
LINE_KIND_FREEFORM = "freeform"


class Sale(db.Model):
    """
    Committed sale against an open drawer session.

    IMMUTABLE: written once together with its line items and payment split.
    Corrections belong to a separate refund/void flow.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("session_id", "sale_number", name="uq_sales_session_number"),
        db.Index("ix_sales_session_created", "session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("drawer_sessions.id"), nullable=False, index=True)

    # 1, 2, 3 ... within the session
    sale_number = db.Column(db.Integer, nullable=False)

    customer_ref = db.Column(db.String(128), nullable=True)
    appointment_id = db.Column(db.String(64), nullable=True, index=True)

    # Client-generated token; a replay with the same key returns this sale
    idempotency_key = db.Column(db.String(64), nullable=True, unique=True)
    request_fingerprint = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("DrawerSession", backref=db.backref("sales", lazy=True, order_by="Sale.sale_number"))

    def to_dict(self, *, include_lines: bool = True) -> dict:
        payment = self.payment
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "sale_number": self.sale_number,
            "customer_ref": self.customer_ref,
            "appointment_id": self.appointment_id,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
            "subtotal_cents": sum(line.line_subtotal_cents for line in self.lines),
            "net_total_cents": sum(line.line_net_cents for line in self.lines),
            "patient_due_cents": sum(line.patient_cents for line in self.lines),
            "payment": payment.to_dict() if payment else None,
        }
        if include_lines:
            d["lines"] = [line.to_dict() for line in self.lines]
        return d


class SaleLineItem(db.Model):
    """
    Individual line on a sale.

    Inputs (quantity, price, discount, insurance tier) are stored next to the
    commit-time settlement snapshot so totals can be re-derived and compared.
    """
    __tablename__ = "sale_line_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_no", name="uq_sale_line_items_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(16), nullable=False)  # catalog, freeform
    service_ref = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_amount_cents = db.Column(db.Integer, nullable=True)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)

    insurance_flag = db.Column(db.Boolean, nullable=False, default=False)
    reimbursement_rate = db.Column(db.Integer, nullable=False, default=0)

    # Settlement snapshot
    line_subtotal_cents = db.Column(db.Integer, nullable=False)
    line_net_cents = db.Column(db.Integer, nullable=False)
    insurance_cents = db.Column(db.Integer, nullable=False, default=0)
    patient_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLineItem.line_no"))

    def to_dict(self) -> dict:
        return {
            "line_no": self.line_no,
            "kind": self.kind,
            "service_ref": self.service_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "insurance_flag": self.insurance_flag,
            "reimbursement_rate": self.reimbursement_rate,
            "line_subtotal_cents": self.line_subtotal_cents,
            "line_net_cents": self.line_net_cents,
            "insurance_cents": self.insurance_cents,
            "patient_cents": self.patient_cents,
        }


class PaymentSplit(db.Model):
    """
    How a sale was settled.

    INVARIANTS:
    - (cash - change_given) + card + insurance_covered == sale net total
    - change_given <= cash (change only comes out of the drawer)
    """
    __tablename__ = "payment_splits"
    __table_args__ = (
        db.CheckConstraint("change_given_cents <= cash_cents", name="ck_payment_splits_change_from_cash"),
        db.CheckConstraint(
            "cash_cents >= 0 AND card_cents >= 0 AND insurance_covered_cents >= 0 AND change_given_cents >= 0",
            name="ck_payment_splits_non_negative",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    cash_cents = db.Column(db.Integer, nullable=False, default=0)
    card_cents = db.Column(db.Integer, nullable=False, default=0)
    insurance_covered_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", backref=db.backref("payment", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "cash_cents": self.cash_cents,
            "card_cents": self.card_cents,
            "insurance_covered_cents": self.insurance_covered_cents,
            "change_given_cents": self.change_given_cents,
        }


def _reject_update(mapper, connection, target):
    raise ConflictError(f"{type(target).__name__} records are immutable once committed")


for _model in (Sale, SaleLineItem, PaymentSplit):
    event.listen(_model, "before_update", _reject_update)
