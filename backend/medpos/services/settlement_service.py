# Overview: Settlement calculator; splits a cart into gross, insurance-covered and patient-due amounts.

"""
Settlement Calculator

Per line:
    line_subtotal = unit_price * quantity
    line_discount = discount_amount OR line_subtotal * discount_percent / 100
    line_net      = line_subtotal - line_discount
    insured line (flag set, rate > 0):
        insurance = line_net * rate / 100
        patient   = line_net - insurance
    otherwise:
        insurance = 0, patient = line_net

Percentages are applied with Decimal and rounded half-up to the cent. The
patient portion is always derived by subtraction, so
insurance + patient == line_net holds exactly for every line.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ..validation import ValidationError
from .cart import REIMBURSEMENT_TIERS, CatalogLine, FreeformLine, validate_reimbursement_rate

__all__ = ["REIMBURSEMENT_TIERS", "LineSettlement", "Totals", "settle_line", "compute_totals", "percent_of"]

_HUNDRED = Decimal(100)


def percent_of(amount_cents: int, percent) -> int:
    """amount * percent / 100, rounded half-up to whole cents."""
    value = Decimal(amount_cents) * Decimal(str(percent)) / _HUNDRED
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineSettlement:
    line_subtotal_cents: int
    discount_cents: int
    line_net_cents: int
    insurance_cents: int
    patient_cents: int

    @property
    def insurance_applied(self) -> bool:
        return self.insurance_cents > 0

    def to_dict(self) -> dict:
        return {
            "line_subtotal_cents": self.line_subtotal_cents,
            "discount_cents": self.discount_cents,
            "line_net_cents": self.line_net_cents,
            "insurance_cents": self.insurance_cents,
            "patient_cents": self.patient_cents,
        }


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int  # gross before discounts and split, display only
    discount_cents: int
    net_cents: int
    insurance_covered_cents: int
    patient_due_cents: int
    lines: tuple

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "net_cents": self.net_cents,
            "insurance_covered_cents": self.insurance_covered_cents,
            "patient_due_cents": self.patient_due_cents,
            "lines": [line.to_dict() for line in self.lines],
        }


def _split(line_net: int, insurance_flag: bool, reimbursement_rate: int) -> tuple[int, int]:
    rate = validate_reimbursement_rate(reimbursement_rate)
    if insurance_flag and rate > 0:
        insurance = percent_of(line_net, rate)
        return insurance, line_net - insurance
    return 0, line_net


def settle_line(line) -> LineSettlement:
    if not isinstance(line, (CatalogLine, FreeformLine)):
        raise ValidationError(f"Unsupported cart line type: {type(line).__name__}")

    subtotal = line.unit_price_cents * line.quantity
    if line.discount_amount_cents is not None:
        discount = line.discount_amount_cents
    elif line.discount_percent is not None:
        discount = percent_of(subtotal, line.discount_percent)
    else:
        discount = 0

    net = subtotal - discount
    insurance, patient = _split(net, line.insurance_flag, line.reimbursement_rate)

    return LineSettlement(
        line_subtotal_cents=subtotal,
        discount_cents=discount,
        line_net_cents=net,
        insurance_cents=insurance,
        patient_cents=patient,
    )


def compute_totals(cart) -> Totals:
    """
    Settle every line of a cart (or any iterable of cart lines).

    Raises:
        ValidationError: empty cart or a line the calculator cannot accept
    """
    lines = list(cart)
    if not lines:
        raise ValidationError("empty cart")

    settled = tuple(settle_line(line) for line in lines)

    return Totals(
        subtotal_cents=sum(s.line_subtotal_cents for s in settled),
        discount_cents=sum(s.discount_cents for s in settled),
        net_cents=sum(s.line_net_cents for s in settled),
        insurance_covered_cents=sum(s.insurance_cents for s in settled),
        patient_due_cents=sum(s.patient_cents for s in settled),
        lines=settled,
    )
