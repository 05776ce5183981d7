# Overview: Cart builder; catalog-backed and free-text sale lines validated at construction.

"""
Cart Builder

A cart is a list of tagged lines: CatalogLine (priced from the catalog
collaborator) or FreeformLine (typed in at the till). Lines are frozen
dataclasses validated in __post_init__, so a cart never holds a line the
settlement calculator would have to reject later.

The same cart shape travels over the wire (to_payload / from_payload) and
through the offline queue.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import ClassVar, Iterator

from ..models.sales import LINE_KIND_CATALOG, LINE_KIND_FREEFORM
from ..validation import (
    MAX_AMOUNT_CENTS,
    ValidationError,
    coerce_cents,
    coerce_percent,
    coerce_quantity,
    optional_text,
    require_text,
)

# Reimbursement tiers accepted for insurance-covered lines (percent of line net)
REIMBURSEMENT_TIERS = (0, 80, 100)


def validate_reimbursement_rate(rate) -> int:
    if isinstance(rate, bool) or not isinstance(rate, int) or rate not in REIMBURSEMENT_TIERS:
        allowed = ", ".join(str(t) for t in REIMBURSEMENT_TIERS)
        raise ValidationError(f"reimbursement_rate must be one of {allowed} (got {rate!r})")
    return rate


def validate_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise ValidationError("quantity must be a positive integer")
    return qty


def _validate_line(line) -> None:
    object.__setattr__(line, "description", require_text(line.description, "description", max_length=255))
    qty = validate_quantity(line.quantity)

    price = line.unit_price_cents
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValidationError("unit_price_cents must be an integer")
    if price < 0:
        raise ValidationError("unit_price_cents must be >= 0")
    if price > MAX_AMOUNT_CENTS:
        raise ValidationError(f"unit_price_cents cannot exceed {MAX_AMOUNT_CENTS}")

    if not isinstance(line.insurance_flag, bool):
        raise ValidationError("insurance_flag must be a boolean")
    validate_reimbursement_rate(line.reimbursement_rate)

    if line.discount_amount_cents is not None and line.discount_percent is not None:
        raise ValidationError("Use either discount_amount_cents or discount_percent, not both")

    if line.discount_amount_cents is not None:
        amount = line.discount_amount_cents
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("discount_amount_cents must be a non-negative integer")
        if amount > price * qty:
            raise ValidationError("discount_amount_cents cannot exceed the line subtotal")

    if line.discount_percent is not None:
        object.__setattr__(line, "discount_percent", coerce_percent(line.discount_percent, "discount_percent"))


def _line_payload(line) -> dict:
    return {
        "kind": line.kind,
        "description": line.description,
        "quantity": line.quantity,
        "unit_price_cents": line.unit_price_cents,
        "insurance_flag": line.insurance_flag,
        "reimbursement_rate": line.reimbursement_rate,
        "discount_amount_cents": line.discount_amount_cents,
        "discount_percent": str(line.discount_percent) if line.discount_percent is not None else None,
    }


@dataclass(frozen=True)
class CatalogItem:
    """Service/product as published by the catalog collaborator."""
    id: str
    name: str
    price_cents: int
    insurance_eligible: bool = False
    reimbursement_rate: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "CatalogItem":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            price_cents=coerce_cents(data.get("price_cents"), "price_cents"),
            insurance_eligible=bool(data.get("insurance_eligible", False)),
            reimbursement_rate=data.get("reimbursement_rate") or 0,
        )


@dataclass(frozen=True)
class BillingSeed:
    """Amount due from an appointment; pre-seeds a cart without locking it."""
    appointment_id: str
    patient_id: str
    due_amount_cents: int
    description: str = "Consultation"


@dataclass(frozen=True)
class CatalogLine:
    service_ref: str
    description: str
    unit_price_cents: int
    quantity: int = 1
    insurance_flag: bool = False
    reimbursement_rate: int = 0
    discount_amount_cents: int | None = None
    discount_percent: Decimal | None = None

    kind: ClassVar[str] = LINE_KIND_CATALOG

    def __post_init__(self):
        if not self.service_ref or not str(self.service_ref).strip():
            raise ValidationError("service_ref is required for catalog lines")
        object.__setattr__(self, "service_ref", str(self.service_ref).strip())
        _validate_line(self)

    @classmethod
    def from_catalog(
        cls,
        item: CatalogItem,
        quantity: int = 1,
        *,
        discount_amount_cents: int | None = None,
        discount_percent=None,
    ) -> "CatalogLine":
        # Non-eligible items never carry an insurance split
        rate = item.reimbursement_rate if item.insurance_eligible else 0
        return cls(
            service_ref=item.id,
            description=item.name,
            unit_price_cents=item.price_cents,
            quantity=quantity,
            insurance_flag=bool(item.insurance_eligible and rate > 0),
            reimbursement_rate=rate,
            discount_amount_cents=discount_amount_cents,
            discount_percent=discount_percent,
        )

    def to_payload(self) -> dict:
        payload = _line_payload(self)
        payload["service_ref"] = self.service_ref
        return payload


@dataclass(frozen=True)
class FreeformLine:
    description: str
    quantity: int
    unit_price_cents: int
    insurance_flag: bool = False
    reimbursement_rate: int = 0
    discount_amount_cents: int | None = None
    discount_percent: Decimal | None = None

    kind: ClassVar[str] = LINE_KIND_FREEFORM

    def __post_init__(self):
        _validate_line(self)

    def to_payload(self) -> dict:
        return _line_payload(self)


CartLine = CatalogLine | FreeformLine


def line_from_payload(data: dict) -> CartLine:
    if not isinstance(data, dict):
        raise ValidationError("Each cart line must be an object")

    kind = data.get("kind", LINE_KIND_FREEFORM)
    common = {
        "description": data.get("description"),
        "quantity": coerce_quantity(data.get("quantity", 1)),
        "unit_price_cents": coerce_cents(data.get("unit_price_cents"), "unit_price_cents"),
        "insurance_flag": data.get("insurance_flag", False),
        "reimbursement_rate": data.get("reimbursement_rate") or 0,
        "discount_amount_cents": coerce_cents(data.get("discount_amount_cents"), "discount_amount_cents", allow_none=True),
        "discount_percent": coerce_percent(data.get("discount_percent"), "discount_percent"),
    }

    if kind == LINE_KIND_CATALOG:
        return CatalogLine(service_ref=data.get("service_ref"), **common)
    if kind == LINE_KIND_FREEFORM:
        return FreeformLine(**common)
    raise ValidationError(f"Unknown cart line kind: {kind!r}")


@dataclass
class Cart:
    """
    Mutable sale under construction at the till.

    Lines are addressed by position; positions shift when a line is removed.
    """
    lines: list = field(default_factory=list)
    customer_ref: str | None = None
    appointment_id: str | None = None

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def add_catalog_item(
        self,
        item: CatalogItem,
        quantity: int = 1,
        *,
        discount_amount_cents: int | None = None,
        discount_percent=None,
    ) -> CatalogLine:
        """Add a catalog service; scanning the same undiscounted service again bumps its quantity."""
        quantity = validate_quantity(quantity)
        if discount_amount_cents is None and discount_percent is None:
            for index, existing in enumerate(self.lines):
                if (
                    isinstance(existing, CatalogLine)
                    and existing.service_ref == item.id
                    and existing.discount_amount_cents is None
                    and existing.discount_percent is None
                ):
                    merged = replace(existing, quantity=existing.quantity + quantity)
                    self.lines[index] = merged
                    return merged

        line = CatalogLine.from_catalog(
            item,
            quantity,
            discount_amount_cents=discount_amount_cents,
            discount_percent=discount_percent,
        )
        self.lines.append(line)
        return line

    def add_freeform_item(
        self,
        description: str,
        quantity: int,
        unit_price_cents: int,
        insurance_flag: bool = False,
        reimbursement_rate: int = 0,
        *,
        discount_amount_cents: int | None = None,
        discount_percent=None,
    ) -> FreeformLine:
        line = FreeformLine(
            description=description,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            insurance_flag=insurance_flag,
            reimbursement_rate=reimbursement_rate,
            discount_amount_cents=discount_amount_cents,
            discount_percent=discount_percent,
        )
        self.lines.append(line)
        return line

    def _check_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self.lines):
            raise ValidationError(f"No cart line at position {index}")

    def remove_item(self, index: int) -> CartLine:
        self._check_index(index)
        return self.lines.pop(index)

    def adjust_quantity(self, index: int, quantity: int) -> CartLine | None:
        """Set a line's quantity; 0 removes the line and returns None."""
        self._check_index(index)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("quantity must be a non-negative integer")
        if quantity == 0:
            self.lines.pop(index)
            return None
        updated = replace(self.lines[index], quantity=quantity)
        self.lines[index] = updated
        return updated

    def clear(self) -> None:
        self.lines.clear()

    @classmethod
    def from_billing(cls, seed: BillingSeed) -> "Cart":
        cart = cls(appointment_id=seed.appointment_id, customer_ref=seed.patient_id)
        if seed.due_amount_cents:
            cart.add_freeform_item(seed.description, 1, seed.due_amount_cents)
        return cart

    def to_payload(self) -> list[dict]:
        return [line.to_payload() for line in self.lines]

    @classmethod
    def from_payload(cls, lines, *, customer_ref=None, appointment_id=None) -> "Cart":
        if lines is None:
            lines = []
        if not isinstance(lines, list):
            raise ValidationError("lines must be a list")
        return cls(
            lines=[line_from_payload(item) for item in lines],
            customer_ref=optional_text(customer_ref, "customer_ref", max_length=128),
            appointment_id=optional_text(appointment_id, "appointment_id", max_length=64),
        )
