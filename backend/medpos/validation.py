from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""
    status_code = 400
    code = "VALIDATION_ERROR"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class NotFoundError(LookupError):
    """404-level missing drawer/session/sale."""
    status_code = 404
    code = "NOT_FOUND"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., drawer busy, session closed)."""
    status_code = 409
    code = "CONFLICT"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class InsufficientPaymentError(ValidationError):
    """Tendered amount is below the amount the patient owes."""
    status_code = 422
    code = "INSUFFICIENT_PAYMENT"

    def __init__(self, patient_due_cents: int, tendered_cents: int):
        self.patient_due_cents = patient_due_cents
        self.tendered_cents = tendered_cents
        self.shortfall_cents = patient_due_cents - tendered_cents
        super().__init__(
            f"Insufficient payment: patient owes {patient_due_cents / 100:.2f}, "
            f"tendered {tendered_cents / 100:.2f} (short {self.shortfall_cents / 100:.2f})"
        )

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "shortfall_cents": self.shortfall_cents,
            "patient_due_cents": self.patient_due_cents,
            "tendered_cents": self.tendered_cents,
        }


class TransientError(Exception):
    """Network or storage unavailable; safe to retry with the same idempotency key."""
    code = "TRANSIENT"


class SubmissionTimeout(TransientError):
    """The server may or may not have applied the request."""
    code = "TIMEOUT"


# Errors that must never be retried automatically.
DETERMINISTIC_ERRORS = (ValidationError, NotFoundError, ConflictError, InsufficientPaymentError)


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON/CLI input.

    Rejects floats, booleans, decimals and scientific notation so that money
    never silently loses precision.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """Non-negative integer amount in cents."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    qty = coerce_int(value, field)
    if qty < 1:
        raise ValidationError(f"{field} must be a positive integer")
    return qty


def coerce_percent(value: Any, field: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not pct.is_finite():
        raise ValidationError(f"{field} must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct


def require_text(value: Any, field: str, *, max_length: int) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
