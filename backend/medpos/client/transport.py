# Overview: HTTP transport from the till to the sale API; maps responses onto the error taxonomy.

"""
Till-side HTTP transport.

Every failure is translated into one of two families:
- deterministic (ValidationError, NotFoundError, ConflictError,
  InsufficientPaymentError): resending the same request cannot succeed
- transient (TransientError, SubmissionTimeout): safe to resend with the
  same idempotency key

A SubmissionTimeout means the server may already have applied the sale;
callers look the key up before resending.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

import httpx

from ..decorators import IDEMPOTENCY_HEADER, OWNER_HEADER
from ..time_utils import parse_iso_datetime
from ..validation import (
    ConflictError,
    InsufficientPaymentError,
    NotFoundError,
    SubmissionTimeout,
    TransientError,
    ValidationError,
)


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class SaleIntent:
    """A sale the till wants committed: cart payload plus tender."""
    drawer_id: int
    session_id: int
    lines: list
    cash_cents: int = 0
    card_cents: int = 0
    customer_ref: Optional[str] = None
    appointment_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_cart(cls, drawer_id: int, session_id: int, cart, cash_cents: int = 0, card_cents: int = 0, *, label=None, idempotency_key=None) -> "SaleIntent":
        return cls(
            drawer_id=drawer_id,
            session_id=session_id,
            lines=cart.to_payload(),
            cash_cents=cash_cents,
            card_cents=card_cents,
            customer_ref=cart.customer_ref,
            appointment_id=cart.appointment_id,
            idempotency_key=idempotency_key,
            label=label,
        )

    def with_key(self, key: str) -> "SaleIntent":
        return replace(self, idempotency_key=key)

    def to_body(self) -> dict:
        return {
            "lines": self.lines,
            "cash_cents": self.cash_cents,
            "card_cents": self.card_cents,
            "customer_ref": self.customer_ref,
            "appointment_id": self.appointment_id,
            "idempotency_key": self.idempotency_key,
        }

    def to_dict(self) -> dict:
        d = self.to_body()
        d.update({"drawer_id": self.drawer_id, "session_id": self.session_id, "label": self.label})
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "SaleIntent":
        return cls(
            drawer_id=data["drawer_id"],
            session_id=data["session_id"],
            lines=data.get("lines") or [],
            cash_cents=data.get("cash_cents", 0),
            card_cents=data.get("card_cents", 0),
            customer_ref=data.get("customer_ref"),
            appointment_id=data.get("appointment_id"),
            idempotency_key=data.get("idempotency_key"),
            label=data.get("label"),
        )


@dataclass(frozen=True)
class CommittedSale:
    """Server acknowledgement of a committed (or replayed) sale."""
    id: int
    session_id: int
    sale_number: int
    idempotency_key: Optional[str]
    patient_due_cents: int
    change_given_cents: int
    created_at: Optional[datetime]
    replayed: bool = False
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, data: dict, *, replayed: bool = False) -> "CommittedSale":
        payment = data.get("payment") or {}
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            sale_number=data["sale_number"],
            idempotency_key=data.get("idempotency_key"),
            patient_due_cents=data.get("patient_due_cents", 0),
            change_given_cents=payment.get("change_given_cents", 0),
            created_at=parse_iso_datetime(data.get("created_at")),
            replayed=replayed,
            raw=data,
        )


def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def raise_for_response(response: httpx.Response) -> None:
    """Translate an HTTP error response into the error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    body = _error_body(response)
    message = body.get("error") or f"HTTP {status}"

    if status == 422:
        raise InsufficientPaymentError(body.get("patient_due_cents", 0), body.get("tendered_cents", 0))
    if status == 404:
        raise NotFoundError(message)
    if status == 409:
        raise ConflictError(message)
    if status == 429 or status >= 500:
        raise TransientError(f"Server unavailable: {message}")
    raise ValidationError(message)


class HttpSaleTransport:
    """
    Commit and look up sales over HTTP.

    Pass an httpx.Client to share connection pools (or to mount an in-process
    transport); otherwise one is created with the configured timeout.
    """

    def __init__(self, base_url: str, owner_id: str, *, timeout: float = 10.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.client = client or httpx.Client(timeout=timeout)

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {"Content-Type": "application/json", OWNER_HEADER: self.owner_id}
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise SubmissionTimeout(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise TransientError(f"{method} {path} failed: {e}") from e

    def commit(self, intent: SaleIntent) -> CommittedSale:
        headers = {}
        if intent.idempotency_key:
            headers[IDEMPOTENCY_HEADER] = intent.idempotency_key

        response = self._send(
            "POST",
            f"/api/sessions/{intent.session_id}/sales",
            json=intent.to_body(),
            headers=self._headers(headers),
        )
        raise_for_response(response)

        data = response.json()
        return CommittedSale.from_response(data["sale"], replayed=bool(data.get("replayed")))

    def lookup(self, idempotency_key: str) -> CommittedSale | None:
        """Find a sale by idempotency key; None if the server never applied it."""
        response = self._send("GET", f"/api/sales/by-key/{idempotency_key}", headers=self._headers())
        if response.status_code == 404:
            return None
        raise_for_response(response)
        return CommittedSale.from_response(response.json()["sale"], replayed=True)

    def close(self) -> None:
        self.client.close()


class HttpConnectivityProbe:
    """GET /api/ping with a short timeout; anything but 200 counts as offline."""

    def __init__(self, base_url: str, *, timeout: float = 4.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    def is_online(self) -> bool:
        try:
            response = self.client.get(f"{self.base_url}/api/ping", timeout=self.timeout)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def close(self) -> None:
        self.client.close()
