# Overview: Pytest coverage for committing sales against drawer sessions.

"""
Sale Commit Tests

Verifies:
- Settlement figures and payment split persisted with the sale
- Tender rules (card <= due, cash + card >= due, change from cash)
- Closed sessions reject sales
- Idempotency keys replay the original sale
- Committed sales are immutable
"""

import pytest

from medpos.extensions import db
from medpos.models import PaymentSplit, Sale, SaleLineItem
from medpos.services import drawer_service, payment_service, shift_service
from medpos.services.cart import Cart
from medpos.signals import sale_committed
from medpos.validation import ConflictError, InsufficientPaymentError, NotFoundError, ValidationError


@pytest.fixture
def bandage_cart(bandage):
    cart = Cart()
    cart.add_catalog_item(bandage, quantity=2)
    return cart


@pytest.fixture
def consultation_cart(consultation):
    cart = Cart(customer_ref="PAT-42")
    cart.add_catalog_item(consultation)
    return cart


class TestCommitSale:
    def test_exact_cash_for_uninsured_items(self, open_session, bandage_cart):
        result = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000)

        sale = result.sale
        assert not result.replayed
        assert sale.sale_number == 1
        assert sale.payment.cash_cents == 100000
        assert sale.payment.change_given_cents == 0
        assert sale.payment.insurance_covered_cents == 0
        assert sale.to_dict()["patient_due_cents"] == 100000
        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 2
        assert sale.lines[0].service_ref == "SUP-BANDAGE"

    def test_insurance_split_on_consultation(self, open_session, consultation_cart):
        result = payment_service.commit_sale(open_session.id, consultation_cart, cash_cents=20000)

        sale = result.sale
        assert sale.customer_ref == "PAT-42"
        assert sale.payment.insurance_covered_cents == 80000
        assert sale.payment.cash_cents == 20000
        assert sale.payment.change_given_cents == 0
        assert sale.lines[0].insurance_cents == 80000
        assert sale.lines[0].patient_cents == 20000

    def test_variance_after_mixed_sales(self, open_session, bandage_cart, consultation_cart):
        payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000)
        payment_service.commit_sale(open_session.id, consultation_cart, cash_cents=20000)

        closed, report = shift_service.close_shift(open_session.id, 115000)

        assert closed.expected_cash_cents == 120000
        assert closed.variance_cents == -5000
        assert report["transactions"] == 2
        assert report["total_insurance_covered_cents"] == 80000

    def test_change_comes_from_cash(self, open_session, consultation_cart):
        sale = payment_service.commit_sale(open_session.id, consultation_cart, cash_cents=25000).sale
        assert sale.payment.change_given_cents == 5000

        _, report = shift_service.close_shift(open_session.id, 20000)
        assert report["expected_cash_cents"] == 20000
        assert report["variance_cents"] == 0

    def test_mixed_cash_and_card(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=50000, card_cents=60000).sale
        assert sale.payment.card_cents == 60000
        assert sale.payment.change_given_cents == 10000

    def test_card_only(self, open_session, consultation_cart):
        sale = payment_service.commit_sale(open_session.id, consultation_cart, card_cents=20000).sale
        assert sale.payment.cash_cents == 0
        assert sale.payment.change_given_cents == 0

    def test_fully_covered_sale_needs_no_tender(self, open_session):
        cart = Cart()
        cart.add_freeform_item("Vaccine", 1, 4500, True, 100)

        sale = payment_service.commit_sale(open_session.id, cart).sale
        assert sale.payment.insurance_covered_cents == 4500
        assert sale.payment.cash_cents == 0

    def test_sale_numbers_increase_within_session(self, open_session, bandage_cart):
        numbers = [
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000).sale.sale_number
            for _ in range(3)
        ]
        assert numbers == [1, 2, 3]
        db.session.refresh(open_session)
        assert open_session.sale_count == 3

    def test_cart_links_default_to_cart(self, open_session):
        cart = Cart(customer_ref="PAT-1", appointment_id="APT-9")
        cart.add_freeform_item("Follow-up", 1, 1000)

        sale = payment_service.commit_sale(open_session.id, cart, cash_cents=1000).sale
        assert sale.customer_ref == "PAT-1"
        assert sale.appointment_id == "APT-9"

    def test_emits_signal(self, app, open_session, bandage_cart):
        received = []

        def listener(sender, **kwargs):
            received.append(kwargs["sale"].id)

        sale_committed.connect(listener, app)
        try:
            sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000).sale
        finally:
            sale_committed.disconnect(listener, app)

        assert received == [sale.id]


class TestTenderRules:
    def test_insufficient_payment_reports_shortfall(self, open_session, consultation_cart):
        with pytest.raises(InsufficientPaymentError) as exc_info:
            payment_service.commit_sale(open_session.id, consultation_cart, cash_cents=15000)

        err = exc_info.value
        assert err.patient_due_cents == 20000
        assert err.tendered_cents == 15000
        assert err.shortfall_cents == 5000
        assert err.to_dict()["shortfall_cents"] == 5000
        assert db.session.query(Sale).count() == 0

    def test_insufficient_payment_is_a_validation_error(self, open_session, consultation_cart):
        with pytest.raises(ValidationError):
            payment_service.commit_sale(open_session.id, consultation_cart, cash_cents=0)

    def test_card_above_due_rejected(self, open_session, consultation_cart):
        with pytest.raises(ValidationError, match="card amount cannot exceed amount due"):
            payment_service.commit_sale(open_session.id, consultation_cart, card_cents=20001)

    def test_empty_cart_rejected(self, open_session):
        with pytest.raises(ValidationError, match="empty cart"):
            payment_service.commit_sale(open_session.id, Cart(), cash_cents=100)

    @pytest.mark.parametrize("cash", [-1, 10.5, "1e3", True])
    def test_bad_cash_amount(self, open_session, bandage_cart, cash):
        with pytest.raises(ValidationError):
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=cash)

    def test_cart_required(self, open_session):
        with pytest.raises(ValidationError):
            payment_service.commit_sale(open_session.id, [{"description": "x"}])


class TestSessionState:
    def test_closed_session_rejects_sale(self, open_session, bandage_cart):
        shift_service.close_shift(open_session.id, 0)

        with pytest.raises(ConflictError, match="session closed"):
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000)
        assert db.session.query(Sale).count() == 0

    def test_unknown_session(self, db_session, bandage_cart):
        with pytest.raises(NotFoundError):
            payment_service.commit_sale(999, bandage_cart, cash_cents=100000)

    def test_wrong_owner(self, open_session, bandage_cart):
        with pytest.raises(NotFoundError):
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, owner_id="PRO-B")


class TestIdempotency:
    def test_replay_returns_original_sale(self, open_session, bandage_cart):
        first = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-1")
        second = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-1")

        assert not first.replayed
        assert second.replayed
        assert second.sale.id == first.sale.id
        assert db.session.query(Sale).count() == 1
        assert db.session.query(PaymentSplit).count() == 1

    def test_replay_after_close_still_returns_sale(self, open_session, bandage_cart):
        first = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-2")
        shift_service.close_shift(open_session.id, 100000)

        again = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-2")
        assert again.replayed
        assert again.sale.id == first.sale.id

    def test_key_reused_for_different_sale_conflicts(self, open_session, bandage_cart):
        payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-3")

        with pytest.raises(ConflictError, match="already used"):
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=200000, idempotency_key="key-3")

    def test_replay_does_not_emit_signal(self, app, open_session, bandage_cart):
        payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-4")

        received = []

        def listener(sender, **kwargs):
            received.append(kwargs["sale"].id)

        sale_committed.connect(listener, app)
        try:
            payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-4")
        finally:
            sale_committed.disconnect(listener, app)

        assert received == []

    def test_find_by_key(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-5").sale
        assert payment_service.find_by_idempotency_key("key-5").id == sale.id
        assert payment_service.find_by_idempotency_key("missing") is None
        assert payment_service.find_by_idempotency_key("") is None

    def test_find_by_key_scoped_to_owner(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000, idempotency_key="key-6").sale

        assert payment_service.find_by_idempotency_key("key-6", owner_id="PRO-A").id == sale.id
        assert payment_service.find_by_idempotency_key("key-6", owner_id="PRO-B") is None

    def test_other_owners_key_never_returns_their_sale(self, open_session, bandage_cart):
        payment_service.commit_sale(
            open_session.id, bandage_cart, cash_cents=100000, idempotency_key="shared", owner_id="PRO-A",
        )
        other_drawer = drawer_service.create_drawer("PRO-B", "Main")
        other_session = shift_service.start_shift(other_drawer.id, opening_balance_cents=0)

        with pytest.raises(ConflictError, match="cannot be used"):
            payment_service.commit_sale(
                other_session.id, bandage_cart, cash_cents=100000, idempotency_key="shared", owner_id="PRO-B",
            )
        assert db.session.query(Sale).count() == 1
        assert shift_service.get_session(other_session.id).sale_count == 0

    def test_fingerprint_ignores_key_order(self):
        assert payment_service.fingerprint({"a": 1, "b": [1, 2]}) == payment_service.fingerprint({"b": [1, 2], "a": 1})
        assert payment_service.fingerprint({"a": 1}) != payment_service.fingerprint({"a": 2})


class TestCommittedSales:
    def test_sale_rows_are_immutable(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000).sale

        sale.customer_ref = "edited"
        with pytest.raises(ConflictError, match="immutable"):
            db.session.commit()
        db.session.rollback()

    def test_payment_split_is_immutable(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000).sale

        sale.payment.cash_cents = 1
        with pytest.raises(ConflictError):
            db.session.commit()
        db.session.rollback()

    def test_recompute_matches_snapshot(self, open_session, consultation):
        cart = Cart()
        cart.add_catalog_item(consultation, discount_percent="12.5")
        cart.add_freeform_item("Gauze", 3, 333, discount_amount_cents=99)
        sale = payment_service.commit_sale(open_session.id, cart, cash_cents=100000).sale

        totals = payment_service.recompute_totals(sale)

        assert totals.net_cents == sum(line.line_net_cents for line in sale.lines)
        assert totals.patient_due_cents == sale.to_dict()["patient_due_cents"]
        assert totals.insurance_covered_cents == sale.payment.insurance_covered_cents

    def test_line_items_keep_inputs(self, open_session, bandage):
        cart = Cart()
        cart.add_catalog_item(bandage, discount_percent="10")
        payment_service.commit_sale(open_session.id, cart, cash_cents=45000)

        line = db.session.query(SaleLineItem).one()
        assert str(line.discount_percent) == "10.00"
        assert line.line_net_cents == 45000

    def test_get_sale_scoped_to_owner(self, open_session, bandage_cart):
        sale = payment_service.commit_sale(open_session.id, bandage_cart, cash_cents=100000).sale
        assert payment_service.get_sale(sale.id, "PRO-A").id == sale.id
        with pytest.raises(NotFoundError):
            payment_service.get_sale(sale.id, "PRO-B")


class TestListSales:
    def test_pagination(self, open_session):
        for i in range(5):
            cart = Cart()
            cart.add_freeform_item(f"Item {i}", 1, 100)
            payment_service.commit_sale(open_session.id, cart, cash_cents=100)

        page = payment_service.list_sales(open_session.id, page=2, per_page=2)

        assert [s["sale_number"] for s in page["items"]] == [3, 4]
        assert page["count"] == 2
        assert page["pagination"]["total"] == 5
        assert page["pagination"]["total_pages"] == 3
        assert page["pagination"]["has_next"] is True
        assert page["pagination"]["has_prev"] is True
        assert "lines" not in page["items"][0]

    def test_empty_session(self, open_session):
        page = payment_service.list_sales(open_session.id)
        assert page["items"] == []
        assert page["pagination"]["total_pages"] == 1
