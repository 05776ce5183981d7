# Overview: Pytest coverage for racing terminals on a file-backed database.

"""
Concurrency Tests

Each worker thread pushes its own app context, so it gets its own
SQLAlchemy session and connection, like separate request workers would.
The in-memory test database cannot be shared across connections, so these
tests run against a temporary SQLite file.
"""

import threading

import pytest

from medpos import create_app
from medpos.config import Config
from medpos.extensions import db
from medpos.models import DrawerSession, Sale, SESSION_OPEN
from medpos.services import drawer_service, payment_service, reconciliation_service, shift_service
from medpos.services.cart import Cart
from medpos.validation import ConflictError


@pytest.fixture
def file_app(tmp_path):
    class FileDatabaseConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.sqlite3'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}
        DB_RETRY_ATTEMPTS = 10
        DB_RETRY_BACKOFF = 0.01

    app = create_app(FileDatabaseConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, target, count):
    barrier = threading.Barrier(count)
    outcomes = []
    lock = threading.Lock()

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                value = target(index)
            except Exception as e:
                value = e
            with lock:
                outcomes.append(value)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


class TestRacingStarts:
    def test_exactly_one_start_wins(self, file_app):
        with file_app.app_context():
            drawer_id = drawer_service.create_drawer("PRO-A", "Main").id

        outcomes = _run_threads(
            file_app,
            lambda i: shift_service.start_shift(drawer_id, opening_balance_cents=i * 100).id,
            5,
        )

        winners = [o for o in outcomes if isinstance(o, int)]
        losers = [o for o in outcomes if not isinstance(o, int)]
        assert len(winners) == 1
        assert all(isinstance(o, ConflictError) for o in losers), losers

        with file_app.app_context():
            assert db.session.query(DrawerSession).filter_by(
                drawer_id=drawer_id, status=SESSION_OPEN
            ).count() == 1

    def test_different_drawers_do_not_block_each_other(self, file_app):
        with file_app.app_context():
            drawer_ids = [drawer_service.create_drawer("PRO-A", f"Till {i}").id for i in range(3)]

        outcomes = _run_threads(file_app, lambda i: shift_service.start_shift(drawer_ids[i]).session_number, 3)

        assert all(isinstance(o, str) for o in outcomes), outcomes
        assert len(set(outcomes)) == 3


class TestCommitVersusClose:
    def test_no_sale_lands_after_close(self, file_app):
        with file_app.app_context():
            drawer = drawer_service.create_drawer("PRO-A", "Main")
            session_id = shift_service.start_shift(drawer.id, opening_balance_cents=1000).id

        def act(index):
            if index == 0:
                return shift_service.close_shift(session_id, 0)[0].id
            cart = Cart()
            cart.add_freeform_item("Bandage", 1, 500)
            return payment_service.commit_sale(session_id, cart, cash_cents=700).sale.id

        outcomes = _run_threads(file_app, act, 6)

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert all(isinstance(e, ConflictError) for e in errors), errors

        with file_app.app_context():
            session = db.session.get(DrawerSession, session_id)
            sales = db.session.query(Sale).filter_by(session_id=session_id).count()

            assert session.status == "closed"
            assert sales == len(outcomes) - 1 - len(errors)
            # Everything committed before the close is in the frozen figure
            assert session.expected_cash_cents == 1000 + 500 * sales
            assert reconciliation_service.expected_cash(session) == session.expected_cash_cents

    def test_same_key_from_two_terminals_makes_one_sale(self, file_app):
        with file_app.app_context():
            drawer = drawer_service.create_drawer("PRO-A", "Main")
            session_id = shift_service.start_shift(drawer.id, opening_balance_cents=0).id

        def act(index):
            cart = Cart()
            cart.add_freeform_item("Bandage", 1, 500)
            return payment_service.commit_sale(session_id, cart, cash_cents=500, idempotency_key="shared-key").sale.id

        outcomes = _run_threads(file_app, act, 4)

        assert all(isinstance(o, int) for o in outcomes), outcomes
        assert len(set(outcomes)) == 1
        with file_app.app_context():
            assert db.session.query(Sale).filter_by(session_id=session_id).count() == 1
