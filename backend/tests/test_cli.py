# Overview: Pytest coverage for the drawer and session CLI commands.

import pytest

from medpos.services import payment_service
from medpos.services.cart import Cart


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestDrawerCommands:
    def test_create_and_list(self, runner, db_session):
        result = runner.invoke(args=["drawers", "create", "--owner-id", "PRO-A", "--name", "Reception"])
        assert result.exit_code == 0
        assert "Created drawer RECEPTION" in result.output

        result = runner.invoke(args=["drawers", "list", "--owner-id", "PRO-A"])
        assert "RECEPTION" in result.output

    def test_duplicate_code_fails(self, runner, db_session):
        runner.invoke(args=["drawers", "create", "--owner-id", "PRO-A", "--name", "A", "--code", "X"])
        result = runner.invoke(args=["drawers", "create", "--owner-id", "PRO-A", "--name", "B", "--code", "X"])
        assert result.exit_code != 0
        assert "already exists" in result.output

    def test_empty_list(self, runner, db_session):
        result = runner.invoke(args=["drawers", "list", "--owner-id", "PRO-Z"])
        assert "No drawers found." in result.output


class TestSessionCommands:
    def test_start_close_report(self, runner, drawer):
        result = runner.invoke(args=["sessions", "start", "--drawer-id", str(drawer.id), "--opening-balance", "10000"])
        assert result.exit_code == 0
        assert "with float 100.00" in result.output

        session_id = drawer.sessions[0].id
        cart = Cart()
        cart.add_freeform_item("Bandage", 1, 2500)
        payment_service.commit_sale(session_id, cart, cash_cents=3000)

        result = runner.invoke(args=["sessions", "report", "--session-id", str(session_id)])
        assert "Transactions:        1" in result.output
        assert "Expected cash:       125.00" in result.output

        result = runner.invoke(args=["sessions", "close", "--session-id", str(session_id), "--counted-cash", "12000"])
        assert result.exit_code == 0
        assert "Variance: -5.00" in result.output

        result = runner.invoke(args=["sessions", "list", "--owner-id", "PRO-A"])
        assert "closed" in result.output
        assert "-5.00" in result.output

    def test_busy_drawer_fails(self, runner, open_session):
        result = runner.invoke(args=["sessions", "start", "--drawer-id", str(open_session.drawer_id)])
        assert result.exit_code != 0
        assert "drawer busy" in result.output

    def test_report_unknown_session(self, runner, db_session):
        result = runner.invoke(args=["sessions", "report", "--session-id", "999"])
        assert result.exit_code != 0
        assert "Session not found" in result.output
