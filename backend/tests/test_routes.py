# Overview: Pytest coverage for the drawer, session and sale HTTP endpoints.

"""
API Route Tests

Verifies:
- Owner context is required on every drawer/session/sale endpoint
- Owners only see their own drawers, sessions and sales
- Error taxonomy maps to 400/404/409/422
- Replayed commits answer 200 with the original sale
"""

from medpos.extensions import db
from medpos.models import Sale


CONSULTATION_LINE = {
    "kind": "catalog",
    "service_ref": "SVC-CONSULT",
    "description": "Consultation",
    "quantity": 1,
    "unit_price_cents": 100000,
    "insurance_flag": True,
    "reimbursement_rate": 80,
}


def _open_drawer(client, headers, name="Main", opening=0):
    drawer = client.post('/api/drawers', json={"name": name}, headers=headers).get_json()["drawer"]
    resp = client.post(f'/api/drawers/{drawer["id"]}/sessions', json={"opening_balance_cents": opening}, headers=headers)
    return drawer, resp.get_json()["session"]


class TestSystem:
    def test_ping(self, client, db_session):
        resp = client.get('/api/ping')
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "ok"
        assert body["database"]["status"] == "healthy"

    def test_ping_needs_no_owner(self, client, db_session):
        assert client.get('/api/ping').status_code == 200


class TestOwnerContext:
    def test_missing_owner_header(self, client, db_session):
        resp = client.get('/api/drawers')
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "UNAUTHORIZED"

    def test_blank_owner_header(self, client, db_session):
        assert client.get('/api/sessions', headers={'X-Owner-Id': '  '}).status_code == 401

    def test_overlong_owner_header(self, client, db_session):
        assert client.get('/api/sessions', headers={'X-Owner-Id': 'x' * 65}).status_code == 401

    def test_drawers_scoped_to_owner(self, client, headers, other_headers, db_session):
        _open_drawer(client, headers)

        assert len(client.get('/api/drawers', headers=headers).get_json()["drawers"]) == 1
        assert client.get('/api/drawers', headers=other_headers).get_json()["drawers"] == []

    def test_other_owner_cannot_open_drawer(self, client, headers, other_headers, db_session):
        drawer = client.post('/api/drawers', json={"name": "Main"}, headers=headers).get_json()["drawer"]
        resp = client.post(f'/api/drawers/{drawer["id"]}/sessions', json={}, headers=other_headers)
        assert resp.status_code == 404


class TestDrawerRoutes:
    def test_create_and_list(self, client, headers, db_session):
        resp = client.post('/api/drawers', json={"name": "Reception", "code": "front"}, headers=headers)
        assert resp.status_code == 201
        assert resp.get_json()["drawer"]["code"] == "FRONT"

        drawers = client.get('/api/drawers', headers=headers).get_json()["drawers"]
        assert drawers[0]["current_session"] is None

    def test_create_requires_name(self, client, headers, db_session):
        resp = client.post('/api/drawers', json={}, headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_second_session_is_drawer_busy(self, client, headers, db_session):
        drawer, session = _open_drawer(client, headers)

        resp = client.post(f'/api/drawers/{drawer["id"]}/sessions', json={}, headers=headers)

        assert resp.status_code == 409
        assert "drawer busy" in resp.get_json()["error"]
        listed = client.get('/api/drawers', headers=headers).get_json()["drawers"]
        assert listed[0]["current_session"]["id"] == session["id"]

    def test_unknown_drawer(self, client, headers, db_session):
        assert client.post('/api/drawers/999/sessions', json={}, headers=headers).status_code == 404


class TestSessionRoutes:
    def test_full_shift(self, client, headers, db_session):
        _, session = _open_drawer(client, headers, opening=0)
        sid = session["id"]

        resp = client.post(f'/api/sessions/{sid}/sales', json={
            "lines": [{"kind": "freeform", "description": "Bandage", "quantity": 2, "unit_price_cents": 50000}],
            "cash_cents": 100000,
        }, headers=headers)
        assert resp.status_code == 201
        assert resp.get_json()["replayed"] is False

        resp = client.post(f'/api/sessions/{sid}/sales', json={
            "lines": [CONSULTATION_LINE],
            "cash_cents": 20000,
            "customer_ref": "PAT-42",
        }, headers=headers)
        sale = resp.get_json()["sale"]
        assert sale["payment"]["insurance_covered_cents"] == 80000
        assert sale["patient_due_cents"] == 20000
        assert sale["customer_ref"] == "PAT-42"

        report = client.get(f'/api/sessions/{sid}/report', headers=headers).get_json()["report"]
        assert report["expected_cash_cents"] == 120000
        assert report["variance_cents"] is None

        resp = client.post(f'/api/sessions/{sid}/close', json={"counted_cash_cents": 115000}, headers=headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["session"]["status"] == "closed"
        assert body["report"]["variance_cents"] == -5000

        resp = client.post(f'/api/sessions/{sid}/close', json={"counted_cash_cents": 115000}, headers=headers)
        assert resp.status_code == 409

    def test_list_sessions(self, client, headers, other_headers, db_session):
        drawer, first = _open_drawer(client, headers)
        client.post(f'/api/sessions/{first["id"]}/close', json={"counted_cash_cents": 0}, headers=headers)
        second = client.post(f'/api/drawers/{drawer["id"]}/sessions', json={}, headers=headers).get_json()["session"]

        body = client.get('/api/sessions', headers=headers).get_json()
        assert [s["id"] for s in body["sessions"]] == [second["id"], first["id"]]
        assert body["count"] == 2

        active = client.get('/api/sessions?active_only=true', headers=headers).get_json()
        assert [s["id"] for s in active["sessions"]] == [second["id"]]

        assert client.get('/api/sessions?limit=1', headers=headers).get_json()["count"] == 1
        assert client.get('/api/sessions?limit=0', headers=headers).status_code == 400
        assert client.get('/api/sessions', headers=other_headers).get_json()["count"] == 0

    def test_report_other_owner(self, client, headers, other_headers, db_session):
        _, session = _open_drawer(client, headers)
        assert client.get(f'/api/sessions/{session["id"]}/report', headers=other_headers).status_code == 404

    def test_close_requires_counted_cash(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        resp = client.post(f'/api/sessions/{session["id"]}/close', json={}, headers=headers)
        assert resp.status_code == 400


class TestSaleRoutes:
    def test_insufficient_payment_is_422(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)

        resp = client.post(f'/api/sessions/{session["id"]}/sales', json={
            "lines": [CONSULTATION_LINE], "cash_cents": 15000,
        }, headers=headers)

        assert resp.status_code == 422
        body = resp.get_json()
        assert body["code"] == "INSUFFICIENT_PAYMENT"
        assert body["shortfall_cents"] == 5000

    def test_empty_cart_is_400(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        resp = client.post(f'/api/sessions/{session["id"]}/sales', json={"lines": [], "cash_cents": 0}, headers=headers)
        assert resp.status_code == 400

    def test_body_required(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        resp = client.post(f'/api/sessions/{session["id"]}/sales', data="nope", headers=headers)
        assert resp.status_code == 400

    def test_closed_session_is_409(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        client.post(f'/api/sessions/{session["id"]}/close', json={"counted_cash_cents": 0}, headers=headers)

        resp = client.post(f'/api/sessions/{session["id"]}/sales', json={
            "lines": [CONSULTATION_LINE], "cash_cents": 20000,
        }, headers=headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "CONFLICT"

    def test_idempotent_replay_returns_200(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        body = {"lines": [CONSULTATION_LINE], "cash_cents": 20000}
        key_headers = dict(headers, **{"Idempotency-Key": "till-1-0001"})

        first = client.post(f'/api/sessions/{session["id"]}/sales', json=body, headers=key_headers)
        second = client.post(f'/api/sessions/{session["id"]}/sales', json=body, headers=key_headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["sale"]["id"] == first.get_json()["sale"]["id"]
        assert db.session.query(Sale).count() == 1

    def test_key_in_body_is_accepted(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        body = {"lines": [CONSULTATION_LINE], "cash_cents": 20000, "idempotency_key": "body-key"}

        client.post(f'/api/sessions/{session["id"]}/sales', json=body, headers=headers)
        resp = client.get('/api/sales/by-key/body-key', headers=headers)

        assert resp.status_code == 200
        assert resp.get_json()["sale"]["idempotency_key"] == "body-key"

    def test_key_reuse_with_other_body_is_409(self, client, headers, db_session):
        _, session = _open_drawer(client, headers)
        key_headers = dict(headers, **{"Idempotency-Key": "dup"})

        client.post(f'/api/sessions/{session["id"]}/sales', json={"lines": [CONSULTATION_LINE], "cash_cents": 20000}, headers=key_headers)
        resp = client.post(f'/api/sessions/{session["id"]}/sales', json={"lines": [CONSULTATION_LINE], "cash_cents": 30000}, headers=key_headers)

        assert resp.status_code == 409

    def test_sale_lookup_scoped_to_owner(self, client, headers, other_headers, db_session):
        _, session = _open_drawer(client, headers)
        key_headers = dict(headers, **{"Idempotency-Key": "mine"})
        sale = client.post(f'/api/sessions/{session["id"]}/sales', json={
            "lines": [CONSULTATION_LINE], "cash_cents": 20000,
        }, headers=key_headers).get_json()["sale"]

        assert client.get(f'/api/sales/{sale["id"]}', headers=headers).get_json()["sale"]["lines"][0]["insurance_cents"] == 80000
        assert client.get(f'/api/sales/{sale["id"]}', headers=other_headers).status_code == 404
        assert client.get('/api/sales/by-key/mine', headers=other_headers).status_code == 404
        assert client.get('/api/sales/by-key/unknown', headers=headers).status_code == 404

    def test_list_session_sales(self, client, headers, other_headers, db_session):
        _, session = _open_drawer(client, headers)
        for _ in range(3):
            client.post(f'/api/sessions/{session["id"]}/sales', json={
                "lines": [CONSULTATION_LINE], "cash_cents": 20000,
            }, headers=headers)

        body = client.get(f'/api/sessions/{session["id"]}/sales?per_page=2', headers=headers).get_json()
        assert body["count"] == 2
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["has_next"] is True

        assert client.get(f'/api/sessions/{session["id"]}/sales', headers=other_headers).status_code == 404
