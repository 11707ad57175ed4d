"""
HTTP surface tests.

Verifies:
- Every ledger endpoint requires the X-User-Id actor header
- Error kinds map to 400 / 404 / 409 / 502
- The main flows work end to end through the JSON API
"""

import httpx
import pytest

from optiledger.services.boleto_gateway import BoletoGateway, GatewaySettings


# =============================================================================
# AUTHENTICATION (401)
# =============================================================================


class TestActorRequired:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/cash-registers/open"),
            ("POST", "/api/cash-registers/close"),
            ("GET", "/api/cash-registers/current"),
            ("GET", "/api/cash-registers"),
            ("POST", "/api/payments"),
            ("GET", "/api/payments"),
            ("PATCH", "/api/payments/1/check-status"),
            ("GET", "/api/debts/customers/1"),
            ("POST", "/api/debts/recalculate"),
            ("POST", "/api/boletos/sync"),
        ],
    )
    def test_requires_actor(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_blank_actor(self, client):
        resp = client.get("/api/payments", headers={"X-User-Id": "   "})
        assert resp.status_code == 401


# =============================================================================
# CASH REGISTER
# =============================================================================


class TestRegisterRoutes:
    def test_open_close_flow(self, client, auth_headers):
        resp = client.post("/api/cash-registers/open", json={"opening_balance_cents": 10000}, headers=auth_headers)
        assert resp.status_code == 201
        session_id = resp.get_json()["register"]["id"]

        resp = client.post("/api/cash-registers/open", json={"opening_balance_cents": 0}, headers=auth_headers)
        assert resp.status_code == 409

        resp = client.post(
            "/api/payments",
            json={"type": "sale", "payment_method": "cash", "amount_cents": 5000},
            headers=auth_headers,
        )
        assert resp.status_code == 201

        resp = client.get("/api/cash-registers/current", headers=auth_headers)
        assert resp.get_json()["register"]["sales"]["cash"] == 5000

        resp = client.delete(f"/api/cash-registers/{session_id}", headers=auth_headers)
        assert resp.status_code == 409

        resp = client.post("/api/cash-registers/close", json={"closing_balance_cents": 14000}, headers=auth_headers)
        assert resp.status_code == 200
        closed = resp.get_json()["register"]
        assert closed["expected_balance_cents"] == 15000
        assert closed["variance_cents"] == -1000

        resp = client.get("/api/cash-registers/current", headers=auth_headers)
        assert resp.status_code == 404

        resp = client.get(f"/api/cash-registers/{session_id}/summary", headers=auth_headers)
        assert resp.get_json()["sales_by_method"] == {"cash": 5000}

        resp = client.delete(f"/api/cash-registers/{session_id}", headers=auth_headers)
        assert resp.status_code == 200
        resp = client.get("/api/cash-registers/deleted", headers=auth_headers)
        assert [r["id"] for r in resp.get_json()["items"]] == [session_id]

    def test_invalid_opening_balance(self, client, auth_headers):
        resp = client.post("/api/cash-registers/open", json={"opening_balance_cents": "12.50"}, headers=auth_headers)
        assert resp.status_code == 400

    def test_close_without_open(self, client, auth_headers):
        resp = client.post("/api/cash-registers/close", json={"closing_balance_cents": 0}, headers=auth_headers)
        assert resp.status_code == 404

    def test_list_with_pagination(self, client, auth_headers, open_register):
        resp = client.get("/api/cash-registers?page=1&limit=10", headers=auth_headers)
        body = resp.get_json()
        assert body["pagination"]["total"] == 1
        assert body["items"][0]["status"] == "open"

    def test_daily_summary_bad_date(self, client, auth_headers):
        resp = client.get("/api/cash-registers/daily-summary?date=yesterday", headers=auth_headers)
        assert resp.status_code == 400


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPaymentRoutes:
    def test_create_without_open_register(self, client, auth_headers):
        resp = client.post(
            "/api/payments",
            json={"type": "sale", "payment_method": "cash", "amount_cents": 100},
            headers=auth_headers,
        )
        assert resp.status_code == 404

    def test_validation_error(self, client, auth_headers, open_register):
        resp = client.post(
            "/api/payments",
            json={"type": "expense", "payment_method": "cash", "amount_cents": 100},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert "category" in resp.get_json()["error"]

    def test_non_object_body(self, client, auth_headers, open_register):
        resp = client.post("/api/payments", json=[1, 2], headers=auth_headers)
        assert resp.status_code == 400

    def test_cancel_twice(self, client, auth_headers, open_register):
        resp = client.post(
            "/api/payments",
            json={"type": "sale", "payment_method": "pix", "amount_cents": 2500},
            headers=auth_headers,
        )
        payment = resp.get_json()["payment"]
        assert payment["created_by"] == "cashier-1"

        resp = client.post(f"/api/payments/{payment['id']}/cancel", json={"reason": "Erro"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["payment"]["status"] == "cancelled"

        resp = client.post(f"/api/payments/{payment['id']}/cancel", headers=auth_headers)
        assert resp.status_code == 409

        resp = client.get("/api/cash-registers/current", headers=auth_headers)
        assert resp.get_json()["register"]["sales"]["total"] == 0

    def test_check_status_flow(self, client, auth_headers, open_register):
        resp = client.post(
            "/api/payments",
            json={
                "type": "sale",
                "payment_method": "check",
                "amount_cents": 20000,
                "check": {
                    "bank": "Itau",
                    "check_number": "889",
                    "check_date": "2026-03-01",
                    "account_holder": "Maria Silva",
                    "branch": "0001",
                    "account_number": "12345-6",
                },
            },
            headers=auth_headers,
        )
        payment_id = resp.get_json()["payment"]["id"]

        resp = client.patch(f"/api/payments/{payment_id}/check-status", json={"status": "rejected"}, headers=auth_headers)
        assert resp.status_code == 400

        resp = client.get("/api/payments/checks?status=pending", headers=auth_headers)
        assert [p["id"] for p in resp.get_json()["items"]] == [payment_id]

        resp = client.patch(
            f"/api/payments/{payment_id}/check-status",
            json={"status": "compensated"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["payment"]["check"]["compensation_status"] == "compensated"

        resp = client.patch(
            f"/api/payments/{payment_id}/check-status",
            json={"status": "rejected", "rejection_reason": "Sem fundos"},
            headers=auth_headers,
        )
        assert resp.status_code == 409

    def test_settle_and_daily(self, client, auth_headers, open_register):
        resp = client.post(
            "/api/payments",
            json={
                "type": "sale",
                "payment_method": "promissory_note",
                "amount": "45.00",
                "promissory_note": {"number": "NP-10"},
            },
            headers=auth_headers,
        )
        payment_id = resp.get_json()["payment"]["id"]

        resp = client.post(f"/api/payments/{payment_id}/settle", json={"paid_at": "2026-03-10"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["payment"]["status"] == "completed"

        resp = client.get("/api/payments/daily", headers=auth_headers)
        assert resp.get_json()["totals_by_method"]["promissory_note"] == 4500

    def test_get_delete(self, client, auth_headers, open_register):
        resp = client.post(
            "/api/payments",
            json={"type": "sale", "payment_method": "debit", "amount_cents": 700},
            headers=auth_headers,
        )
        payment_id = resp.get_json()["payment"]["id"]

        assert client.get(f"/api/payments/{payment_id}", headers=auth_headers).status_code == 200
        assert client.delete(f"/api/payments/{payment_id}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/payments/{payment_id}", headers=auth_headers).status_code == 404

        resp = client.get("/api/payments/deleted", headers=auth_headers)
        assert resp.get_json()["count"] == 1

    def test_list_bad_filter(self, client, auth_headers):
        resp = client.get("/api/payments?customer_id=abc", headers=auth_headers)
        assert resp.status_code == 400


# =============================================================================
# DEBTS
# =============================================================================


class TestDebtRoutes:
    def test_customer_debt(self, client, auth_headers, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=8000, payment_entry_cents=3000)

        resp = client.get(f"/api/debts/customers/{customer.id}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total_debt_cents"] == 5000

    def test_unknown_legacy_client(self, client, auth_headers):
        resp = client.get("/api/debts/legacy-clients/999", headers=auth_headers)
        assert resp.status_code == 404

    def test_recalculate(self, client, auth_headers, make_customer, make_order):
        customer = make_customer()
        make_order(customer=customer, final_price_cents=8000)

        resp = client.post("/api/debts/recalculate", json={"customer_id": customer.id}, headers=auth_headers)
        assert resp.get_json()["updated"] == 1

        resp = client.post("/api/debts/recalculate", headers=auth_headers)
        assert resp.get_json() == {"updated": 0, "clients": []}

        resp = client.post(
            "/api/debts/recalculate",
            json={"customer_id": 1, "legacy_client_id": 1},
            headers=auth_headers,
        )
        assert resp.status_code == 400


# =============================================================================
# BOLETOS & SYSTEM
# =============================================================================


class TestBoletoRoutes:
    def test_gateway_failure_is_502(self, app, client, auth_headers, open_register, make_customer, monkeypatch):
        def handler(request):
            return httpx.Response(503, json={"code": "INDISPONIVEL", "message": "Fora do ar"})

        gateway = BoletoGateway(
            GatewaySettings(base_url="https://boletos.test", access_token="static"),
            transport=httpx.MockTransport(handler),
        )
        monkeypatch.setitem(app.extensions, "boleto_gateway", gateway)

        customer = make_customer()
        resp = client.post(
            "/api/payments",
            json={
                "type": "sale",
                "payment_method": "bank_slip",
                "amount_cents": 5000,
                "customer_id": customer.id,
                "bank_slip": {"code": "BS-9"},
            },
            headers=auth_headers,
        )
        payment_id = resp.get_json()["payment"]["id"]

        resp = client.post(
            f"/api/boletos/payments/{payment_id}/issue",
            json={"due_date": "2026-04-10"},
            headers=auth_headers,
        )
        assert resp.status_code == 502
        body = resp.get_json()
        assert body["code"] == "INDISPONIVEL"
        assert body["payment"]["status"] == "pending"
        assert body["payment"]["bank_slip"]["last_error_code"] == "INDISPONIVEL"

        resp = client.get("/api/boletos/ABC/status", headers=auth_headers)
        assert resp.status_code == 502

    def test_health_does_not_leak_token(self, client):
        resp = client.get("/api/boletos/health")
        assert "static-test-token" not in resp.get_data(as_text=True)

    def test_sync_stats(self, client, auth_headers):
        resp = client.get("/api/boletos/sync/stats", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total_bank_slips"] == 0


def test_service_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"
