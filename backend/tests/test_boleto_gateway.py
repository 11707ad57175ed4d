"""
Boleto gateway adapter tests (httpx.MockTransport, no network).

Verifies:
- Token caching for static and OAuth credentials
- A 401 clears the cached token and the request is retried once
- Wire statuses map onto domain statuses
- Failures come back inside GatewayResult instead of raising
"""

import json
from datetime import date

import httpx
import pytest

from optiledger.services.boleto_gateway import (
    BoletoGateway,
    BoletoRequest,
    BoletoStatusCode,
    CancelReason,
    GatewayError,
    GatewaySettings,
    Payer,
    map_wire_status,
)


BASE_URL = "https://boletos.test"


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class Recorder:
    """MockTransport handler that replays queued responses per path."""

    def __init__(self, routes):
        self.routes = {key: list(value) for key, value in routes.items()}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes[(request.method, request.url.path)]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def calls(self, method, path):
        return [r for r in self.requests if (r.method, r.url.path) == (method, path)]


def _oauth_settings(**overrides):
    values = dict(
        base_url=BASE_URL,
        client_id="client",
        client_secret="secret",
        cooperative_code="0001",
        post_code="02",
    )
    values.update(overrides)
    return GatewaySettings(**values)


def _token_response(token="tok-1", expires_in=3600):
    return httpx.Response(200, json={"access_token": token, "expires_in": expires_in})


def _request():
    return BoletoRequest(
        payer=Payer(name="Maria Silva", document="12345678909", email="maria@example.com"),
        amount_cents=15050,
        due_date=date(2026, 4, 10),
        our_number="PAY7",
    )


# =============================================================================
# TOKEN CACHE
# =============================================================================


class TestAuthentication:
    def test_static_token_cached_for_a_day(self):
        clock = FakeClock()
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(Recorder({})),
            clock=clock,
        )

        assert gateway.authenticate() == "static"
        assert gateway.cached_token.expires_at == clock.now + 24 * 60 * 60

    def test_oauth_token_reused_until_expiry(self):
        clock = FakeClock()
        recorder = Recorder({("POST", "/oauth/token"): [_token_response("tok-1"), _token_response("tok-2")]})
        gateway = BoletoGateway(_oauth_settings(), transport=httpx.MockTransport(recorder), clock=clock)

        assert gateway.authenticate() == "tok-1"
        assert gateway.authenticate() == "tok-1"
        assert len(recorder.calls("POST", "/oauth/token")) == 1

        form = dict(httpx.QueryParams(recorder.requests[0].content.decode()))
        assert form == {"grant_type": "client_credentials", "client_id": "client", "client_secret": "secret"}

        clock.now += 3600
        assert gateway.authenticate() == "tok-2"
        assert len(recorder.calls("POST", "/oauth/token")) == 2

    def test_auth_failure_raises_gateway_error(self):
        recorder = Recorder({("POST", "/oauth/token"): [httpx.Response(400, json={"error": "invalid_client"})]})
        gateway = BoletoGateway(_oauth_settings(), transport=httpx.MockTransport(recorder))

        with pytest.raises(GatewayError) as exc_info:
            gateway.authenticate()
        assert exc_info.value.code == "AUTH_ERROR"
        assert gateway.test_connection() is False

    def test_missing_credentials(self):
        gateway = BoletoGateway(GatewaySettings(base_url=BASE_URL), transport=httpx.MockTransport(Recorder({})))
        assert gateway.settings.is_configured is False
        assert gateway.test_connection() is False

    def test_401_clears_token_and_retries_once(self):
        status_body = {"nossoNumero": "123", "status": "REGISTRADO", "valor": 150.5}
        recorder = Recorder({
            ("POST", "/oauth/token"): [_token_response("old"), _token_response("new")],
            ("GET", "/boletos/123"): [httpx.Response(401), httpx.Response(200, json=status_body)],
        })
        gateway = BoletoGateway(_oauth_settings(), transport=httpx.MockTransport(recorder))

        result = gateway.get_boleto_status("123")

        assert result.ok
        assert result.data.status == BoletoStatusCode.REGISTERED
        assert result.data.amount_cents == 15050
        auth_headers = [r.headers["Authorization"] for r in recorder.calls("GET", "/boletos/123")]
        assert auth_headers == ["Bearer old", "Bearer new"]
        assert gateway.cached_token.token == "new"


# =============================================================================
# OPERATIONS
# =============================================================================


class TestOperations:
    def test_generate_boleto_wire_format(self):
        receipt_body = {
            "nossoNumero": 98765,
            "codigoBarras": "75691000000000150501234",
            "linhaDigitavel": "75691.23456 00000.000000 1 00000000015050",
            "pdfUrl": "https://boletos.test/pdf/98765",
        }
        recorder = Recorder({("POST", "/boletos"): [httpx.Response(201, json=receipt_body)]})
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static", cooperative_code="0001", post_code="02"),
            transport=httpx.MockTransport(recorder),
        )

        result = gateway.generate_boleto(_request())

        assert result.ok
        assert result.data.nosso_numero == "98765"
        assert result.data.qr_code is None
        sent = json.loads(recorder.requests[0].content)
        assert sent["boleto"] == {
            "seuNumero": "PAY7",
            "valor": 150.5,
            "dataVencimento": "2026-04-10",
            "especieDocumento": "DUPLICATA_MERCANTIL_INDICACAO",
        }
        assert sent["cobranca"] == {"codigoBeneficiario": "0001", "codigoPosto": "02"}
        assert sent["pagador"]["documento"] == "12345678909"
        assert recorder.requests[0].headers["Authorization"] == "Bearer static"

    def test_generate_missing_fields(self):
        recorder = Recorder({("POST", "/boletos"): [httpx.Response(200, json={"nossoNumero": "1"})]})
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(recorder),
        )

        result = gateway.generate_boleto(_request())
        assert not result.ok
        assert result.error.code == "INVALID_RESPONSE"

    def test_http_error_uses_bank_code(self):
        recorder = Recorder({
            ("GET", "/boletos/55"): [httpx.Response(404, json={"code": "BOLETO_NAO_ENCONTRADO", "message": "Not found"})],
        })
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(recorder),
        )

        result = gateway.get_boleto_status("55")
        assert result.error.code == "BOLETO_NAO_ENCONTRADO"
        assert result.error.message == "Not found"

    def test_http_error_without_body(self):
        recorder = Recorder({("GET", "/boletos/55"): [httpx.Response(503, text="down")]})
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(recorder),
        )

        assert gateway.get_boleto_status("55").error.code == "HTTP_503"

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(handler),
        )

        result = gateway.get_boleto_status("55")
        assert result.error.code == "TIMEOUT"

    def test_paid_status(self):
        body = {
            "nossoNumero": "123",
            "status": "LIQUIDADO",
            "valor": "150.50",
            "valorPago": "150.50",
            "dataPagamento": "2026-04-09",
        }
        recorder = Recorder({("GET", "/boletos/123"): [httpx.Response(200, json=body)]})
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(recorder),
        )

        status = gateway.get_boleto_status("123").data
        assert status.status == BoletoStatusCode.PAID
        assert status.paid_amount_cents == 15050
        assert status.paid_at.date() == date(2026, 4, 9)
        assert status.to_dict()["paid_at"] == "2026-04-09T00:00:00Z"

    def test_cancel(self):
        recorder = Recorder({("POST", "/boletos/123/cancelar"): [httpx.Response(200, json={"nossoNumero": "123"})]})
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(recorder),
        )

        result = gateway.cancel_boleto("123", CancelReason.APEDIDODOCLIENTE)

        assert result.ok
        assert result.data.status == BoletoStatusCode.CANCELLED
        assert json.loads(recorder.requests[0].content) == {"motivo": "APEDIDODOCLIENTE"}

    def test_cancel_invalid_reason(self):
        gateway = BoletoGateway(
            GatewaySettings(base_url=BASE_URL, access_token="static"),
            transport=httpx.MockTransport(Recorder({})),
        )
        assert gateway.cancel_boleto("123", "BECAUSE").error.code == "INVALID_REASON"

    def test_describe_hides_credentials(self):
        gateway = BoletoGateway(_oauth_settings(), transport=httpx.MockTransport(Recorder({})))
        info = gateway.describe()
        assert "secret" not in json.dumps(info)
        assert info["auth_mode"] == "oauth"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("REGISTRADO", BoletoStatusCode.REGISTERED),
        ("baixado", BoletoStatusCode.WRITTEN_OFF),
        ("PAGO", BoletoStatusCode.PAID),
        ("LIQUIDADO", BoletoStatusCode.PAID),
        ("VENCIDO", BoletoStatusCode.OVERDUE),
        ("PROTESTADO", BoletoStatusCode.PROTESTED),
        ("CANCELADO", BoletoStatusCode.CANCELLED),
        ("PAID", BoletoStatusCode.PAID),
    ],
)
def test_map_wire_status(raw, expected):
    assert map_wire_status(raw) == expected


def test_map_unknown_status():
    with pytest.raises(GatewayError) as exc_info:
        map_wire_status("EM_ANALISE")
    assert exc_info.value.code == "UNKNOWN_STATUS"
