# Overview: HTTP adapter for the cooperative bank's boleto (bank slip) API.

"""
Boleto Gateway Adapter

WHY: Bank slips are registered, queried and cancelled at the bank. This
module is the only place that knows the wire format, the credentials and
the token lifecycle.

DESIGN:
- One httpx.Client per gateway instance (connection pooling, shared timeout)
- Token cached in an explicit CachedToken; refreshed when missing or expired
- A 401 from the bank clears the cache (response event hook) and the request
  is retried once with a fresh token
- Public operations never raise for transport or HTTP failures: they return
  a GatewayResult carrying either data or a GatewayError
- Beneficiary codes are always taken from settings, never from callers
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx

from optiledger.money import from_cents, to_cents
from optiledger.time_utils import parse_iso_datetime, to_utc_z


logger = logging.getLogger(__name__)

T = TypeVar("T")

STATIC_TOKEN_TTL_SECONDS = 24 * 60 * 60
# Refresh a little before the bank's expiry so in-flight requests keep a valid token
TOKEN_EXPIRY_MARGIN_SECONDS = 30


# =============================================================================
# TYPES
# =============================================================================

class GatewayError(Exception):
    """Transport, HTTP or protocol failure talking to the boleto gateway."""

    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class CancelReason(str, Enum):
    ACERTOS = "ACERTOS"
    APEDIDODOCLIENTE = "APEDIDODOCLIENTE"
    PAGODIRETOAOCLIENTE = "PAGODIRETOAOCLIENTE"
    SUBSTITUICAO = "SUBSTITUICAO"
    FALTADESOLUCAO = "FALTADESOLUCAO"
    APEDIDODOBENEFICIARIO = "APEDIDODOBENEFICIARIO"


class BoletoStatusCode(str, Enum):
    REGISTERED = "REGISTERED"
    WRITTEN_OFF = "WRITTEN_OFF"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    PROTESTED = "PROTESTED"
    CANCELLED = "CANCELLED"


# Bank wire status -> domain status
_WIRE_STATUS = {
    "REGISTRADO": BoletoStatusCode.REGISTERED,
    "BAIXADO": BoletoStatusCode.WRITTEN_OFF,
    "PAGO": BoletoStatusCode.PAID,
    "LIQUIDADO": BoletoStatusCode.PAID,
    "VENCIDO": BoletoStatusCode.OVERDUE,
    "PROTESTADO": BoletoStatusCode.PROTESTED,
    "CANCELADO": BoletoStatusCode.CANCELLED,
}


def map_wire_status(raw: Optional[str]) -> BoletoStatusCode:
    if not raw:
        raise GatewayError("INVALID_RESPONSE", "Boleto status missing from gateway response")
    key = str(raw).strip().upper()
    if key in _WIRE_STATUS:
        return _WIRE_STATUS[key]
    try:
        return BoletoStatusCode(key)
    except ValueError:
        raise GatewayError("UNKNOWN_STATUS", f"Unknown boleto status: {raw}", {"status": raw})


@dataclass(frozen=True)
class GatewaySettings:
    base_url: str
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    cooperative_code: str = ""
    post_code: str = ""
    environment: str = "sandbox"
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config) -> "GatewaySettings":
        return cls(
            base_url=config.get("BOLETO_API_BASE_URL", ""),
            client_id=config.get("BOLETO_CLIENT_ID", ""),
            client_secret=config.get("BOLETO_CLIENT_SECRET", ""),
            access_token=config.get("BOLETO_ACCESS_TOKEN", ""),
            cooperative_code=config.get("BOLETO_COOPERATIVE_CODE", ""),
            post_code=config.get("BOLETO_POST_CODE", ""),
            environment=config.get("BOLETO_ENVIRONMENT", "sandbox"),
            timeout=float(config.get("BOLETO_TIMEOUT_SECONDS", 30)),
        )

    @property
    def is_configured(self) -> bool:
        has_credentials = bool(self.access_token) or bool(self.client_id and self.client_secret)
        return bool(self.base_url) and has_credentials


@dataclass
class CachedToken:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.token) and now < self.expires_at


@dataclass(frozen=True)
class Payer:
    name: str
    document: str  # CPF or CNPJ, digits only
    person_type: str = "PESSOA_FISICA"
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    email: str | None = None
    phone: str | None = None

    def to_wire(self) -> dict:
        wire = {
            "tipoPessoa": self.person_type,
            "documento": self.document,
            "nome": self.name,
        }
        optional = {
            "endereco": self.address,
            "cidade": self.city,
            "uf": self.state,
            "cep": self.zip_code,
            "email": self.email,
            "telefone": self.phone,
        }
        wire.update({k: v for k, v in optional.items() if v})
        return wire


@dataclass(frozen=True)
class BoletoRequest:
    payer: Payer
    amount_cents: int
    due_date: date
    our_number: str  # "seuNumero": our own reference for the slip
    document_kind: str = "DUPLICATA_MERCANTIL_INDICACAO"
    messages: tuple[str, ...] = ()


@dataclass
class BoletoReceipt:
    nosso_numero: str
    barcode: str
    digitable_line: str
    pdf_url: str | None = None
    qr_code: str | None = None


@dataclass
class BoletoStatus:
    nosso_numero: str
    status: BoletoStatusCode
    raw_status: str
    our_number: str | None = None
    amount_cents: int | None = None
    paid_amount_cents: int | None = None
    due_date: datetime | None = None
    paid_at: datetime | None = None
    written_off_at: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("due_date", "paid_at", "written_off_at"):
            data[key] = to_utc_z(data[key]) if data[key] else None
        return data


@dataclass
class CancelReceipt:
    nosso_numero: str
    status: BoletoStatusCode
    cancelled_at: datetime | None = None


@dataclass
class GatewayResult(Generic[T]):
    data: Optional[T] = None
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "GatewayResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: GatewayError) -> "GatewayResult[T]":
        return cls(error=error)


def _parse_money(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return to_cents(value)
    except ValueError:
        raise GatewayError("INVALID_RESPONSE", f"Invalid amount in gateway response: {value!r}")


def _parse_when(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise GatewayError("INVALID_RESPONSE", f"Invalid date in gateway response: {value!r}")


# =============================================================================
# GATEWAY
# =============================================================================

class BoletoGateway:
    """
    Client for the bank's boleto API.

    Args:
        settings: Connection and beneficiary settings
        transport: Optional httpx transport (tests pass httpx.MockTransport)
        clock: Time source in seconds, used for token expiry
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._clock = clock
        self._token: CachedToken | None = None
        self._client = httpx.Client(
            base_url=settings.base_url,
            timeout=settings.timeout,
            headers={"Accept": "application/json"},
            transport=transport,
            event_hooks={"response": [self._on_response]},
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Token handling
    # -------------------------------------------------------------------------

    def _on_response(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            logger.info("Boleto gateway returned 401; clearing cached token")
            self._token = None

    @property
    def cached_token(self) -> CachedToken | None:
        return self._token

    def authenticate(self) -> str:
        """
        Return a usable token, fetching one when the cache is empty or stale.

        A static access token from settings is cached for 24 hours; otherwise
        an OAuth client-credentials token is requested.

        Raises:
            GatewayError: AUTH_ERROR if no token can be obtained
        """
        now = self._clock()
        cached = self._token
        if cached is not None and cached.is_valid(now):
            return cached.token

        if self.settings.access_token:
            self._token = CachedToken(self.settings.access_token, now + STATIC_TOKEN_TTL_SECONDS)
            return self._token.token

        if not (self.settings.client_id and self.settings.client_secret):
            raise GatewayError("AUTH_ERROR", "Boleto gateway credentials are not configured")

        try:
            response = self._client.post(
                "/oauth/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                },
            )
        except httpx.HTTPError as exc:
            raise GatewayError("AUTH_ERROR", "Failed to authenticate with boleto gateway", {"reason": str(exc)})

        if response.status_code >= 400:
            raise GatewayError(
                "AUTH_ERROR",
                "Failed to authenticate with boleto gateway",
                {"status_code": response.status_code},
            )

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = float(body.get("expires_in", 0))
        except (ValueError, KeyError, TypeError):
            raise GatewayError("AUTH_ERROR", "Invalid token response from boleto gateway")

        ttl = max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        self._token = CachedToken(token, now + ttl)
        logger.info("Boleto gateway token refreshed (expires in %ss)", int(expires_in))
        return token

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _send(self, method: str, path: str, *, json: dict | None = None) -> httpx.Response:
        token = self.authenticate()
        return self._client.request(
            method,
            path,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )

    def _request(self, method: str, path: str, *, json: dict | None = None) -> dict:
        """
        Authenticated request returning the decoded JSON body.

        Raises:
            GatewayError: TIMEOUT, NETWORK_ERROR, HTTP_<status> (or the bank's
                own error code) and INVALID_RESPONSE
        """
        try:
            response = self._send(method, path, json=json)
            if response.status_code == 401:
                # Token cleared by the response hook; one retry with a fresh token
                response = self._send(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise GatewayError("TIMEOUT", "Boleto gateway timed out", {"reason": str(exc)})
        except httpx.HTTPError as exc:
            raise GatewayError("NETWORK_ERROR", "Could not reach boleto gateway", {"reason": str(exc)})

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.status_code >= 400:
            details = body if isinstance(body, dict) else {"body": response.text[:500]}
            raise GatewayError(
                str(details.get("code") or f"HTTP_{response.status_code}"),
                str(details.get("message") or f"Boleto gateway returned HTTP {response.status_code}"),
                details,
            )
        if not isinstance(body, dict):
            raise GatewayError("INVALID_RESPONSE", "Boleto gateway returned a non-JSON body")
        return body

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def generate_boleto(self, request: BoletoRequest) -> GatewayResult[BoletoReceipt]:
        payload = {
            "pagador": request.payer.to_wire(),
            "boleto": {
                "seuNumero": request.our_number,
                "valor": float(from_cents(request.amount_cents)),
                "dataVencimento": request.due_date.isoformat(),
                "especieDocumento": request.document_kind,
            },
            "cobranca": {
                "codigoBeneficiario": self.settings.cooperative_code,
                "codigoPosto": self.settings.post_code,
            },
        }
        if request.messages:
            payload["boleto"]["mensagens"] = list(request.messages)

        try:
            body = self._request("POST", "/boletos", json=payload)
            receipt = BoletoReceipt(
                nosso_numero=str(body["nossoNumero"]),
                barcode=body["codigoBarras"],
                digitable_line=body["linhaDigitavel"],
                pdf_url=body.get("pdfUrl"),
                qr_code=body.get("qrCode"),
            )
        except KeyError as exc:
            return GatewayResult.failure(
                GatewayError("INVALID_RESPONSE", f"Missing field in boleto response: {exc.args[0]}")
            )
        except GatewayError as err:
            logger.warning("Boleto generation failed for %s: %s %s", request.our_number, err.code, err.message)
            return GatewayResult.failure(err)

        logger.info("Boleto %s registered for %s", receipt.nosso_numero, request.our_number)
        return GatewayResult.success(receipt)

    def get_boleto_status(self, nosso_numero: str) -> GatewayResult[BoletoStatus]:
        try:
            body = self._request("GET", f"/boletos/{nosso_numero}")
            raw_status = body.get("status")
            status = BoletoStatus(
                nosso_numero=str(body.get("nossoNumero") or nosso_numero),
                status=map_wire_status(raw_status),
                raw_status=str(raw_status),
                our_number=body.get("seuNumero"),
                amount_cents=_parse_money(body.get("valor")),
                paid_amount_cents=_parse_money(body.get("valorPago")),
                due_date=_parse_when(body.get("dataVencimento")),
                paid_at=_parse_when(body.get("dataPagamento")),
                written_off_at=_parse_when(body.get("dataBaixa")),
            )
        except GatewayError as err:
            logger.warning("Boleto status query failed for %s: %s %s", nosso_numero, err.code, err.message)
            return GatewayResult.failure(err)
        return GatewayResult.success(status)

    def cancel_boleto(self, nosso_numero: str, reason: CancelReason) -> GatewayResult[CancelReceipt]:
        try:
            reason = CancelReason(reason)
        except ValueError:
            return GatewayResult.failure(GatewayError("INVALID_REASON", f"Invalid cancel reason: {reason}"))

        try:
            body = self._request("POST", f"/boletos/{nosso_numero}/cancelar", json={"motivo": reason.value})
            receipt = CancelReceipt(
                nosso_numero=str(body.get("nossoNumero") or nosso_numero),
                status=BoletoStatusCode.CANCELLED,
                cancelled_at=_parse_when(body.get("dataCancelamento")),
            )
        except GatewayError as err:
            logger.warning("Boleto cancel failed for %s: %s %s", nosso_numero, err.code, err.message)
            return GatewayResult.failure(err)
        logger.info("Boleto %s cancelled (%s)", nosso_numero, reason.value)
        return GatewayResult.success(receipt)

    def test_connection(self) -> bool:
        """True when a token can be obtained. Never exposes credentials."""
        try:
            self.authenticate()
        except GatewayError as err:
            logger.warning("Boleto gateway connection test failed: %s", err.code)
            return False
        return True

    def describe(self) -> dict:
        """Non-sensitive view of the configuration, for health endpoints."""
        return {
            "environment": self.settings.environment,
            "base_url": self.settings.base_url,
            "configured": self.settings.is_configured,
            "auth_mode": "static_token" if self.settings.access_token else "oauth",
        }


def init_boleto_gateway(app) -> BoletoGateway:
    """Build the app's gateway from config and register it in app.extensions."""
    gateway = BoletoGateway(GatewaySettings.from_config(app.config))
    app.extensions["boleto_gateway"] = gateway
    return gateway


def get_gateway(app=None) -> BoletoGateway:
    if app is None:
        from flask import current_app
        app = current_app
    return app.extensions["boleto_gateway"]
