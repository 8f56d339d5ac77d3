"""
HTTP transport between the driver app and the tracking API.

Failures are classified so callers can react differently:

- `NetworkError`: transient (timeout, refused connection, 5xx, open
  circuit). Location pushes go to the offline queue.
- `OrderNotFoundError`: the server does not know the order. Samples for it
  can never be delivered.
- `RequestRejectedError`: any other refusal of a well-formed call.

Requests carry no credentials; possession of the order code is the
capability.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from icap.mobile.errors import (
    NetworkError, OrderNotFoundError, RequestRejectedError
)
from icap.mobile.models import (
    HealthStatus, LocationAck, LocationSample, StatusUpdateResult, ValidationResult
)
from icap.mobile.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "ORDER_NOT_FOUND"


def _segment(value: str) -> str:
    return quote(value, safe="")


class TransportClient:

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._owns_client = client is None
        # An injected client keeps its own base URL and timeout
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.breaker = breaker or CircuitBreaker(tracked=(NetworkError,))

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    def set_base_url(self, base_url: str) -> None:
        """Point the client at another server; the circuit starts closed."""
        self._client.base_url = base_url
        self.breaker.reset_state()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {type(exc).__name__}") from exc

        if response.status_code >= 500:
            raise NetworkError(f"{method} {path} answered {response.status_code}")
        return response

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.breaker.call(self._send, method, path, **kwargs)
        except CircuitOpenError as exc:
            raise NetworkError("Servidor indisponível (circuito aberto)") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(f"Resposta inválida do servidor ({response.status_code})") from exc
        if not isinstance(data, dict):
            raise NetworkError("Resposta inesperada do servidor")
        return data

    def _check_envelope(self, response: httpx.Response, order_code: str) -> Dict[str, Any]:
        """Raise for business failures; return the body of a successful call."""
        if response.status_code == 404:
            raise OrderNotFoundError(order_code)
        data = self._json(response)
        error_code = data.get("error_code")

        if error_code == ORDER_NOT_FOUND:
            raise OrderNotFoundError(order_code)
        if response.is_client_error or data.get("success") is False:
            raise RequestRejectedError(
                data.get("message") or f"Requisição recusada ({response.status_code})",
                error_code=error_code,
            )
        return data

    async def validate_order(self, order_code: str) -> ValidationResult:
        """
        Ask the server whether an order code exists.

        A 404 or `valid: false` is an ordinary invalid result.
        """
        response = await self._request("GET", f"/api/orders/validate/{_segment(order_code)}")

        if response.status_code == 404:
            return ValidationResult(valid=False, order_id=order_code, message="Pedido não encontrado no sistema")
        if response.is_client_error:
            raise RequestRejectedError(f"Validação recusada ({response.status_code})")

        data = self._json(response)
        logger.debug("Validation response", extra={"order_code": order_code, "valid": data.get("valid")})

        if data.get("valid") is not True:
            return ValidationResult(
                valid=False,
                order_id=data.get("orderId") or order_code,
                message=data.get("message") or "Pedido não encontrado no sistema",
            )

        return ValidationResult(
            valid=True,
            order_id=data.get("orderId") or order_code,
            message=data.get("message") or "",
            status=data.get("status"),
            details=data.get("details"),
        )

    async def update_status(self, order_code: str, status: str) -> StatusUpdateResult:
        response = await self._request(
            "PUT",
            f"/api/orders/{_segment(order_code)}/status",
            json={"status": status},
        )
        data = self._check_envelope(response, order_code)

        if data.get("auditRecorded") is False:
            logger.warning("Server did not record the status audit point", extra={"order_code": order_code})

        return StatusUpdateResult(
            order_id=data.get("orderId") or order_code,
            new_status=data.get("newStatus") or status,
            timestamp=data.get("timestamp"),
            audit_recorded=data.get("auditRecorded", True),
        )

    async def send_location(self, sample: LocationSample) -> LocationAck:
        response = await self._request("POST", "/api/tracking/location", json=sample.to_payload())
        data = self._check_envelope(response, sample.order_id)
        return LocationAck(
            timestamp=data.get("timestamp"),
            duplicate=bool(data.get("duplicate")),
            point_id=data.get("pointId"),
        )

    async def health_check(self) -> HealthStatus:
        """Probe the server directly, bypassing the circuit. Never raises."""
        try:
            response = await self._client.get("/api/health")
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            return HealthStatus(ok=False, detail=str(exc) or type(exc).__name__)

        ok = response.status_code == 200 and isinstance(data, dict) and data.get("status") == "ok"
        if ok:
            self.breaker.reset_state()
        return HealthStatus(
            ok=ok,
            database=data.get("database") if isinstance(data, dict) else None,
            detail=None if ok else f"HTTP {response.status_code}",
        )
