"""
PaymentVerifier: PayPal Orders v2 over httpx sync client.

get_order(id) / capture_order(id) return a PaymentOrder with status, captured
amount and currency. Errors:
- PaymentRejectedError: provider answered with a 4xx (unknown order, not capturable).
- PaymentUpstreamError: transport failure, timeout, 5xx or circuit open.
Both derive from PaymentVerifierError. Only PaymentUpstreamError counts
against the circuit breaker.
"""
from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from urllib.parse import quote

import httpx
import pybreaker

from fileclaim.services.payments.models import PaymentOrder
from fileclaim.utils.metrics import payment_request_duration_seconds, payment_requests_total

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 60

ORDER_ID_RE = re.compile(r"[A-Z0-9-]{1,64}")


class PaymentVerifierError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PaymentRejectedError(PaymentVerifierError):
    pass


class PaymentUpstreamError(PaymentVerifierError):
    pass


def normalize_order_id(ref: str) -> str | None:
    """Canonical PayPal order id (upper-case), or None when ref cannot be one."""
    order_id = ref.strip().upper()
    return order_id if ORDER_ID_RE.fullmatch(order_id) else None


class PaymentVerifier(ABC):
    @abstractmethod
    def get_order(self, order_id: str) -> PaymentOrder:
        raise NotImplementedError

    @abstractmethod
    def capture_order(self, order_id: str) -> PaymentOrder:
        raise NotImplementedError


def parse_order(data: dict[str, Any]) -> PaymentOrder:
    """
    Reduce a PayPal order payload. Amount/currency come from the first capture
    when present (what was actually charged), else from the purchase unit.
    """
    units = data.get("purchase_units") or [{}]
    unit = units[0] if isinstance(units[0], dict) else {}
    amount_obj = unit.get("amount") or {}
    captures = (unit.get("payments") or {}).get("captures") or []
    if captures and isinstance(captures[0], dict) and captures[0].get("amount"):
        amount_obj = captures[0]["amount"]

    amount: Decimal | None = None
    raw_value = amount_obj.get("value")
    if raw_value is not None:
        try:
            amount = Decimal(str(raw_value))
        except InvalidOperation:
            amount = None

    return PaymentOrder(
        id=str(data.get("id", "")),
        status=str(data.get("status", "")).upper(),
        amount=amount,
        currency=(amount_obj.get("currency_code") or None),
        custom_id=unit.get("custom_id") or None,
    )


class PayPalVerifier(PaymentVerifier):
    """
    Sync PayPal client. OAuth access token is cached until shortly before expiry.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str,
        timeout: float = 10.0,
        breaker: pybreaker.CircuitBreaker | None = None,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._breaker = breaker
        self._client = client
        self._clock = clock
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def get_order(self, order_id: str) -> PaymentOrder:
        data = self._call("get_order", "GET", f"/v2/checkout/orders/{quote(order_id, safe='')}")
        return parse_order(data)

    def capture_order(self, order_id: str) -> PaymentOrder:
        # PayPal-Request-Id makes a retried capture return the first result.
        data = self._call(
            "capture_order",
            "POST",
            f"/v2/checkout/orders/{quote(order_id, safe='')}/capture",
            json={},
            headers={"PayPal-Request-Id": f"capture-{order_id}"},
        )
        return parse_order(data)

    def _call(self, method_name: str, http_method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        start = time.time()
        try:
            if self._breaker is not None:
                result = self._breaker.call(self._request, http_method, path, **kwargs)
            else:
                result = self._request(http_method, path, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            self._record(method_name, "circuit_open", time.time() - start)
            raise PaymentUpstreamError("payment provider circuit open") from e
        except PaymentUpstreamError:
            self._record(method_name, "upstream_error", time.time() - start)
            raise
        except PaymentRejectedError:
            self._record(method_name, "rejected", time.time() - start)
            raise
        self._record(method_name, "success", time.time() - start)
        return result

    def _record(self, method: str, status: str, duration: float) -> None:
        payment_requests_total.labels(method=method, status=status).inc()
        payment_request_duration_seconds.labels(method=method).observe(duration)

    def _request(self, http_method: str, path: str, headers: dict[str, str] | None = None, **kwargs: Any) -> dict[str, Any]:
        all_headers = {"Authorization": f"Bearer {self._get_access_token()}"}
        if headers:
            all_headers.update(headers)
        try:
            resp = self.client.request(http_method, f"{self._api_base}{path}", headers=all_headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("paypal_transport_error", extra={"path": path, "error": type(e).__name__})
            raise PaymentUpstreamError(type(e).__name__) from e
        return self._json_or_raise(resp, path)

    def _get_access_token(self) -> str:
        if self._access_token and self._clock() < self._access_token_expires_at:
            return self._access_token
        try:
            resp = self.client.post(
                f"{self._api_base}/v1/oauth2/token",
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise PaymentUpstreamError(type(e).__name__) from e
        try:
            data = self._json_or_raise(resp, "/v1/oauth2/token")
        except PaymentRejectedError as e:
            # bad credentials are an operator problem, not a buyer one
            raise PaymentUpstreamError(str(e), status_code=e.status_code) from e
        token = data.get("access_token")
        if not token:
            raise PaymentUpstreamError("no access_token in oauth response")
        expires_in = int(data.get("expires_in", 0) or 0)
        self._access_token = token
        self._access_token_expires_at = self._clock() + max(0, expires_in - TOKEN_REFRESH_MARGIN_SECONDS)
        return token

    @staticmethod
    def _json_or_raise(resp: httpx.Response, path: str) -> dict[str, Any]:
        if resp.status_code >= 500:
            logger.warning("paypal_server_error", extra={"path": path, "status_code": resp.status_code})
            raise PaymentUpstreamError(f"HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            logger.warning("paypal_request_rejected", extra={"path": path, "status_code": resp.status_code})
            raise PaymentRejectedError(f"HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise PaymentUpstreamError("invalid JSON from payment provider") from e
        if not isinstance(data, dict):
            raise PaymentUpstreamError("unexpected payload from payment provider")
        return data

    def close(self) -> None:
        """Close httpx client."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})
            finally:
                self._client = None
