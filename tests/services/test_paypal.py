"""PayPalVerifier against httpx.MockTransport: no network."""
import json
from decimal import Decimal

import httpx
import pybreaker
import pytest

from fileclaim.services.payments.paypal import (
    PaymentRejectedError,
    PaymentUpstreamError,
    PayPalVerifier,
    normalize_order_id,
    parse_order,
)

API = "https://api-m.sandbox.paypal.com"


def _order_payload(status="COMPLETED", value="10.00", currency="EUR", captured=True, custom_id=None):
    unit = {"amount": {"value": value, "currency_code": currency}}
    if custom_id:
        unit["custom_id"] = custom_id
    if captured:
        unit["payments"] = {"captures": [{"id": "CAP1", "amount": {"value": value, "currency_code": currency}}]}
    return {"id": "ORDER1", "status": status, "purchase_units": [unit]}


class Recorder:
    """MockTransport handler: oauth always succeeds, order routes built fresh per request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "A21", "expires_in": 32400})
        return self.routes[(request.method, request.url.path)]()


def _verifier(handler, breaker=None, clock=None):
    kwargs = {"breaker": breaker, "client": httpx.Client(transport=httpx.MockTransport(handler))}
    if clock is not None:
        kwargs["clock"] = clock
    return PayPalVerifier("cid", "secret", API, **kwargs)


class TestParseOrder:
    def test_capture_amount_preferred(self):
        payload = _order_payload(value="12.00")
        payload["purchase_units"][0]["amount"]["value"] = "99.00"
        order = parse_order(payload)
        assert order.amount == Decimal("12.00")
        assert order.currency == "EUR"
        assert order.status == "COMPLETED"

    def test_unit_amount_without_capture(self):
        order = parse_order(_order_payload(status="approved", value="10.00", captured=False))
        assert order.status == "APPROVED"
        assert order.amount == Decimal("10.00")

    def test_custom_id(self):
        assert parse_order(_order_payload(custom_id="ebook_b")).custom_id == "ebook_b"

    def test_bad_amount(self):
        assert parse_order(_order_payload(value="ten")).amount is None

    def test_empty_payload(self):
        order = parse_order({})
        assert order.amount is None
        assert order.currency is None
        assert order.status == ""


class TestPayPalVerifier:
    def test_get_order(self):
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(200, json=_order_payload())})
        order = _verifier(handler).get_order("ORDER1")

        assert order.status == "COMPLETED"
        assert order.amount == Decimal("10.00")
        order_request = handler.requests[-1]
        assert order_request.headers["Authorization"] == "Bearer A21"

    def test_capture_sends_request_id(self):
        handler = Recorder({("POST", "/v2/checkout/orders/ORDER1/capture"): lambda: httpx.Response(201, json=_order_payload())})
        order = _verifier(handler).capture_order("ORDER1")

        assert order.status == "COMPLETED"
        capture_request = handler.requests[-1]
        assert capture_request.headers["PayPal-Request-Id"] == "capture-ORDER1"
        assert json.loads(capture_request.content) == {}

    def test_access_token_cached(self):
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(200, json=_order_payload())})
        verifier = _verifier(handler)
        verifier.get_order("ORDER1")
        verifier.get_order("ORDER1")
        assert handler.token_requests == 1

    def test_access_token_refreshed_after_expiry(self):
        now = [1000.0]
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(200, json=_order_payload())})
        verifier = _verifier(handler, clock=lambda: now[0])
        verifier.get_order("ORDER1")
        now[0] += 32400
        verifier.get_order("ORDER1")
        assert handler.token_requests == 2

    def test_not_found_is_rejected(self):
        handler = Recorder({("GET", "/v2/checkout/orders/NOPE"): lambda: httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})})
        with pytest.raises(PaymentRejectedError) as exc:
            _verifier(handler).get_order("NOPE")
        assert exc.value.status_code == 404

    def test_server_error_is_upstream(self):
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(503)})
        with pytest.raises(PaymentUpstreamError):
            _verifier(handler).get_order("ORDER1")

    def test_timeout_is_upstream(self):
        def timeout():
            raise httpx.ReadTimeout("slow")

        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): timeout})
        with pytest.raises(PaymentUpstreamError):
            _verifier(handler).get_order("ORDER1")

    def test_invalid_json_is_upstream(self):
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(200, content=b"<html>")})
        with pytest.raises(PaymentUpstreamError):
            _verifier(handler).get_order("ORDER1")

    def test_bad_credentials_are_upstream(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_client"})

        with pytest.raises(PaymentUpstreamError) as exc:
            _verifier(handler).get_order("ORDER1")
        assert exc.value.status_code == 401


class TestPayPalCircuitBreaker:
    def _breaker(self):
        return pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60, exclude=[PaymentRejectedError])

    def test_opens_after_upstream_failures(self):
        handler = Recorder({("GET", "/v2/checkout/orders/ORDER1"): lambda: httpx.Response(502)})
        verifier = _verifier(handler, breaker=self._breaker())

        for _ in range(2):
            with pytest.raises(PaymentUpstreamError):
                verifier.get_order("ORDER1")

        sent = len(handler.requests)
        with pytest.raises(PaymentUpstreamError, match="circuit open"):
            verifier.get_order("ORDER1")
        assert len(handler.requests) == sent

    def test_rejections_do_not_open(self):
        handler = Recorder({("GET", "/v2/checkout/orders/NOPE"): lambda: httpx.Response(404)})
        breaker = self._breaker()
        verifier = _verifier(handler, breaker=breaker)

        for _ in range(5):
            with pytest.raises(PaymentRejectedError):
                verifier.get_order("NOPE")
        assert breaker.current_state == pybreaker.STATE_CLOSED


class TestOrderIds:
    def test_normalize(self):
        assert normalize_order_id(" 5o190127tn364715t ") == "5O190127TN364715T"
        assert normalize_order_id("ORDER-1") == "ORDER-1"

    def test_rejects_non_ids(self):
        for ref in ("ORDER1?a", "ORDER1#c", "A/B", "../X", "ORDER 1", "", "X" * 65):
            assert normalize_order_id(ref) is None

    def test_order_id_escaped_in_path(self):
        seen = []

        def handler(request):
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "A21", "expires_in": 32400})
            seen.append(request.url.raw_path)
            return httpx.Response(404)

        verifier = _verifier(handler)
        with pytest.raises(PaymentRejectedError):
            verifier.get_order("A/B?x")
        with pytest.raises(PaymentRejectedError):
            verifier.capture_order("A#B")
        assert seen == [b"/v2/checkout/orders/A%2FB%3Fx", b"/v2/checkout/orders/A%23B/capture"]
