import json

import httpx
import pytest

from app.providers import factory
from app.providers.base import Failed, Pending, Settled
from app.providers.gateway import HttpPaymentGateway
from app.providers.http import HttpClient
from app.providers.mock import MockGateway


BASE = "https://gateway.test/v1"


def _gateway(handler, **kw):
    client = HttpClient(timeout_s=1.0, transport=httpx.MockTransport(handler))
    return HttpPaymentGateway(base_url=BASE, api_key="k-123", http=client, **kw)


def test_transfer_settled_sends_expected_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"status": "settled", "reference": "tx-1"})

    result = _gateway(handler).transfer("https://w/a", "https://w/pool", 100, "round 1")

    assert isinstance(result, Settled)
    assert result.reference == "tx-1"
    assert seen["url"] == f"{BASE}/transfers"
    assert seen["headers"]["Authorization"] == "Bearer k-123"
    assert seen["headers"]["Idempotency-Key"]
    assert seen["body"] == {
        "source": "https://w/a",
        "destination": "https://w/pool",
        "amount": "100",
        "memo": "round 1",
    }


def test_transfer_api_key_header_mode():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Api-Key"] == "k-123"
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"status": "completed", "id": "tx-2"})

    result = _gateway(handler, auth_mode="x-api-key").transfer("a", "b", 5)
    assert result == Settled(reference="tx-2", response={"status": "completed", "id": "tx-2"})


def test_transfer_pending_with_interaction():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            202,
            json={
                "status": "requires_interaction",
                "continue": {"token": "cont-xyz"},
                "interact": {"redirect": "https://auth.test/interact/cont-xyz"},
            },
        )

    result = _gateway(handler).transfer("a", "b", 5)
    assert isinstance(result, Pending)
    assert result.continuation_token == "cont-xyz"
    assert result.authorization_url == "https://auth.test/interact/cont-xyz"


def test_pending_without_token_is_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(202, json={"status": "pending"})

    result = _gateway(handler).transfer("a", "b", 5)
    assert isinstance(result, Failed)
    assert result.retryable is False


@pytest.mark.parametrize(
    "status_code,retryable",
    [(400, False), (402, False), (429, True), (503, True)],
)
def test_error_status_maps_retryable(status_code, retryable):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "nope"})

    result = _gateway(handler).transfer("a", "b", 5)
    assert isinstance(result, Failed)
    assert result.reason == "nope"
    assert result.retryable is retryable
    assert result.response["http_status"] == status_code


def test_timeout_is_retryable_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = _gateway(handler).transfer("a", "b", 5)
    assert result == Failed(reason="Gateway timeout", retryable=True)


def test_connection_error_is_retryable_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    result = _gateway(handler).transfer("a", "b", 5)
    assert isinstance(result, Failed)
    assert result.retryable is True
    assert "refused" in result.reason


def test_unconfigured_gateway_fails_without_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = HttpClient(transport=httpx.MockTransport(handler))
    gw = HttpPaymentGateway(base_url="", api_key="k", http=client)
    assert gw.transfer("a", "b", 5) == Failed(reason="Gateway not configured", retryable=False)
    assert calls == []


def test_continue_transfer_settles_with_token_reference():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success"})

    result = _gateway(handler).continue_transfer("cont-xyz", "interact-ref")
    assert result == Settled(reference="cont-xyz", response={"status": "success"})
    assert seen["url"] == f"{BASE}/transfers/cont-xyz/continue"
    assert seen["body"] == {"proof": "interact-ref"}


def test_continue_transfer_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "grant rejected"})

    result = _gateway(handler).continue_transfer("cont-xyz", "bad")
    assert isinstance(result, Failed)
    assert result.reason == "grant rejected"
    assert result.retryable is False


def test_factory_modes():
    factory.reset_gateway_cache()
    try:
        gw = factory.get_gateway("mock")
        assert isinstance(gw, MockGateway)
        assert factory.get_gateway("MOCK") is gw

        assert isinstance(factory.get_gateway("http"), HttpPaymentGateway)

        with pytest.raises(ValueError):
            factory.get_gateway("carrier-pigeon")
    finally:
        factory.reset_gateway_cache()
