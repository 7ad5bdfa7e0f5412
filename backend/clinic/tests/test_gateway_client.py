import httpx
import pytest

from clinic.core.errors import GatewayError
from clinic.core.gateway_client import GatewayClient


def _client(handler):
    return GatewayClient("TOKEN", base_url="https://gw.test", timeout=1, transport=httpx.MockTransport(handler))


def test_create_preference_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        return httpx.Response(201, json={"id": "PREF-9", "init_point": "https://gw.test/pay"})

    data = _client(handler).create_preference({"items": []})

    assert data["id"] == "PREF-9"
    assert seen == {"auth": "Bearer TOKEN", "url": "https://gw.test/checkout/preferences"}


def test_get_payment():
    def handler(request):
        assert request.url.path == "/v1/payments/PAY1"
        return httpx.Response(200, json={"id": "PAY1", "status": "approved"})

    assert _client(handler).get_payment("PAY1")["status"] == "approved"


def test_error_status_raises_gateway_error():
    client = _client(lambda request: httpx.Response(401, json={"message": "invalid token"}))

    with pytest.raises(GatewayError) as exc:
        client.get_account()
    assert exc.value.status_code == 502
    assert "401" in exc.value.message


def test_timeout_raises_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError) as exc:
        _client(handler).get_payment("PAY1")
    assert "Timeout" in exc.value.message


def test_connection_error_raises_gateway_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayError):
        _client(handler).get_account()


def test_preference_without_id_is_an_error():
    with pytest.raises(GatewayError):
        _client(lambda request: httpx.Response(201, json={})).create_preference({})


def test_invalid_json_is_an_error():
    with pytest.raises(GatewayError):
        _client(lambda request: httpx.Response(200, content=b"<html>")).get_account()
