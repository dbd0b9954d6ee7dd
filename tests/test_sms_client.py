import json

import httpx
import pytest

from app.utils.sms_client import TextBeeClient


def _client(handler):
    return TextBeeClient(
        api_url="https://sms.example.com/api/v1/",
        device_id="device-1",
        api_key="secret-key",
        transport=httpx.MockTransport(handler),
    )


async def test_send_sms_posts_to_device_endpoint():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": {"success": True}})

    result = await _client(handler).send_sms(["923001234567"], "Your code is 1234")

    assert result == {"data": {"success": True}}
    request = seen[0]
    assert str(request.url) == "https://sms.example.com/api/v1/gateway/devices/device-1/send-sms"
    assert request.headers["x-api-key"] == "secret-key"
    assert json.loads(request.content) == {"recipients": ["923001234567"], "message": "Your code is 1234"}


async def test_transient_error_is_retried_once():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"ok": True})

    assert await _client(handler).send_sms(["923001234567"], "hi") == {"ok": True}
    assert len(calls) == 2


async def test_client_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).send_sms(["923001234567"], "hi")
    assert len(calls) == 1


async def test_unconfigured_client_refuses_to_send():
    client = TextBeeClient(device_id="", api_key="")
    assert not client.is_configured
    with pytest.raises(RuntimeError):
        await client.send_sms(["923001234567"], "hi")
