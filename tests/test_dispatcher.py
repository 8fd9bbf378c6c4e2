import asyncio
import json

import httpx
import pytest

from avion_ai.config import DecisionLayerConfig
from avion_ai.dispatcher import RequestDispatcher, is_model_unavailable
from avion_ai.errors import (
    ConfigurationError,
    ModelUnavailableError,
    RequestError,
    RequestTimeoutError,
    UpstreamProtocolError,
)

VENDOR_URL = "https://example.test/openai/v1/chat/completions"
PROXY_URL = "https://app.example.test/api/groq-proxy"
MESSAGES = [{"role": "system", "content": "Respond with JSON."}, {"role": "user", "content": "hi"}]


def _cfg(**overrides) -> DecisionLayerConfig:
    values = dict(
        groq_api_key="gsk_testkey123456",
        use_direct_api=True,
        vendor_url=VENDOR_URL,
        proxy_url=PROXY_URL,
        primary_model="primary-model",
        fallback_model="fallback-model",
        request_timeout_seconds=5,
    )
    values.update(overrides)
    return DecisionLayerConfig(**values)


def _completion(text: str) -> dict:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}


def _dispatcher(cfg: DecisionLayerConfig, handler) -> RequestDispatcher:
    return RequestDispatcher(cfg, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_direct_dispatch_sends_bearer_and_full_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json=_completion('{"status": "ok"}'))

    d = _dispatcher(_cfg(), handler)
    out = await d.dispatch(MESSAGES, temperature=0.3, max_tokens=500)

    assert out == '{"status": "ok"}'
    assert seen["url"] == VENDOR_URL
    assert seen["auth"] == "Bearer gsk_testkey123456"
    assert seen["content_type"] == "application/json"
    assert seen["body"] == {
        "model": "primary-model",
        "messages": MESSAGES,
        "temperature": 0.3,
        "max_tokens": 500,
        "top_p": 1,
        "stream": False,
    }


@pytest.mark.asyncio
async def test_proxy_dispatch_omits_authorization():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=_completion("ok"))

    d = _dispatcher(_cfg(use_direct_api=False, groq_api_key=None), handler)
    assert await d.dispatch(MESSAGES) == "ok"
    assert seen["url"] == PROXY_URL
    assert seen["auth"] is None


@pytest.mark.asyncio
async def test_fallback_flag_selects_fallback_model():
    models = []

    def handler(request: httpx.Request) -> httpx.Response:
        models.append(json.loads(request.content.decode("utf-8"))["model"])
        return httpx.Response(200, json=_completion("ok"))

    d = _dispatcher(_cfg(), handler)
    await d.dispatch(MESSAGES)
    await d.dispatch(MESSAGES, use_fallback_model=True)
    assert models == ["primary-model", "fallback-model"]


@pytest.mark.asyncio
async def test_direct_mode_without_key_raises_configuration_error_before_io():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json=_completion("ok"))

    d = _dispatcher(_cfg(groq_api_key=None), handler)
    with pytest.raises(ConfigurationError):
        await d.dispatch(MESSAGES)
    assert calls["n"] == 0


@pytest.mark.asyncio
async def test_vendor_error_carries_status_and_message():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"message": "Service overloaded"}})

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(RequestError) as exc:
        await d.dispatch(MESSAGES)
    assert not isinstance(exc.value, ModelUnavailableError)
    assert exc.value.status_code == 503
    assert "503" in str(exc.value)
    assert "Service overloaded" in str(exc.value)


@pytest.mark.asyncio
async def test_error_without_json_body_uses_unknown_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(RequestError) as exc:
        await d.dispatch(MESSAGES)
    assert "Unknown error" in str(exc.value)


@pytest.mark.asyncio
async def test_decommissioned_vendor_error_raises_model_unavailable():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "error": {
                    "message": "The model `primary-model` has been decommissioned and is no longer supported.",
                    "code": "model_decommissioned",
                }
            },
        )

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(ModelUnavailableError) as exc:
        await d.dispatch(MESSAGES)
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_decommissioned_proxy_error_raises_model_unavailable():
    vendor_body = json.dumps({"error": {"message": "model has been decommissioned"}})

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Groq API error: 400", "message": vendor_body})

    d = _dispatcher(_cfg(use_direct_api=False), handler)
    with pytest.raises(ModelUnavailableError):
        await d.dispatch(MESSAGES)


@pytest.mark.asyncio
async def test_network_error_raises_request_error_without_status():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(RequestError) as exc:
        await d.dispatch(MESSAGES)
    assert exc.value.status_code is None


@pytest.mark.asyncio
async def test_httpx_timeout_raises_request_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(RequestTimeoutError):
        await d.dispatch(MESSAGES)


@pytest.mark.asyncio
async def test_attempt_deadline_raises_request_timeout_error():
    async def handler(_: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.5)
        return httpx.Response(200, json=_completion("late"))

    d = _dispatcher(_cfg(request_timeout_seconds=0.01), handler)
    with pytest.raises(RequestTimeoutError):
        await d.dispatch(MESSAGES)


@pytest.mark.asyncio
async def test_success_without_choices_raises_upstream_protocol_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    d = _dispatcher(_cfg(), handler)
    with pytest.raises(UpstreamProtocolError):
        await d.dispatch(MESSAGES)


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda _: httpx.Response(200)))
    d = RequestDispatcher(_cfg(), client=client)
    await d.close()
    assert not client.is_closed
    await client.aclose()


def test_is_model_unavailable_is_case_insensitive():
    assert is_model_unavailable("Model DECOMMISSIONED")
    assert not is_model_unavailable("rate limit reached")
