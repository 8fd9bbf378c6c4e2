import json

import httpx
import pytest

from avion_ai.config import DecisionLayerConfig

pytest.importorskip("fastapi")

from avion_ai.proxy import create_app  # noqa: E402

VENDOR_URL = "https://vendor.test/openai/v1/chat/completions"
MESSAGES = [{"role": "user", "content": "hi"}]


def _cfg(**overrides) -> DecisionLayerConfig:
    values = dict(groq_api_key="gsk_serverkey123456", vendor_url=VENDOR_URL, enable_metrics=False)
    values.update(overrides)
    return DecisionLayerConfig(**values)


def _vendor(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"id": "chatcmpl-1", "choices": [{"message": {"content": "hello"}}]})


@pytest.mark.asyncio
async def test_proxy_injects_credential_and_applies_defaults():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content.decode("utf-8"))
        return _ok(request)

    app = create_app(_cfg(), client=_vendor(handler))
    async with _client(app) as client:
        resp = await client.post("/api/groq-proxy", json={"messages": MESSAGES})

    assert resp.status_code == 200
    assert resp.json() == {"id": "chatcmpl-1", "choices": [{"message": {"content": "hello"}}]}
    assert seen["url"] == VENDOR_URL
    assert seen["auth"] == "Bearer gsk_serverkey123456"
    assert seen["body"] == {
        "messages": MESSAGES,
        "model": "llama3-8b-8192",
        "temperature": 0.7,
        "max_tokens": 1000,
        "top_p": 1,
        "stream": False,
    }


@pytest.mark.asyncio
async def test_proxy_forwards_caller_parameters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content.decode("utf-8")))
        return _ok(request)

    app = create_app(_cfg(), client=_vendor(handler))
    async with _client(app) as client:
        await client.post(
            "/api/groq-proxy",
            json={"messages": MESSAGES, "model": "llama-3.1-8b-instant", "temperature": 0.2, "max_tokens": 64},
        )
    assert seen["model"] == "llama-3.1-8b-instant"
    assert seen["temperature"] == 0.2
    assert seen["max_tokens"] == 64


@pytest.mark.parametrize("body", [{"messages": "hi"}, {"model": "m"}, {"messages": {"role": "user"}}])
@pytest.mark.asyncio
async def test_proxy_rejects_non_array_messages_without_calling_vendor(body):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return _ok(request)

    app = create_app(_cfg(), client=_vendor(handler))
    async with _client(app) as client:
        resp = await client.post("/api/groq-proxy", json=body)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid request: messages array required"}
    assert calls["n"] == 0


@pytest.mark.asyncio
async def test_proxy_rejects_invalid_json_body():
    app = create_app(_cfg(), client=_vendor(_ok))
    async with _client(app) as client:
        resp = await client.post(
            "/api/groq-proxy", content=b"{not json", headers={"Content-Type": "application/json"}
        )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_proxy_without_server_key_returns_500():
    app = create_app(_cfg(groq_api_key=None), client=_vendor(_ok))
    async with _client(app) as client:
        resp = await client.post("/api/groq-proxy", json={"messages": MESSAGES})
    assert resp.status_code == 500
    assert resp.json()["error"] == "API key not configured"
    assert "GROQ_API_KEY" in resp.json()["message"]


@pytest.mark.asyncio
async def test_proxy_forwards_vendor_error_status_and_body():
    vendor_body = {"error": {"message": "The model `x` has been decommissioned", "code": "model_decommissioned"}}

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=vendor_body)

    app = create_app(_cfg(), client=_vendor(handler))
    async with _client(app) as client:
        resp = await client.post("/api/groq-proxy", json={"messages": MESSAGES})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Groq API error: 400"
    assert json.loads(resp.json()["message"]) == vendor_body


@pytest.mark.asyncio
async def test_proxy_transport_failure_returns_500():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    app = create_app(_cfg(), client=_vendor(handler))
    async with _client(app) as client:
        resp = await client.post("/api/groq-proxy", json={"messages": MESSAGES})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"
    assert "name resolution failed" in resp.json()["message"]


@pytest.mark.asyncio
async def test_proxy_preflight_and_cors_headers():
    app = create_app(_cfg(), client=_vendor(_ok))
    async with _client(app) as client:
        preflight = await client.options("/api/groq-proxy")
        post = await client.post("/api/groq-proxy", json={"messages": "bad"})

    assert preflight.status_code == 200
    for resp in (preflight, post):
        assert resp.headers["access-control-allow-origin"] == "*"
        assert resp.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert resp.headers["access-control-allow-headers"] == "Content-Type, Authorization"


@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
@pytest.mark.asyncio
async def test_proxy_rejects_other_methods_with_405(method):
    app = create_app(_cfg(), client=_vendor(_ok))
    async with _client(app) as client:
        resp = await client.request(method, "/api/groq-proxy")
    assert resp.status_code == 405
    assert resp.json() == {"error": "Method not allowed"}


@pytest.mark.asyncio
async def test_proxy_enforces_max_body_size_413():
    app = create_app(_cfg(max_request_body_bytes=60), client=_vendor(_ok))
    async with _client(app) as client:
        payload = b'{"messages":[{"role":"user","content":"' + (b"x" * 200) + b'"}]}'
        resp = await client.post(
            "/api/groq-proxy", content=payload, headers={"Content-Type": "application/json"}
        )
    assert resp.status_code == 413


@pytest.mark.asyncio
async def test_healthz_echoes_request_id_and_security_headers():
    app = create_app(_cfg(), client=_vendor(_ok))
    async with _client(app) as client:
        resp = await client.get("/healthz", headers={"X-Request-Id": "req_12345678"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers.get("X-Request-Id") == "req_12345678"
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert "access-control-allow-origin" not in resp.headers


@pytest.mark.asyncio
async def test_dispatcher_through_proxy_substitutes_decommissioned_model():
    from avion_ai.dispatcher import RequestDispatcher
    from avion_ai.retry import RetryPolicy

    vendor_models = []

    def handler(request: httpx.Request) -> httpx.Response:
        model = json.loads(request.content.decode("utf-8"))["model"]
        vendor_models.append(model)
        if model == "old-model":
            return httpx.Response(400, json={"error": {"message": "model `old-model` has been decommissioned"}})
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"status": "ok"}'}}]})

    server_cfg = _cfg()
    app = create_app(server_cfg, client=_vendor(handler))

    client_cfg = DecisionLayerConfig(
        groq_api_key=None,
        use_direct_api=False,
        proxy_url="http://test/api/groq-proxy",
        primary_model="old-model",
        fallback_model="new-model",
    )
    dispatcher = RequestDispatcher(client_cfg, client=_client(app))

    async def no_sleep(_: float) -> None:
        return None

    result = await RetryPolicy(dispatcher, max_retries=3, sleeper=no_sleep).run(MESSAGES)
    await dispatcher._client.aclose()

    assert result.content == '{"status": "ok"}'
    assert result.used_fallback_model is True
    assert vendor_models == ["old-model", "new-model"]
