from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog

try:
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse, Response
except ImportError as e:  # pragma: no cover
    raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

from .config import DecisionLayerConfig
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, proxy_requests_total

log = structlog.get_logger()


def build_upstream_body(body: dict[str, Any], cfg: DecisionLayerConfig) -> dict[str, Any]:
    return {
        "messages": body["messages"],
        "model": body.get("model") or cfg.proxy_default_model,
        "temperature": body.get("temperature", cfg.proxy_default_temperature),
        "max_tokens": body.get("max_tokens", cfg.proxy_default_max_tokens),
        "top_p": 1,
        "stream": False,
    }


def create_app(cfg: DecisionLayerConfig | None = None, *, client: httpx.AsyncClient | None = None):
    """Server-side proxy that adds the Groq credential to browser requests."""
    cfg = cfg or DecisionLayerConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    owns_client = client is None
    upstream = client or httpx.AsyncClient(timeout=cfg.request_timeout_seconds)

    def _respond(status_code: int, content: Any) -> JSONResponse:
        proxy_requests_total.labels(status=str(status_code)).inc()
        return JSONResponse(status_code=status_code, content=content)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            if owns_client:
                await upstream.aclose()

    app = FastAPI(
        title="avion-groq-proxy",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    install_middlewares(app, cfg=cfg)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.options(cfg.proxy_path)
    async def groq_proxy_preflight() -> Response:
        proxy_requests_total.labels(status="200").inc()
        return Response(status_code=200)

    @app.api_route(cfg.proxy_path, methods=["GET", "PUT", "PATCH", "DELETE"])
    async def groq_proxy_method_not_allowed() -> JSONResponse:
        return _respond(405, {"error": "Method not allowed"})

    @app.post(cfg.proxy_path)
    async def groq_proxy(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
            return _respond(400, {"error": "Invalid request: messages array required"})

        if not cfg.groq_api_key:
            log.error("proxy_api_key_missing")
            return _respond(
                500,
                {"error": "API key not configured", "message": "GROQ_API_KEY environment variable is missing"},
            )

        payload = build_upstream_body(body, cfg)
        log.info("proxy_forwarding", model=payload["model"], messages=len(payload["messages"]))
        try:
            resp = await upstream.post(
                cfg.vendor_url,
                headers={"Authorization": f"Bearer {cfg.groq_api_key}", "Content-Type": "application/json"},
                json=payload,
            )
        except httpx.HTTPError as e:
            log.error("proxy_upstream_failed", error=str(e), error_type=type(e).__name__)
            return _respond(500, {"error": "Internal server error", "message": str(e) or type(e).__name__})

        if not resp.is_success:
            log.warning("proxy_upstream_error", status_code=resp.status_code, body=resp.text[:500])
            return _respond(
                resp.status_code,
                {
                    "error": f"Groq API error: {resp.status_code}",
                    "message": resp.text or "Unknown error from Groq API",
                },
            )

        try:
            data = resp.json()
        except ValueError:
            return _respond(502, {"error": "Invalid upstream response", "message": resp.text[:500]})
        return _respond(200, data)

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("avion_ai.proxy:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
