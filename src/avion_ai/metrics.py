from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

llm_attempts_total = Counter(
    "avion_llm_attempts_total",
    "LLM request attempts by model and outcome",
    labelnames=["model", "outcome"],
)

llm_request_latency_seconds = Histogram(
    "avion_llm_request_latency_seconds",
    "LLM request latency per attempt (seconds)",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["model"],
)

llm_fallback_model_total = Counter(
    "avion_llm_fallback_model_total",
    "Switches to the fallback model",
    labelnames=["reason"],
)

decisions_total = Counter(
    "avion_decisions_total",
    "Decision method calls by kind and outcome",
    labelnames=["kind", "outcome"],
)

proxy_requests_total = Counter(
    "avion_proxy_requests_total",
    "Requests handled by the LLM proxy endpoint",
    labelnames=["status"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
