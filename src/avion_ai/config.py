from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .errors import ConfigurationError

GROQ_CHAT_COMPLETIONS_URL = "https://api.groq.com/openai/v1/chat/completions"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class DecisionLayerConfig(BaseModel):
    # Credentials / routing
    groq_api_key: str | None = Field(default_factory=lambda: os.getenv("GROQ_API_KEY"))
    use_direct_api: bool = Field(default_factory=lambda: _env_bool("AVION_DIRECT_API"))
    vendor_url: str = Field(default_factory=lambda: os.getenv("GROQ_API_URL", GROQ_CHAT_COMPLETIONS_URL))
    proxy_url: str = Field(
        default_factory=lambda: os.getenv("AVION_PROXY_URL", "http://127.0.0.1:8000/api/groq-proxy")
    )

    # Models
    primary_model: str = Field(default_factory=lambda: os.getenv("AVION_PRIMARY_MODEL", "llama-3.1-8b-instant"))
    fallback_model: str = Field(
        default_factory=lambda: os.getenv("AVION_FALLBACK_MODEL", "llama-3.3-70b-versatile")
    )

    # Retry behavior
    max_retries: int = Field(default_factory=lambda: int(os.getenv("AVION_MAX_RETRIES", "3")), ge=1)
    retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AVION_RETRY_DELAY_SECONDS", "1.0")), ge=0
    )
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AVION_REQUEST_TIMEOUT_SECONDS", "30")), gt=0
    )

    # Local persistence
    store_path: str | None = Field(default_factory=lambda: os.getenv("AVION_STORE_PATH", "avion_state.json"))
    store_fernet_key: str | None = Field(default_factory=lambda: os.getenv("AVION_STORE_FERNET_KEY"))

    # Proxy server
    proxy_path: str = Field(default_factory=lambda: os.getenv("AVION_PROXY_PATH", "/api/groq-proxy"))
    proxy_default_model: str = Field(
        default_factory=lambda: os.getenv("AVION_PROXY_DEFAULT_MODEL", "llama3-8b-8192")
    )
    proxy_default_temperature: float = 0.7
    proxy_default_max_tokens: int = 1000
    cors_allow_origin: str = Field(default_factory=lambda: os.getenv("CORS_ALLOW_ORIGIN", "*"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    def endpoint_url(self) -> str:
        return self.vendor_url if self.use_direct_api else self.proxy_url

    def require_api_key(self) -> str:
        if not self.groq_api_key:
            raise ConfigurationError("GROQ_API_KEY is required to call the Groq API directly.")
        return self.groq_api_key

    def secrets(self) -> list[str]:
        return [s for s in (self.groq_api_key, self.store_fernet_key) if s]
