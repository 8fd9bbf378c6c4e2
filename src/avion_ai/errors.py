from __future__ import annotations


class DecisionLayerError(Exception):
    """Base error for decision layer failures."""


class ConfigurationError(DecisionLayerError):
    pass


class RequestError(DecisionLayerError):
    """HTTP or network failure talking to the LLM endpoint. Retryable."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestTimeoutError(RequestError):
    """Per-attempt deadline exceeded."""


class UpstreamProtocolError(RequestError):
    """Unexpected upstream response shape / contract mismatch."""


class ModelUnavailableError(RequestError):
    """The requested model is no longer served (e.g. decommissioned)."""


class RetriesExhaustedError(DecisionLayerError):
    def __init__(self, attempts: int, last_error: BaseException, *, history: list | None = None):
        super().__init__(f"LLM request failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        self.history = history or []


class ResponseParseError(DecisionLayerError):
    """Model output is not a JSON object."""


class DecisionValidationError(ResponseParseError):
    """Model output parsed but is missing required fields."""

    def __init__(self, message: str, *, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []
