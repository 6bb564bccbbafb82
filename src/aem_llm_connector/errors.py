"""Error taxonomy for the connector.

Every failure that can leave the core is a ``ConnectorError`` carrying a
user-facing summary, the technical detail and a suggested remedy.  The
``kind`` tag is assigned once at the HTTP boundary
(:func:`classify_transport_error`) and the orchestrator branches on it
instead of inspecting message text.
"""

from __future__ import annotations

import enum

import httpx


class FailureKind(enum.Enum):
    """Coarse failure classes the orchestrator reacts to."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    MODEL_NOT_FOUND = "model_not_found"
    OTHER = "other"


class ConnectorError(Exception):
    """Base class for all connector failures."""

    kind: FailureKind = FailureKind.OTHER

    def __init__(
        self,
        summary: str,
        technical_detail: str = "",
        suggestion: str = "",
    ) -> None:
        super().__init__(f"{summary}: {technical_detail}" if technical_detail else summary)
        self.summary = summary
        self.technical_detail = technical_detail
        self.suggestion = suggestion
        # Model the failing call targeted; filled in by the orchestrator.
        self.model = ""

    @property
    def retryable(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Transport-level failures
# ---------------------------------------------------------------------------

class ConnectivityError(ConnectorError):
    """The model server could not be reached."""

    kind = FailureKind.CONNECTION_REFUSED

    @classmethod
    def for_url(cls, api_url: str, cause: str = "") -> ConnectivityError:
        detail = f"Failed to connect to {api_url}"
        if cause:
            detail += f" ({cause})"
        return cls(
            "Cannot connect to LLM service",
            detail,
            "Please ensure Ollama is running. Try: 'ollama serve' or check "
            "if the service is accessible",
        )


class ModelTimeoutError(ConnectorError):
    """No (complete) response within the configured time budget."""

    kind = FailureKind.TIMEOUT

    @classmethod
    def for_model(cls, model: str, timeout: float) -> ModelTimeoutError:
        return cls(
            "LLM request timed out",
            f"Model '{model}' did not respond within {timeout:g} seconds",
            f"Try starting model manually using 'ollama run {model}' or "
            "increase timeout in config",
        )


class ModelNotFoundError(ConnectorError):
    """The requested (or fallback) model is not installed on the server."""

    kind = FailureKind.MODEL_NOT_FOUND

    @classmethod
    def for_model(cls, model: str, server_message: str = "") -> ModelNotFoundError:
        detail = f"Model '{model}' not found on Ollama server"
        if server_message:
            detail += f": {server_message}"
        return cls(
            "Model not available",
            detail,
            f"Please run 'ollama pull {model}' to install this model",
        )


class NoModelsAvailable(ModelNotFoundError):
    """The catalog query succeeded but the server has no models at all."""

    def __init__(self, requested: str) -> None:
        super().__init__(
            "No models available on Ollama server",
            f"Requested model '{requested}' cannot be resolved against an empty catalog",
            f"Please run 'ollama pull {requested}' to install the requested model",
        )
        self.requested = requested


class ServerResponseError(ConnectorError):
    """The server answered with an unexpected HTTP status or broke the stream."""

    def __init__(self, status_code: int | None, body: str = "") -> None:
        if status_code is None:
            summary = "LLM server connection failed mid-response"
        else:
            summary = f"Ollama API failed with status {status_code}"
        super().__init__(
            summary,
            body[:500],
            "Check the model server logs; the request will be retried",
        )
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Payload-level failures
# ---------------------------------------------------------------------------

class UpstreamStreamError(ConnectorError):
    """The stream carried an explicit ``error`` chunk."""

    def __init__(
        self,
        message: str,
        summary: str = "Ollama streaming error",
        suggestion: str = "Check that the model can be loaded on the server",
    ) -> None:
        super().__init__(summary, message, suggestion)
        self.upstream_message = message


class EmptyModelResponse(UpstreamStreamError):
    """The stream finished without producing any text."""

    def __init__(self, model: str = "") -> None:
        super().__init__(
            f"No response content received from streaming API (model: {model or 'unknown'})",
            summary="Empty response from Local LLM",
            suggestion="Retry the request or try a different model",
        )


class MalformedResponseError(ConnectorError):
    """The reply could not be turned into valid JSON (not retried)."""

    def __init__(self, technical_detail: str) -> None:
        super().__init__(
            "Failed to parse Local LLM response",
            technical_detail,
            "Rephrase the prompt or try a model that follows JSON instructions more closely",
        )

    @property
    def retryable(self) -> bool:
        return False


class ConfigurationError(ConnectorError):
    """The service is disabled or misconfigured (fail fast, never retried)."""

    def __init__(
        self,
        technical_detail: str = "Local LLM service is not enabled",
        summary: str = "Local LLM service is not enabled",
        suggestion: str = "Enable the service in llm_connector.yaml (local.enabled: true)",
    ) -> None:
        super().__init__(summary, technical_detail, suggestion)

    @property
    def retryable(self) -> bool:
        return False


class InvocationCancelled(ConnectorError):
    """The caller aborted the invocation."""

    def __init__(self, where: str = "") -> None:
        super().__init__(
            "Generation cancelled",
            f"Invocation cancelled{' during ' + where if where else ''}",
            "Submit the request again when ready",
        )

    @property
    def retryable(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# HTTP boundary classification
# ---------------------------------------------------------------------------

def classify_transport_error(
    exc: httpx.HTTPError,
    *,
    model: str,
    api_url: str,
    timeout: float,
) -> ConnectorError:
    """Map an httpx exception to a tagged connector error.

    ``ConnectTimeout`` means nothing is listening, so it is reported as a
    connectivity failure rather than a slow model.
    """
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return ConnectivityError.for_url(api_url, str(exc))
    if isinstance(exc, httpx.TimeoutException):
        return ModelTimeoutError.for_model(model, timeout)
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code == 404:
            return ModelNotFoundError.for_model(model)
        return ServerResponseError(exc.response.status_code, str(exc))
    return ServerResponseError(None, str(exc))
