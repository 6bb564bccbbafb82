"""OpenAI-compatible chat-completions client for the cloud provider."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from aem_llm_connector.config import CloudConfig
from aem_llm_connector.errors import (
    ConfigurationError,
    ConnectorError,
    EmptyModelResponse,
    ServerResponseError,
    classify_transport_error,
)

_logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES = 3
_BACKOFF_BASE = 1  # seconds, exponential: 1, 2, 4
_RETRY_STATUSES = (429, 500, 502, 503, 504)


class CloudClient:
    """Non-streaming chat completion against an OpenAI-style endpoint."""

    def __init__(
        self,
        config: CloudConfig,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self._headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        self.client = http_client or httpx.Client(
            headers=self._headers,
            timeout=httpx.Timeout(config.timeout, connect=min(config.timeout, 30)),
        )

    def complete(self, prompt: str, system_prompt: str = "") -> str:
        """Send one chat completion and return ``choices[0].message.content``."""
        if not self.config.enabled or not self.config.api_key:
            raise ConfigurationError(
                "Cloud LLM service is disabled or has no API key",
                summary="Cloud LLM service is not configured",
                suggestion="Set cloud.enabled and cloud.api_key in llm_connector.yaml",
            )

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

        start = time.monotonic()
        resp = None
        last_error: ConnectorError | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = self.client.post(
                    self.config.api_url, json=payload, headers=self._headers,
                )
            except httpx.HTTPError as e:
                last_error = classify_transport_error(
                    e, model=self.config.model,
                    api_url=self.config.api_url, timeout=self.config.timeout,
                )
                _logger.warning(
                    "Cloud LLM API error (attempt %d/%d): %s",
                    attempt + 1, _MAX_RETRIES, e)
                time.sleep(_BACKOFF_BASE * (2 ** attempt))
                continue
            if resp.status_code in _RETRY_STATUSES:
                last_error = ServerResponseError(resp.status_code, resp.text)
                _logger.warning(
                    "Cloud LLM API returned %d (attempt %d/%d), retrying...",
                    resp.status_code, attempt + 1, _MAX_RETRIES)
                time.sleep(_BACKOFF_BASE * (2 ** attempt))
                continue
            if resp.status_code != 200:
                # Other client errors are not retried
                raise ServerResponseError(resp.status_code, resp.text)
            break
        else:
            assert last_error is not None
            raise last_error

        latency = (time.monotonic() - start) * 1000
        try:
            data = resp.json()
        except ValueError as e:
            raise ServerResponseError(resp.status_code, f"invalid JSON response: {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise EmptyModelResponse(self.config.model)
        first = choices[0] if isinstance(choices, list) else None
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise EmptyModelResponse(self.config.model)
        _logger.info("Received cloud LLM response (%d chars) in %.0fms", len(content), latency)
        return content

    def close(self) -> None:
        self.client.close()
