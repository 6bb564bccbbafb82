"""HTTP boundary to an Ollama-style ``/api/generate`` server.

This is the only module that sees httpx exceptions and raw status codes;
everything leaving it is either assembled text or a tagged
``ConnectorError``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any

import httpx

from aem_llm_connector.config import LocalLLMConfig
from aem_llm_connector.errors import (
    ModelNotFoundError,
    ServerResponseError,
    classify_transport_error,
)

from .streaming import assemble

_logger = logging.getLogger(__name__)


def build_http_client(config: LocalLLMConfig) -> httpx.Client:
    """Shared client; httpx.Client is safe to use from several threads."""
    return httpx.Client(
        headers={"Content-Type": "application/json"},
        timeout=httpx.Timeout(config.timeout, connect=min(config.timeout, 30)),
    )


class OllamaClient:
    """Issues generate calls and turns transport failures into connector errors."""

    def __init__(
        self,
        config: LocalLLMConfig,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.client = http_client or build_http_client(config)

    def _payload(
        self,
        model: str,
        prompt: str,
        images: list[str] | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": True,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }
        if images:
            payload["images"] = images
        return payload

    def generate(
        self,
        model: str,
        prompt: str,
        images: list[str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Streaming generation; returns the fully assembled reply text."""
        payload = self._payload(model, prompt, images)
        _logger.info(
            "Calling Ollama API: %s with model: %s (prompt %d chars, images: %d)",
            self.config.api_url, model, len(prompt), len(images or []),
        )
        start = time.monotonic()
        try:
            with self.client.stream("POST", self.config.api_url, json=payload) as resp:
                if resp.status_code == 404:
                    body = resp.read().decode(errors="replace")
                    _logger.error("Model '%s' not found on Ollama server", model)
                    raise ModelNotFoundError.for_model(model, _error_message(body))
                if resp.status_code != 200:
                    body = resp.read().decode(errors="replace")
                    _logger.error(
                        "Ollama API failed with status %d: %.200s",
                        resp.status_code, body,
                    )
                    raise ServerResponseError(resp.status_code, body)
                text = assemble(resp.iter_lines(), model=model, cancel_event=cancel_event)
        except httpx.HTTPError as e:
            _logger.error("HTTP error calling Ollama API (model: %s): %s", model, e)
            raise classify_transport_error(
                e, model=model, api_url=self.config.api_url, timeout=self.config.timeout,
            ) from e

        latency = (time.monotonic() - start) * 1000
        _logger.info("Received LLM response (%d chars) in %.0fms", len(text), latency)
        return text

    def warm_up(self, model: str, prompt: str = "hi", timeout: float = 10.0) -> bool:
        """Minimal non-streaming generation that forces *model* into memory.

        Returns ``True`` on HTTP 200.  Transport failures raise the
        classified connector error.
        """
        _logger.info("Warming up model: %s", model)
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"num_predict": 1},
        }
        try:
            resp = self.client.post(self.config.api_url, json=payload, timeout=timeout)
        except httpx.HTTPError as e:
            raise classify_transport_error(
                e, model=model, api_url=self.config.api_url, timeout=timeout,
            ) from e
        if resp.status_code == 200:
            _logger.info("Model warm-up successful for: %s", model)
            return True
        _logger.warning("Model warm-up returned status %d", resp.status_code)
        return False

    def close(self) -> None:
        self.client.close()


def _error_message(body: str) -> str:
    """Pull ``error`` out of an Ollama JSON error body, else return it raw."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:200]
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return body.strip()[:200]
