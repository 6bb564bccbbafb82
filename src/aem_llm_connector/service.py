"""Service facade: prompt in, ``GenerationResult`` out.

Everything below this layer communicates failure by raising a
``ConnectorError``; the facade converts those into error results so
callers never have to inspect exception text.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from aem_llm_connector.components import ComponentSpec
from aem_llm_connector.config import ConnectorConfig
from aem_llm_connector.errors import ConfigurationError, ConnectorError, MalformedResponseError
from aem_llm_connector.llm.catalog import ModelCatalog
from aem_llm_connector.llm.client import OllamaClient, build_http_client
from aem_llm_connector.llm.cloud import CloudClient
from aem_llm_connector.llm.json_recovery import recover_json
from aem_llm_connector.llm.orchestrator import Orchestrator
from aem_llm_connector.prompts import build_component_prompt
from aem_llm_connector.types import (
    GenerationRequest,
    GenerationResult,
    ImagePayload,
    InvocationOutcome,
)

_logger = logging.getLogger(__name__)

TEST_PROMPT = "Generate a simple test response for AEM component generation."


class ComponentGenerator:
    """Generates AEM component descriptions with a local Ollama model."""

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or ConnectorConfig()
        local = self.config.local
        self._http = http_client or build_http_client(local)
        self.client = OllamaClient(local, self._http)
        self.catalog = ModelCatalog(self._http, local, self.config.catalog)
        self.orchestrator = Orchestrator(self.client, self.catalog, local, self.config.retry)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        prompt: str,
        image: ImagePayload | None = None,
        requirements: str = "",
        component_type: str = "component",
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        request = GenerationRequest(
            prompt=prompt,
            image=image,
            requirements=requirements,
            component_type=component_type,
        )
        return self.run(request, cancel_event)

    def run(
        self,
        request: GenerationRequest,
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        """Run *request* end to end.  Never raises ``ConnectorError``."""
        _logger.info(
            "Generating %s with Local LLM (has image: %s)",
            request.component_type, request.has_image,
        )
        model = self.orchestrator.requested_model(request)
        try:
            if not self.config.local.enabled:
                raise ConfigurationError()
            outcome = self.orchestrator.run(
                request, build_component_prompt(request), cancel_event,
            )
            model = outcome.model
            spec = ComponentSpec.from_document(outcome.document)
        except ConnectorError as e:
            _logger.error("Component generation failed: %s", e)
            return GenerationResult.failure(e, model=e.model or model)

        _logger.info(
            "Successfully generated component: %s with %d files (model %s, %d attempt(s))",
            spec.name, len(spec.generated_files()), outcome.model, outcome.attempts,
        )
        return GenerationResult.success(spec, outcome)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def test_connection(self) -> bool:
        """Send a short generation and report whether any text came back."""
        _logger.info("Testing Local LLM API connection")
        if not self.config.local.enabled:
            _logger.warning("Local LLM service is not enabled")
            return False
        try:
            model = self.catalog.select(self.config.local.model)
            text = self.client.generate(model, TEST_PROMPT)
        except ConnectorError as e:
            _logger.error("Local LLM API connection test failed: %s", e)
            return False
        connected = bool(text.strip())
        _logger.info(
            "Local LLM API connection test result: %s",
            "SUCCESS" if connected else "FAILED",
        )
        return connected

    def describe_configuration(self) -> str:
        local = self.config.local
        if not local.enabled:
            return "Local LLM Service: Disabled"
        return f"Local LLM Service: {local.provider} - {local.model} - {local.api_url}"

    def health_check(self) -> dict[str, Any]:
        """Readiness probe in the shape of a health endpoint response."""
        start = time.monotonic()
        connected = self.config.local.enabled and self.catalog.is_ready()
        duration_ms = int((time.monotonic() - start) * 1000)
        if connected:
            _logger.info("Health check PASSED - LLM ready (%dms)", duration_ms)
            message = "Local LLM is reachable and ready for requests"
        else:
            _logger.warning("Health check FAILED - LLM not ready (%dms)", duration_ms)
            message = "Local LLM is not responding or service is disabled"
        return {
            "status": "LLM READY" if connected else "LLM NOT READY",
            "connected": connected,
            "llm_info": self.describe_configuration(),
            "duration_ms": duration_ms,
            "message": message,
        }

    def list_models(self) -> list[str]:
        return sorted(d.name for d in self.catalog.list_models())

    def close(self) -> None:
        self._http.close()


class CloudComponentGenerator:
    """Same contract as ``ComponentGenerator`` over a chat-completions API."""

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or ConnectorConfig()
        self.client = CloudClient(self.config.cloud, http_client)

    def generate(
        self,
        prompt: str,
        image: ImagePayload | None = None,
        requirements: str = "",
        component_type: str = "component",
    ) -> GenerationResult:
        request = GenerationRequest(
            prompt=prompt,
            image=image,
            requirements=requirements,
            component_type=component_type,
        )
        cloud = self.config.cloud
        start = time.monotonic()
        try:
            raw = self.client.complete(
                build_component_prompt(request),
                system_prompt=self.config.local.system_prompt,
            )
            document = recover_json(raw, strip_markdown=self.config.local.strip_markdown)
            if not document.valid:
                raise MalformedResponseError(
                    f"No valid JSON in cloud LLM response: {raw[:200]}"
                )
            spec = ComponentSpec.from_document(document)
        except ConnectorError as e:
            _logger.error("Cloud component generation failed: %s", e)
            return GenerationResult.failure(e, model=cloud.model)

        outcome = InvocationOutcome(
            document=document,
            model=cloud.model,
            requested_model=cloud.model,
            latency_ms=(time.monotonic() - start) * 1000,
            raw_text=raw,
        )
        return GenerationResult.success(spec, outcome)

    def test_connection(self) -> bool:
        try:
            text = self.client.complete(TEST_PROMPT)
        except ConnectorError as e:
            _logger.error("Cloud LLM API connection test failed: %s", e)
            return False
        return bool(text.strip())

    def describe_configuration(self) -> str:
        cloud = self.config.cloud
        if not cloud.enabled:
            return "Cloud LLM Service: Disabled"
        return f"Cloud LLM Service: openai - {cloud.model} - {cloud.api_url}"

    def close(self) -> None:
        self.client.close()
