"""Retry / warm-up / fallback control loop around the Ollama client.

State machine for one invocation::

    IDLE -> ATTEMPTING -> (WARMING_UP -> ATTEMPTING) -> SUCCEEDED
                       \\-> FALLBACK_ATTEMPTING -> SUCCEEDED | FAILED

All per-call state lives in an ``InvocationContext`` created by
:meth:`Orchestrator.run`; the orchestrator itself only holds read-only
configuration and the shared client, so concurrent runs do not interfere.
"""

from __future__ import annotations

import logging
import threading
import time

from aem_llm_connector.config import LocalLLMConfig, RetryPolicy
from aem_llm_connector.errors import (
    ConfigurationError,
    ConnectorError,
    FailureKind,
    InvocationCancelled,
    MalformedResponseError,
)
from aem_llm_connector.types import (
    GenerationRequest,
    InvocationContext,
    InvocationOutcome,
    InvocationState,
    RecoveredDocument,
)

from .catalog import ModelCatalog
from .client import OllamaClient
from .json_recovery import recover_json

_logger = logging.getLogger(__name__)


class Orchestrator:
    """Drives one generation request to a recovered JSON document."""

    def __init__(
        self,
        client: OllamaClient,
        catalog: ModelCatalog,
        config: LocalLLMConfig,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.catalog = catalog
        self.config = config
        self.policy = policy or RetryPolicy()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def requested_model(self, request: GenerationRequest) -> str:
        return self.config.vision_model if request.has_image else self.config.model

    def new_context(
        self,
        request: GenerationRequest,
        cancel_event: threading.Event | None = None,
    ) -> InvocationContext:
        requested = self.requested_model(request)
        return InvocationContext(
            requested_model=requested,
            target_model=requested,
            max_attempts=self.config.retry_attempts,
            cancel_event=cancel_event or threading.Event(),
        )

    def run(
        self,
        request: GenerationRequest,
        prompt: str,
        cancel_event: threading.Event | None = None,
    ) -> InvocationOutcome:
        """Run the state machine.  Raises a ``ConnectorError`` on final failure."""
        if not self.config.enabled:
            raise ConfigurationError()

        ctx = self.new_context(request, cancel_event)
        images = [request.image.to_base64()] if request.image and request.has_image else None
        start = time.monotonic()

        fallback_attempts = 0
        try:
            model, raw, document = self._run_primary(ctx, prompt, images)
        except ConnectorError as primary_error:
            if not self._should_fall_back(ctx, primary_error):
                ctx.state = InvocationState.FAILED
                raise
            model, raw, document, fallback_attempts = self._run_fallbacks(
                ctx, prompt, images, primary_error,
            )

        ctx.state = InvocationState.SUCCEEDED
        return InvocationOutcome(
            document=document,
            model=model,
            requested_model=ctx.requested_model,
            fallback_used=fallback_attempts > 0,
            attempts=ctx.attempt + fallback_attempts,
            warmed_up=ctx.warmed_up,
            backoff_delays=list(ctx.backoff_delays),
            latency_ms=(time.monotonic() - start) * 1000,
            raw_text=raw,
        )

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _run_primary(
        self,
        ctx: InvocationContext,
        prompt: str,
        images: list[str] | None,
    ) -> tuple[str, str, RecoveredDocument]:
        ctx.state = InvocationState.ATTEMPTING
        last_error: ConnectorError | None = None

        while ctx.attempt < ctx.max_attempts:
            self._check_cancelled(ctx, "retry loop")
            ctx.attempt += 1
            model = self.catalog.select(ctx.requested_model)
            _logger.info(
                "Sending prompt to Ollama (timeout: %gs, model: %s, attempt %d/%d)",
                self.config.timeout, model, ctx.attempt, ctx.max_attempts,
            )
            try:
                raw, document = self._attempt(ctx, model, prompt, images)
                return model, raw, document
            except ConnectorError as e:
                if not e.retryable:
                    raise
                last_error = e
                _logger.warning(
                    "LLM call failed (attempt %d/%d, kind=%s): %s",
                    ctx.attempt, ctx.max_attempts, e.kind.value, e,
                )

            if (
                last_error.kind is FailureKind.TIMEOUT
                and ctx.failures == 0
                and not ctx.warmed_up
                and self._warm_up(ctx)
            ):
                # A successful warm-up does not consume an attempt.
                ctx.attempt -= 1
                continue

            ctx.failures += 1
            if ctx.attempt < ctx.max_attempts:
                self._backoff(ctx)

        assert last_error is not None
        raise last_error

    def _run_fallbacks(
        self,
        ctx: InvocationContext,
        prompt: str,
        images: list[str] | None,
        primary_error: ConnectorError,
    ) -> tuple[str, str, RecoveredDocument, int]:
        ctx.state = InvocationState.FALLBACK_ATTEMPTING
        _logger.info(
            "Trying fallback models after primary model '%s' failed",
            ctx.target_model,
        )
        tries = 0
        for name in self.policy.fallback_models:
            if ctx.has_tried(name):
                continue
            self._check_cancelled(ctx, "fallback")
            model = self.catalog.select(name)
            if ctx.has_tried(model):
                _logger.debug("Fallback '%s' resolves to already tried '%s'", name, model)
                continue
            tries += 1
            _logger.info("Trying fallback model: %s", model)
            try:
                raw, document = self._attempt(ctx, model, prompt, images)
            except InvocationCancelled:
                raise
            except ConnectorError as e:
                _logger.warning("Fallback model '%s' failed: %s", model, e)
                continue
            _logger.info("Fallback model '%s' succeeded", model)
            return model, raw, document, tries

        ctx.state = InvocationState.FAILED
        _logger.error("All fallback models failed, raising primary model error")
        raise primary_error

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _attempt(
        self,
        ctx: InvocationContext,
        model: str,
        prompt: str,
        images: list[str] | None,
    ) -> tuple[str, RecoveredDocument]:
        ctx.target_model = model
        ctx.mark_tried(model)
        try:
            raw = self.client.generate(model, prompt, images, cancel_event=ctx.cancel_event)
            document = recover_json(raw, strip_markdown=self.config.strip_markdown)
            if not document.found:
                raise MalformedResponseError(
                    f"No JSON content found in LLM response: {raw[:200]}"
                )
            if not document.valid:
                raise MalformedResponseError(
                    f"Malformed JSON after repair: {(document.text or '')[:200]}"
                )
        except ConnectorError as e:
            e.model = model
            raise
        return raw, document

    def _warm_up(self, ctx: InvocationContext) -> bool:
        ctx.warmed_up = True
        ctx.state = InvocationState.WARMING_UP
        _logger.info("Model warm-up triggered. Waiting for %s to load...", ctx.target_model)
        try:
            ok = self.client.warm_up(
                ctx.target_model,
                prompt=self.policy.warmup_prompt,
                timeout=self.policy.warmup_timeout,
            )
        except ConnectorError as e:
            _logger.warning("Model warm-up failed: %s", e)
            ok = False
        ctx.state = InvocationState.ATTEMPTING
        return ok

    def _backoff(self, ctx: InvocationContext) -> None:
        delay = self.policy.delay_for(ctx.attempt)
        ctx.backoff_delays.append(delay)
        _logger.info(
            "Waiting %.1fs before retry %d of %d",
            delay, ctx.attempt + 1, ctx.max_attempts,
        )
        if ctx.cancel_event.wait(delay):
            raise InvocationCancelled("backoff")

    def _should_fall_back(self, ctx: InvocationContext, error: ConnectorError) -> bool:
        return (
            error.retryable
            and ctx.attempt >= ctx.max_attempts
            and error.kind.value in self.policy.fallback_on
            and self.config.provider == "ollama"
        )

    @staticmethod
    def _check_cancelled(ctx: InvocationContext, where: str) -> None:
        if ctx.cancel_event.is_set():
            raise InvocationCancelled(where)
