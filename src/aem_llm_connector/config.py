"""Configuration management for the AEM LLM connector."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert AEM developer. Generate clean, production-ready AEM "
    "component files following Adobe best practices. Always respond with valid "
    "JSON containing component structure, fields, HTML, dialog XML, JavaScript, "
    "Java model, and sample data."
)


class LocalLLMConfig(BaseModel):
    """Local model server settings.  Read-only for the duration of a call."""

    model_config = ConfigDict(frozen=True)

    provider: str = "ollama"
    api_url: str = "http://localhost:11434/api/generate"
    model: str = "llama3.2"
    vision_model: str = "llava:7b"  # used when the request carries an image
    enabled: bool = True
    max_tokens: int = Field(default=4000, gt=0)
    temperature: float = Field(default=0.7, ge=0)
    timeout: float = Field(default=180, gt=0)  # seconds
    retry_attempts: int = Field(default=3, gt=0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    strip_markdown: bool = True

    @property
    def tags_url(self) -> str:
        """Model catalog endpoint derived from the generate endpoint."""
        return self.api_url.replace("/api/generate", "/api/tags")


class RetryPolicy(BaseModel):
    """Backoff, warm-up and fallback knobs for the orchestrator."""

    model_config = ConfigDict(frozen=True)

    backoff_base: float = Field(default=2.0, ge=0)  # seconds: 2, 4, 8, ...
    backoff_cap: float = Field(default=30.0, ge=0)
    warmup_timeout: float = Field(default=10.0, gt=0)
    warmup_prompt: str = "hi"
    fallback_models: tuple[str, ...] = ("llama3", "llama2", "codellama", "llama3.2:latest")
    # FailureKind values whose exhaustion triggers fallback models
    fallback_on: tuple[str, ...] = ("model_not_found", "timeout")

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows *attempt* (1-based)."""
        return min(self.backoff_base * (2 ** max(attempt - 1, 0)), self.backoff_cap)


class CatalogConfig(BaseModel):
    """How a requested model is matched against the installed catalog."""

    model_config = ConfigDict(frozen=True)

    family_priority: tuple[str, ...] = ("llama3", "llama", "codellama", "mistral", "phi")
    generic_match: str = "llama"
    ready_timeout: float = 5.0


class CloudConfig(BaseModel):
    """OpenAI-compatible chat-completions provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4"
    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0)
    timeout: float = Field(default=60, gt=0)


class ConnectorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    local: LocalLLMConfig = Field(default_factory=LocalLLMConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    cloud: CloudConfig = Field(default_factory=CloudConfig)


CONFIG_FILENAME = "llm_connector.yaml"


def load_config(
    config_path: str | Path | None = None,
) -> tuple[ConnectorConfig, Path | None]:
    """Load configuration from YAML file.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Search order (first match wins):
      1. Explicit ``--config`` path
      2. Current working directory: ``./llm_connector.yaml``
      3. User config dir: ``~/.llm_connector/llm_connector.yaml``
    """
    if config_path is None:
        for d in (Path.cwd(), Path.home() / ".llm_connector"):
            p = d / CONFIG_FILENAME
            if p.exists():
                config_path = p
                break

    resolved: Path | None = Path(config_path) if config_path else None
    if resolved and resolved.exists():
        _logger.info("Loading config from %s", resolved)
        with open(resolved) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return ConnectorConfig.model_validate(raw), resolved.resolve()

    if config_path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _logger.info("No config file found, using defaults")
    return ConnectorConfig(), None
