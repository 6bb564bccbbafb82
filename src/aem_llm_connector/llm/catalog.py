"""Installed-model discovery and best-match resolution."""

from __future__ import annotations

import logging
from typing import Iterable

import httpx

from aem_llm_connector.config import CatalogConfig, LocalLLMConfig
from aem_llm_connector.errors import NoModelsAvailable
from aem_llm_connector.types import ModelDescriptor

_logger = logging.getLogger(__name__)


def resolve(
    requested: str,
    catalog: Iterable[ModelDescriptor],
    family_priority: Iterable[str] = CatalogConfig().family_priority,
    generic_match: str = CatalogConfig().generic_match,
) -> str:
    """Pick the installed model that best matches *requested*.

    Candidates are scanned in name order, so the answer only depends on
    the catalog contents and the priority table.
    """
    candidates = sorted(catalog)
    if not candidates:
        raise NoModelsAvailable(requested)

    normalized = requested if ":" in requested else f"{requested}:latest"
    for desc in candidates:
        if desc.name in (requested, normalized):
            return desc.name

    base = requested.split(":", 1)[0].lower()
    for prefix in family_priority:
        if not base.startswith(prefix):
            continue
        for desc in candidates:
            if desc.family.startswith(prefix):
                return desc.name

    if generic_match:
        for desc in candidates:
            if generic_match in desc.name.lower():
                return desc.name

    return candidates[0].name


class ModelCatalog:
    """Queries the server's tags endpoint and resolves model names."""

    def __init__(
        self,
        client: httpx.Client,
        config: LocalLLMConfig,
        catalog_config: CatalogConfig | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._catalog_config = catalog_config or CatalogConfig()

    @property
    def tags_url(self) -> str:
        return self._config.tags_url

    def list_models(self) -> frozenset[ModelDescriptor]:
        """Return installed models.  Failures are logged and yield an empty set."""
        if self._config.provider != "ollama":
            return frozenset()
        try:
            resp = self._client.get(self.tags_url)
        except httpx.HTTPError as e:
            _logger.warning("Error checking available models at %s: %s", self.tags_url, e)
            return frozenset()
        if resp.status_code != 200:
            _logger.warning(
                "Failed to get available models. Status: %d, Response: %.200s",
                resp.status_code, resp.text,
            )
            return frozenset()
        try:
            data = resp.json()
        except ValueError as e:
            _logger.warning("Invalid JSON from %s: %s", self.tags_url, e)
            return frozenset()

        models = data.get("models") if isinstance(data, dict) else None
        result = frozenset(
            ModelDescriptor.from_name(m["name"])
            for m in models or []
            if isinstance(m, dict) and isinstance(m.get("name"), str) and m["name"].strip()
        )
        _logger.info("Available models: %s", sorted(d.name for d in result))
        return result

    def resolve(self, requested: str, catalog: Iterable[ModelDescriptor]) -> str:
        return resolve(
            requested,
            catalog,
            self._catalog_config.family_priority,
            self._catalog_config.generic_match,
        )

    def select(self, requested: str) -> str:
        """Resolve *requested* against the live catalog.

        If the catalog is empty or unreachable the requested name is used
        as-is and the server gets to report the problem.
        """
        catalog = self.list_models()
        try:
            chosen = self.resolve(requested, catalog)
        except NoModelsAvailable:
            _logger.warning(
                "No models found on server, proceeding with requested model: %s",
                requested,
            )
            return requested
        if chosen != requested:
            _logger.info("Using model '%s' for requested '%s'", chosen, requested)
        return chosen

    def is_ready(self) -> bool:
        """Quick reachability probe against the tags endpoint."""
        try:
            resp = self._client.get(self.tags_url, timeout=self._catalog_config.ready_timeout)
        except httpx.HTTPError as e:
            _logger.warning("Ollama readiness check failed: %s", e)
            return False
        if resp.status_code != 200:
            _logger.warning("Ollama readiness check failed with status: %d", resp.status_code)
            return False
        return True
