"""Model invocation and response normalization."""

from aem_llm_connector.llm.catalog import ModelCatalog, resolve
from aem_llm_connector.llm.client import OllamaClient, build_http_client
from aem_llm_connector.llm.cloud import CloudClient
from aem_llm_connector.llm.json_recovery import recover_json, repair_quotes
from aem_llm_connector.llm.orchestrator import Orchestrator
from aem_llm_connector.llm.streaming import StreamAssembler, assemble

__all__ = [
    "ModelCatalog",
    "resolve",
    "OllamaClient",
    "build_http_client",
    "CloudClient",
    "recover_json",
    "repair_quotes",
    "Orchestrator",
    "StreamAssembler",
    "assemble",
]
