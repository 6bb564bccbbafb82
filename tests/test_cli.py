"""Tests for the aem-llm command line."""

from unittest.mock import patch

from click.testing import CliRunner

from aem_llm_connector.cli import main
from aem_llm_connector.components import ComponentSpec
from aem_llm_connector.errors import ConnectivityError
from aem_llm_connector.service import ComponentGenerator
from aem_llm_connector.types import GenerationResult, InvocationOutcome, RecoveredDocument


def _invoke(*args):
    runner = CliRunner()
    with runner.isolated_filesystem():
        return runner.invoke(main, list(args))


def _success() -> GenerationResult:
    spec = ComponentSpec(name="hero", description="Hero banner", html="<h1/>", dialog="<x/>")
    outcome = InvocationOutcome(
        document=RecoveredDocument(text="{}", valid=True),
        model="llama3",
        requested_model="llama3.2",
        fallback_used=True,
        attempts=4,
    )
    return GenerationResult.success(spec, outcome)


class TestCli:
    def test_info(self):
        result = _invoke("info")
        assert result.exit_code == 0
        assert "Local LLM Service: ollama - llama3.2" in result.output
        assert "Cloud LLM Service: Disabled" in result.output

    def test_missing_config_file(self):
        result = _invoke("--config", "does-not-exist.yaml", "info")
        assert result.exit_code != 0
        assert isinstance(result.exception, FileNotFoundError)

    def test_config_file_used(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            with open("llm_connector.yaml", "w") as f:
                f.write("local:\n  enabled: false\n")
            result = runner.invoke(main, ["info"])
        assert result.exit_code == 0
        assert "Local LLM Service: Disabled" in result.output

    def test_generate_success(self):
        with patch.object(ComponentGenerator, "generate", return_value=_success()):
            result = _invoke("generate", "a hero banner")
        assert result.exit_code == 0
        assert "hero.html" in result.output
        assert "dialog.xml" in result.output
        assert "fallback" in result.output

    def test_generate_failure_exit_code(self):
        failure = GenerationResult.failure(ConnectivityError.for_url("http://x"))
        with patch.object(ComponentGenerator, "generate", return_value=failure):
            result = _invoke("generate", "a hero banner")
        assert result.exit_code == 1
        assert "Cannot connect to LLM service" in result.output

    def test_generate_json(self):
        with patch.object(ComponentGenerator, "generate", return_value=_success()):
            result = _invoke("generate", "--json", "a hero banner")
        assert result.exit_code == 0
        assert '"componentName": "hero"' in result.output
        assert '"fallbackUsed": true' in result.output

    def test_generate_passes_options(self):
        with patch.object(ComponentGenerator, "generate", return_value=_success()) as gen:
            _invoke("generate", "-r", "brand colors", "-t", "teaser", "a card")
        gen.assert_called_once()
        args, kwargs = gen.call_args
        assert args == ("a card",)
        assert kwargs["requirements"] == "brand colors"
        assert kwargs["component_type"] == "teaser"
        assert kwargs["image"] is None

    def test_test_connection(self):
        with patch.object(ComponentGenerator, "test_connection", return_value=True):
            ok = _invoke("test-connection")
        with patch.object(ComponentGenerator, "test_connection", return_value=False):
            failed = _invoke("test-connection")
        assert ok.exit_code == 0
        assert "Connection OK" in ok.output
        assert failed.exit_code == 1

    def test_health(self):
        report = {
            "status": "LLM NOT READY",
            "connected": False,
            "llm_info": "Local LLM Service: ollama - llama3.2 - http://localhost:11434/api/generate",
            "duration_ms": 3,
            "message": "Local LLM is not responding or service is disabled",
        }
        with patch.object(ComponentGenerator, "health_check", return_value=report):
            result = _invoke("health")
        assert result.exit_code == 1
        assert "LLM NOT READY" in result.output

    def test_models(self):
        with patch.object(ComponentGenerator, "list_models",
                          return_value=["llama3.2:latest", "mistral:7b"]):
            result = _invoke("models")
        assert result.exit_code == 0
        assert "llama3.2:latest" in result.output
        assert "mistral:7b" in result.output

    def test_models_empty(self):
        with patch.object(ComponentGenerator, "list_models", return_value=[]):
            result = _invoke("models")
        assert "No models found" in result.output
