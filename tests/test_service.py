"""End-to-end tests for the service facade over a mocked model server."""

import json
import threading
from unittest.mock import patch

import httpx

from aem_llm_connector.config import CloudConfig, ConnectorConfig, LocalLLMConfig, RetryPolicy
from aem_llm_connector.service import CloudComponentGenerator, ComponentGenerator
from aem_llm_connector.types import ImagePayload

COMPONENT = {
    "name": "hero",
    "description": "Hero banner",
    "fields": [{"name": "title", "type": "text", "label": "Title"}],
    "html": "<h1>${title}</h1>",
    "dialog": "<jcr:root/>",
    "sampleData": {"title": "Hello"},
}


def _stream_body(text: str, size: int = 7) -> bytes:
    lines = [
        json.dumps({"response": text[i:i + size], "done": False})
        for i in range(0, len(text), size)
    ]
    lines.append(json.dumps({"response": "", "done": True}))
    return ("\n".join(lines) + "\n").encode()


def _server(reply: str, models=("llama3.2:latest",), calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        body = json.loads(request.content)
        if body["model"] not in models:
            return httpx.Response(404, json={"error": f"model '{body['model']}' not found"})
        return httpx.Response(200, content=_stream_body(reply))
    return handler


def _generator(handler, **local) -> ComponentGenerator:
    config = ConnectorConfig(local=LocalLLMConfig(**local), retry=RetryPolicy(backoff_base=0))
    return ComponentGenerator(config, httpx.Client(transport=httpx.MockTransport(handler)))


class TestGenerate:
    def test_success(self):
        reply = "```json\n" + json.dumps(COMPONENT) + "\n```"
        result = _generator(_server(reply)).generate("a hero banner")
        assert result.ok
        assert result.model == "llama3.2:latest"
        assert not result.fallback_used
        assert result.payload.name == "hero"
        data = result.to_dict()
        assert data["componentName"] == "hero"
        assert set(data["generatedFiles"]) == {"dialog.xml", "hero.html"}
        assert data["previewHtml"] == "<h1>Hello</h1>"
        assert data["sampleData"] == {"title": "Hello"}

    def test_quote_repair_end_to_end(self):
        reply = '{"name": "cta", "html": "<a class="btn">Go</a>"}'
        result = _generator(_server(reply)).generate("a button")
        assert result.ok
        assert result.payload.html == '<a class="btn">Go</a>'

    def test_fallback_model(self):
        reply = json.dumps(COMPONENT)
        result = _generator(_server(reply, models=("codellama:7b",)),
                            model="mistral").generate("x")
        # catalog resolution falls back to the only installed model
        assert result.ok
        assert result.model == "codellama:7b"

    def test_disabled(self):
        calls = []
        result = _generator(_server("{}", calls=calls), enabled=False).generate("x")
        assert not result.ok
        assert result.error.summary == "Local LLM service is not enabled"
        assert calls == []

    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        result = _generator(handler).generate("x")
        assert result.status == "error"
        assert result.error.summary == "Cannot connect to LLM service"
        assert "ollama serve" in result.error.suggestion
        assert result.to_dict()["error"].startswith("Cannot connect to LLM service.")

    def test_failure_reports_vision_model(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        result = _generator(handler).generate("from a mockup", image=ImagePayload(b"png"))
        assert not result.ok
        assert result.model == "llava:7b"

    def test_failure_reports_resolved_model(self):
        result = _generator(_server("Sorry, no JSON.", models=("codellama:7b",)),
                            model="mistral").generate("x")
        assert not result.ok
        assert result.model == "codellama:7b"

    def test_unparseable_reply(self):
        result = _generator(_server("Sorry, I can't do that.")).generate("x")
        assert not result.ok
        assert result.error.summary == "Failed to parse Local LLM response"

    def test_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        result = _generator(_server("{}")).generate("x", cancel_event=cancel)
        assert not result.ok
        assert result.error.summary == "Generation cancelled"


class TestDiagnostics:
    def test_describe_configuration(self):
        gen = _generator(_server("{}"))
        assert gen.describe_configuration() == (
            "Local LLM Service: ollama - llama3.2 - http://localhost:11434/api/generate"
        )
        assert _generator(_server("{}"), enabled=False).describe_configuration() == (
            "Local LLM Service: Disabled"
        )

    def test_test_connection(self):
        assert _generator(_server("pong")).test_connection()

    def test_test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert not _generator(handler).test_connection()
        assert not _generator(_server("pong"), enabled=False).test_connection()

    def test_health_ready(self):
        report = _generator(_server("{}")).health_check()
        assert report["status"] == "LLM READY"
        assert report["connected"] is True
        assert report["llm_info"].startswith("Local LLM Service: ollama")

    def test_health_not_ready(self):
        report = _generator(lambda request: httpx.Response(503)).health_check()
        assert report["status"] == "LLM NOT READY"
        assert report["connected"] is False

    def test_list_models(self):
        gen = _generator(_server("{}", models=("mistral:7b", "llama3:latest")))
        assert gen.list_models() == ["llama3:latest", "mistral:7b"]


class TestCloudGenerator:
    def _cloud(self, handler, **cloud):
        settings = {"enabled": True, "api_key": "sk-test", **cloud}
        config = ConnectorConfig(cloud=CloudConfig(**settings))
        return CloudComponentGenerator(config, httpx.Client(transport=httpx.MockTransport(handler)))

    def test_success(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            content = "```json\n" + json.dumps(COMPONENT) + "\n```"
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        result = self._cloud(handler).generate("a hero")
        assert result.ok
        assert result.model == "gpt-4"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4"
        assert seen["body"]["messages"][0]["role"] == "system"
        assert seen["body"]["messages"][-1]["role"] == "user"

    def test_not_configured(self):
        result = self._cloud(lambda request: httpx.Response(200), api_key="").generate("x")
        assert not result.ok
        assert result.error.summary == "Cloud LLM service is not configured"

    def test_retries_on_429(self):
        count = 0

        def handler(request):
            nonlocal count
            count += 1
            if count < 3:
                return httpx.Response(429, text="slow down")
            return httpx.Response(200, json={"choices": [{"message": {"content": "pong"}}]})

        with patch("aem_llm_connector.llm.cloud.time.sleep"):
            assert self._cloud(handler).test_connection()
        assert count == 3

    def test_client_error_not_retried(self):
        count = 0

        def handler(request):
            nonlocal count
            count += 1
            return httpx.Response(401, text="bad key")

        with patch("aem_llm_connector.llm.cloud.time.sleep"):
            result = self._cloud(handler).generate("x")
        assert not result.ok
        assert count == 1

    def test_non_object_choice(self):
        def handler(request):
            return httpx.Response(200, json={"choices": ["not an object"]})

        result = self._cloud(handler).generate("x")
        assert not result.ok
        assert result.error.summary == "Empty response from Local LLM"

    def test_describe_configuration(self):
        gen = self._cloud(lambda request: httpx.Response(200))
        assert gen.describe_configuration().startswith("Cloud LLM Service: openai - gpt-4")
