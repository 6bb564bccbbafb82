"""Tests for configuration loading and retry policy."""

import os
import tempfile

import pytest
import yaml
from pydantic import ValidationError

from aem_llm_connector.config import (
    ConnectorConfig,
    LocalLLMConfig,
    RetryPolicy,
    load_config,
)


class TestConfigLoading:
    def test_valid_config(self):
        fd, path = tempfile.mkstemp(suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.dump({
                    "local": {"model": "mistral", "timeout": 60, "retry_attempts": 5},
                    "retry": {"backoff_base": 0.5, "fallback_models": ["phi3"]},
                }, f)
            config, cfg_path = load_config(path)
            assert cfg_path is not None
            assert config.local.model == "mistral"
            assert config.local.timeout == 60
            assert config.local.retry_attempts == 5
            assert config.retry.backoff_base == 0.5
            assert config.retry.fallback_models == ("phi3",)
            # untouched sections keep defaults
            assert config.catalog.generic_match == "llama"
        finally:
            os.unlink(path)

    def test_nonexistent_file(self):
        with pytest.raises(FileNotFoundError):
            load_config("/tmp/nonexistent_llm_connector_12345.yaml")

    def test_invalid_values(self):
        fd, path = tempfile.mkstemp(suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.dump({"local": {"retry_attempts": 0}}, f)
            with pytest.raises(ValidationError):
                load_config(path)
        finally:
            os.unlink(path)

    def test_empty_config(self):
        fd, path = tempfile.mkstemp(suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                f.write("")
            config, _ = load_config(path)
            assert config == ConnectorConfig()
        finally:
            os.unlink(path)

    def test_defaults_when_no_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        config, path = load_config(None)
        assert path is None
        assert config.local.model == "llama3.2"

    def test_cwd_config_found(self, tmp_path, monkeypatch):
        (tmp_path / "llm_connector.yaml").write_text("local:\n  model: codellama\n")
        monkeypatch.chdir(tmp_path)
        config, path = load_config(None)
        assert path == (tmp_path / "llm_connector.yaml").resolve()
        assert config.local.model == "codellama"


class TestLocalLLMConfig:
    def test_defaults(self):
        cfg = LocalLLMConfig()
        assert cfg.api_url == "http://localhost:11434/api/generate"
        assert cfg.vision_model == "llava:7b"
        assert cfg.retry_attempts == 3
        assert cfg.strip_markdown

    def test_tags_url(self):
        cfg = LocalLLMConfig(api_url="http://gpu-box:11434/api/generate")
        assert cfg.tags_url == "http://gpu-box:11434/api/tags"

    def test_frozen(self):
        cfg = LocalLLMConfig()
        with pytest.raises(ValidationError):
            cfg.model = "other"


class TestRetryPolicy:
    def test_exponential(self):
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_capped_and_non_decreasing(self):
        policy = RetryPolicy(backoff_base=2.0, backoff_cap=10.0)
        delays = [policy.delay_for(n) for n in range(1, 8)]
        assert delays == sorted(delays)
        assert max(delays) == 10.0

    def test_zero_base(self):
        assert RetryPolicy(backoff_base=0).delay_for(3) == 0

    def test_default_fallbacks(self):
        policy = RetryPolicy()
        assert policy.fallback_models == ("llama3", "llama2", "codellama", "llama3.2:latest")
        assert "timeout" in policy.fallback_on
        assert "model_not_found" in policy.fallback_on
