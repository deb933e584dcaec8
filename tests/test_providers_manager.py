"""
Tests for providers/manager.py.

Covers:
  - auto mode picks the first provider with a key (openai → anthropic → google)
  - forced mode uses the named provider, errors when its key is missing
  - unknown INFERENCE_PROVIDER rejected
  - get_provider() caches; reset_provider() drops the cache
"""
from __future__ import annotations

import pytest

import config
import providers.manager as manager_mod
from providers.manager import get_provider, reset_provider


@pytest.fixture(autouse=True)
def no_keys(monkeypatch):
    """Each test starts with no keys and a clean provider cache."""
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "")
    monkeypatch.setattr(config, "INFERENCE_PROVIDER", "auto")
    reset_provider()
    yield
    reset_provider()


class TestAutoMode:
    def test_no_keys_raises(self):
        with pytest.raises(RuntimeError, match="No inference provider"):
            get_provider()

    def test_openai_preferred(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
        assert get_provider().name == "openai"

    def test_anthropic_when_only_anthropic(self, monkeypatch):
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.setattr(config, "ANTHROPIC_MODEL", "claude-sonnet-4-5")
        assert get_provider().full_name == "anthropic/claude-sonnet-4-5"

    def test_google_last(self, monkeypatch):
        monkeypatch.setattr(config, "GOOGLE_API_KEY", "g-test")
        assert get_provider().name == "google"


class TestForcedMode:
    def test_forced_provider_used(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.setattr(config, "INFERENCE_PROVIDER", "anthropic")
        assert get_provider().name == "anthropic"

    def test_forced_without_key_raises(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(config, "INFERENCE_PROVIDER", "google")
        with pytest.raises(RuntimeError, match="google"):
            get_provider()

    def test_unknown_mode_raises(self, monkeypatch):
        monkeypatch.setattr(config, "INFERENCE_PROVIDER", "groq")
        with pytest.raises(ValueError, match="Unknown INFERENCE_PROVIDER"):
            get_provider()


class TestCaching:
    def test_cached_between_calls(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        assert get_provider() is get_provider()

    def test_reset_rebuilds(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        first = get_provider()
        reset_provider()
        assert manager_mod._provider is None
        assert get_provider() is not first
