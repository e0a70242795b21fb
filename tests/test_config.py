import pytest
from forkify_ingest.backend import create_supabase_client
from forkify_ingest.config import Config


def test_config_reads_api_key_from_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key-123")
    config = Config()
    assert config.anthropic_api_key == "test-key-123"


def test_config_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
        Config()


def test_config_default_model(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    config = Config()
    assert config.anthropic_model == "claude-opus-4-6"


def test_config_relay_defaults(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    config = Config()
    assert config.relay_timeout == 30.0
    assert "corsproxy.io" in config.primary_relay
    assert "allorigins" in config.fallback_relay
    assert config.link_retries == 1


def test_relay_url_quotes_target(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    config = Config()
    url = config.relay_url(config.fallback_relay, "https://example.com/recipe?id=1")
    assert url == "https://api.allorigins.win/get?url=https%3A%2F%2Fexample.com%2Frecipe%3Fid%3D1"


def test_config_reads_supabase_settings(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("STORAGE_BUCKET", "photos")
    config = Config()
    assert config.supabase_url == "https://project.supabase.co"
    assert config.storage_bucket == "photos"


def test_supabase_client_requires_credentials(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    with pytest.raises(ValueError, match="SUPABASE_URL"):
        create_supabase_client(Config())
