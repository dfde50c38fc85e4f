"""Tests for secret resolution: Key Vault, cache, configuration and environment fallback"""

from types import SimpleNamespace

from chat_agent.core.config import Settings
from chat_agent.shared.security import SecurityManager


class FakeSecretClient:

    def __init__(self, secrets=None, error=None):
        self.secrets = secrets or {}
        self.error = error
        self.calls = []

    def get_secret(self, name):
        self.calls.append(name)
        if self.error:
            raise self.error
        return SimpleNamespace(value=self.secrets.get(name))


def make_settings(**overrides):
    values = {"azure_key_vault_url": None, "azure_openai_api_key": None, "secret_cache_ttl": 3600}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_secret_from_key_vault_is_cached():
    client = FakeSecretClient({"AzureOpenAIApiKey": "kv-key"})
    manager = SecurityManager(make_settings(), secret_client=client)

    assert manager.get_secret("AzureOpenAIApiKey") == "kv-key"
    assert manager.get_secret("AzureOpenAIApiKey") == "kv-key"

    assert client.calls == ["AzureOpenAIApiKey"]
    assert manager.get_cache_stats() == {"hits": 1, "misses": 1, "size": 1}


def test_expired_cache_refetches():
    client = FakeSecretClient({"name": "value"})
    manager = SecurityManager(make_settings(secret_cache_ttl=0), secret_client=client)

    manager.get_secret("name")
    manager.get_secret("name")
    assert len(client.calls) == 2


def test_environment_fallback_without_key_vault(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    manager = SecurityManager(make_settings())

    assert manager.secret_client is None
    assert manager.get_secret("openai-api-key") == "env-key"


def test_missing_secret_returns_none(monkeypatch):
    monkeypatch.delenv("NOT_THERE", raising=False)
    manager = SecurityManager(make_settings())
    assert manager.get_secret("not-there") is None


def test_auth_failure_invalidates_cache(monkeypatch):
    monkeypatch.delenv("OTHER", raising=False)
    client = FakeSecretClient({"cached": "value"})
    manager = SecurityManager(make_settings(), secret_client=client)
    manager.get_secret("cached")

    client.error = RuntimeError("401 Unauthorized")
    assert manager.get_secret("other") is None
    assert manager.get_cache_stats()["size"] == 0


def test_is_auth_failure_error():
    manager = SecurityManager(make_settings())
    assert manager.is_auth_failure_error(Exception("Access denied to vault"))
    assert manager.is_auth_failure_error(Exception("credential unavailable"))
    assert not manager.is_auth_failure_error(Exception("connection reset"))


def test_resolve_api_key_prefers_key_vault():
    client = FakeSecretClient({"AzureOpenAIApiKey": "kv-key"})
    manager = SecurityManager(make_settings(azure_openai_api_key="config-key"), secret_client=client)
    assert manager.resolve_azure_openai_api_key() == "kv-key"


def test_resolve_api_key_falls_back_to_config_then_env(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "env-key")
    monkeypatch.delenv("AZUREOPENAIAPIKEY", raising=False)

    with_config = SecurityManager(make_settings(azure_openai_api_key="config-key"))
    assert with_config.resolve_azure_openai_api_key() == "config-key"

    client = FakeSecretClient({})
    from_env = SecurityManager(make_settings(), secret_client=client)
    assert from_env.resolve_azure_openai_api_key() == "env-key"


def test_invalidate_single_secret():
    client = FakeSecretClient({"a": "1", "b": "2"})
    manager = SecurityManager(make_settings(), secret_client=client)
    manager.get_secret("a")
    manager.get_secret("b")

    manager.invalidate_secret("a")
    assert manager.get_cache_stats()["size"] == 1


def test_sanitize_input():
    manager = SecurityManager(make_settings())
    assert manager.sanitize_input("  hello  ") == "hello"
    assert manager.sanitize_input("") == ""
    assert len(manager.sanitize_input("x" * 5000)) == 4000
