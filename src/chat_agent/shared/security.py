"""
Secrets for the chat agent service.

The Azure OpenAI key normally lives in Key Vault. Lookups are cached for
`secret_cache_ttl` seconds; when Key Vault is not configured or does not
hold a value, the environment variable named after the secret is used.
"""

import os
import time
import logging
from typing import Dict, NamedTuple, Optional

from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000

AUTH_FAILURE_MARKERS = (
    "authentication failed",
    "unauthorized",
    "invalid_auth",
    "token",
    "credential",
    "forbidden",
    "access denied",
)


class _CachedSecret(NamedTuple):
    value: str
    expires_at: float


def env_var_name(secret_name: str) -> str:
    """Key Vault secret names use dashes; environment variables use underscores"""
    return secret_name.upper().replace("-", "_")


class SecurityManager:
    """Resolves service secrets and bounds user input"""

    def __init__(self, config: Optional[Settings] = None, secret_client: Optional[SecretClient] = None):
        self.config = config or default_settings
        self.secret_client = secret_client
        self._cache: Dict[str, _CachedSecret] = {}
        self._hits = 0
        self._misses = 0

        if self.secret_client is None and self.config.azure_key_vault_url:
            self.secret_client = self._connect_key_vault(self.config.azure_key_vault_url)
        elif self.secret_client is None:
            logger.info("No Key Vault URL configured; secrets come from settings and environment")

    def _connect_key_vault(self, vault_url: str) -> Optional[SecretClient]:
        config = self.config
        if config.azure_tenant_id and config.azure_client_id and config.azure_client_secret:
            credential = ClientSecretCredential(
                tenant_id=config.azure_tenant_id,
                client_id=config.azure_client_id,
                client_secret=config.azure_client_secret
            )
            credential_kind = "service principal"
        else:
            credential = DefaultAzureCredential()
            credential_kind = "default credential chain"

        try:
            client = SecretClient(vault_url=vault_url, credential=credential)
        except Exception as e:
            logger.warning(f"Key Vault client for {vault_url} could not be created: {e}")
            return None

        logger.info(f"Key Vault client ready for {vault_url} using {credential_kind}")
        return client

    def _remember(self, secret_name: str, value: str) -> None:
        self._cache[secret_name] = _CachedSecret(value, time.time() + self.config.secret_cache_ttl)

    def _cached(self, secret_name: str) -> Optional[str]:
        entry = self._cache.get(secret_name)
        if entry is None or entry.expires_at <= time.time():
            return None
        return entry.value

    def _read_key_vault(self, secret_name: str) -> Optional[str]:
        started = time.time()
        try:
            value = self.secret_client.get_secret(secret_name).value
        except Exception as e:
            elapsed = time.time() - started
            logger.warning(f"Key Vault lookup of '{secret_name}' failed after {elapsed:.3f}s: {e}")
            if self.is_auth_failure_error(e):
                self.invalidate_cache()
            return None

        logger.info(
            f"Loaded '{secret_name}' from Key Vault",
            extra={"secret_name": secret_name, "elapsed_s": round(time.time() - started, 3)}
        )
        return value or None

    def get_secret(self, secret_name: str) -> Optional[str]:
        """Cached value, else Key Vault, else the matching environment variable"""
        value = self._cached(secret_name)
        if value is not None:
            self._hits += 1
            logger.debug(f"Secret cache hit for '{secret_name}'", extra={"secret_name": secret_name})
            return value

        self._misses += 1

        if self.secret_client:
            value = self._read_key_vault(secret_name)

        if not value:
            value = os.environ.get(env_var_name(secret_name))
            if value:
                logger.info(f"Loaded '{secret_name}' from environment")

        if value:
            self._remember(secret_name, value)
        else:
            logger.debug(f"Secret '{secret_name}' is not set anywhere")
        return value

    def resolve_azure_openai_api_key(self) -> Optional[str]:
        """Key Vault secret, then the configured key, then AZURE_OPENAI_API_KEY"""
        if self.secret_client:
            api_key = self.get_secret(self.config.azure_openai_api_key_secret_name)
            if api_key:
                return api_key
        return self.config.azure_openai_api_key or os.environ.get("AZURE_OPENAI_API_KEY")

    def invalidate_cache(self):
        dropped = len(self._cache)
        self._cache.clear()
        logger.warning(f"Secret cache cleared ({dropped} entries)")

    def invalidate_secret(self, secret_name: str):
        if self._cache.pop(secret_name, None) is not None:
            logger.info(f"Secret '{secret_name}' evicted from cache")

    def is_auth_failure_error(self, error: Exception) -> bool:
        message = str(error).lower()
        return any(marker in message for marker in AUTH_FAILURE_MARKERS)

    def get_cache_stats(self) -> Dict[str, int]:
        return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}

    def sanitize_input(self, user_input: str) -> str:
        """Trim and bound user input before it enters a conversation"""
        if not user_input:
            return ""
        return user_input.strip()[:MAX_MESSAGE_LENGTH]

