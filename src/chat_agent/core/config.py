"""
Configuration settings for the Sentinel Chat Agent service
"""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application settings
    app_name: str = "Sentinel Chat Agent"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Azure Key Vault
    azure_key_vault_url: Optional[str] = None
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    azure_client_secret: Optional[str] = None
    azure_openai_api_key_secret_name: str = "AzureOpenAIApiKey"
    secret_cache_ttl: int = 3600  # 1 hour

    # Azure OpenAI (API key overridden by Key Vault in production)
    azure_openai_endpoint: Optional[str] = None
    azure_openai_deployment_name: str = "gpt-4o"
    azure_openai_api_version: str = "2024-10-01-preview"
    azure_openai_api_key: Optional[str] = None

    # OpenAI fallback provider
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    enable_fallback: bool = True

    # Group chat routing
    max_invocations: int = 20
    participant_timeout_seconds: float = 30.0
    history_context_limit: int = 10
    session_prefix: str = "sentinel"

    # CORS settings (React dev servers)
    cors_origins: list = [
        "http://localhost:3000",
        "http://localhost:5173",
        "https://localhost:3000",
        "https://localhost:5173",
    ]

    # Logging settings
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra environment variables


# Global settings instance
settings = Settings()
