"""Configuration management for the stream adapter."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models import Dialect, ModelDescriptor
from .transport import HttpConfig, create_http_config_from_dict

DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")

DEFAULT_CONTEXT_LENGTH = 128_000
DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_MODELS_CACHE_TTL = 300.0
DEFAULT_MODELS_FETCH_TIMEOUT = 30.0


class ProviderConfig(BaseModel):
    """One chat-completion provider as declared in config.yaml."""

    id: str
    name: str = ""
    base_url: str
    dialect: Dialect = Dialect.OPENAI

    # Credentials
    api_key: str | None = Field(default=None, repr=False)
    api_key_env: str | None = None
    requires_api_key: bool = True

    # Capability defaults applied to fetched models
    supports_tools: bool = True
    supports_vision: bool = False
    default_max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    default_context_length: int = DEFAULT_CONTEXT_LENGTH

    # Model list
    dynamic_models: bool = True
    models_cache_ttl: float = DEFAULT_MODELS_CACHE_TTL
    models_fetch_timeout: float | None = DEFAULT_MODELS_FETCH_TIMEOUT
    model_id_prefix: str | None = None
    models: list[ModelDescriptor] = Field(default_factory=list)

    anthropic_version: str = "2023-06-01"
    headers: dict[str, str] = Field(default_factory=dict)
    request_timeout: float | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def api_key_env_name(self) -> str:
        """Environment variable holding this provider's key."""
        if self.api_key_env:
            return self.api_key_env
        return f"{self.id.upper().replace('-', '_')}_API_KEY"

    def resolve_api_key(self) -> str | None:
        """Inline key first, then the environment."""
        return self.api_key or os.getenv(self.api_key_env_name) or None


class Configuration:
    """Manages configuration and environment variables for the adapter."""

    def __init__(
        self,
        config_path: str | os.PathLike[str] | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize configuration from YAML and environment variables.

        Args:
            config_path: YAML file to load; defaults to the bundled config.yaml
            config: Already-parsed configuration dict (skips the file)
        """
        self.load_env()  # Load .env for API keys
        if config is not None:
            self._config = config
        else:
            self._config = self._load_yaml_config(config_path or DEFAULT_CONFIG_PATH)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(path: str | os.PathLike[str]) -> dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(path) as file:
                data = yaml.safe_load(file)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        return data or {}

    @property
    def active_provider(self) -> str:
        return self._config.get("llm", {}).get("active", "openai")

    def provider_names(self) -> list[str]:
        return list(self._config.get("llm", {}).get("providers", {}))

    def get_provider_config(self, name: str | None = None) -> ProviderConfig:
        """
        Get a provider's configuration from YAML.

        Args:
            name: Provider key under ``llm.providers``; defaults to the active one

        Raises:
            ConfigurationError: If the provider is missing or its entry is invalid.
        """
        name = name or self.active_provider
        providers = self._config.get("llm", {}).get("providers", {})
        if name not in providers:
            raise ConfigurationError(
                f"Provider '{name}' not found in providers config"
            )

        entry = dict(providers[name] or {})
        entry.setdefault("id", name)
        try:
            return ProviderConfig.model_validate(entry)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration for provider '{name}': {e}") from e

    def api_key_for(self, provider: ProviderConfig) -> str | None:
        """
        Get the API key for a provider.

        Returns None for providers that do not need one.

        Raises:
            ConfigurationError: If a required key is not configured.
        """
        api_key = provider.resolve_api_key()
        if api_key is None and provider.requires_api_key:
            raise ConfigurationError(
                f"API key '{provider.api_key_env_name}' not found in environment "
                f"variables for provider '{provider.id}'"
            )
        return api_key

    def get_http_config(self) -> HttpConfig:
        try:
            return create_http_config_from_dict(self._config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid http configuration: {e}") from e

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})
