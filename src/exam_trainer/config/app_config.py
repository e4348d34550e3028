"""Application configuration loader.

Loads centralized configuration from config/exam_trainer.yaml (or the file
named by EXAM_TRAINER_CONFIG) with built-in defaults when no file exists.

Usage:
    from exam_trainer.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    provider = get_provider_config("openai")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("config/exam_trainer.yaml")
CONFIG_ENV_VAR = "EXAM_TRAINER_CONFIG"


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class LLMSettings:
    """Active provider and generation parameters."""

    provider: str = "openai"
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 8192
    timeout: int = 120
    supports_json_object: bool | None = None


@dataclass
class SpeechConfig:
    """Listening audio synthesis settings."""

    model: str = "gpt-4o-mini-tts"
    primary_voice: str = "onyx"
    secondary_voice: str = "nova"
    sample_rate: int = 24000


@dataclass
class GatewayConfig:
    """How the trainer reaches the generation service.

    mode "local" runs the service in-process; mode "http" posts
    {action, payload} to url.
    """

    mode: str = "local"
    url: str = "http://localhost:8000/api/generate"
    timeout: float = 180.0


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    llm: LLMSettings = field(default_factory=LLMSettings)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
            "openai": {
                "base_url": "https://api.openai.com/v1",
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "anthropic": {
                "base_url": "https://api.anthropic.com/v1",
                "default_model": "claude-sonnet-4-20250514",
                "api_key_env": "ANTHROPIC_API_KEY",
            },
        },
        "llm": {
            "provider": "openai",
            "temperature": 0.7,
            "max_tokens": 8192,
            "timeout": 120,
        },
        "speech": {
            "model": "gpt-4o-mini-tts",
            "primary_voice": "onyx",
            "secondary_voice": "nova",
            "sample_rate": 24000,
        },
        "gateway": {
            "mode": "local",
            "url": "http://localhost:8000/api/generate",
            "timeout": 180.0,
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in (data.get("providers") or defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    llm_data = data.get("llm", {})
    llm = LLMSettings(
        provider=llm_data.get("provider", "openai"),
        model=llm_data.get("model"),
        temperature=llm_data.get("temperature", 0.7),
        max_tokens=llm_data.get("max_tokens", 8192),
        timeout=llm_data.get("timeout", 120),
        supports_json_object=llm_data.get("supports_json_object"),
    )

    speech_data = data.get("speech", {})
    speech = SpeechConfig(
        model=speech_data.get("model", "gpt-4o-mini-tts"),
        primary_voice=speech_data.get("primary_voice", "onyx"),
        secondary_voice=speech_data.get("secondary_voice", "nova"),
        sample_rate=speech_data.get("sample_rate", 24000),
    )

    gateway_data = data.get("gateway", {})
    gateway = GatewayConfig(
        mode=gateway_data.get("mode", "local"),
        url=gateway_data.get("url", "http://localhost:8000/api/generate"),
        timeout=float(gateway_data.get("timeout", 180.0)),
    )

    return AppConfig(providers=providers, llm=llm, speech=speech, gateway=gateway)


def config_path() -> Path:
    """Config file in effect: EXAM_TRAINER_CONFIG if set, else the default path."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return CONFIG_FILE


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    path = config_path()
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config", looked_at=str(path))
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "lmstudio", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
