"""Configuration package for the exam trainer."""

from exam_trainer.config.app_config import (
    AppConfig,
    GatewayConfig,
    LLMSettings,
    ProviderConfig,
    SpeechConfig,
    clear_config_cache,
    config_path,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GatewayConfig",
    "LLMSettings",
    "ProviderConfig",
    "SpeechConfig",
    "clear_config_cache",
    "config_path",
    "get_provider_config",
    "load_app_config",
]
