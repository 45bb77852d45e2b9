"""
Configuration management for the Semantic Routing System.
"""

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Dict, Any
import logging

from ..models.config import (
    SystemConfig, RoutingThresholds, TimeoutConfig, RetryConfig, UploadLimits,
    HealthPolicy, OpenAIConfig, LocalLLMConfig, LoggingConfig,
)
from .error_handling import ConfigurationError


_SECTIONS = {
    'routing_thresholds': RoutingThresholds,
    'timeouts': TimeoutConfig,
    'retry': RetryConfig,
    'upload_limits': UploadLimits,
    'health_policy': HealthPolicy,
    'openai_config': OpenAIConfig,
    'local_llm_config': LocalLLMConfig,
    'logging_config': LoggingConfig,
}

_LLM_BACKENDS = ("openai", "local")


class ConfigManager:
    """
    Manages system configuration loading, validation, and updates.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or "semantic_routing.json"
        self._config: Optional[SystemConfig] = None
        self.logger = logging.getLogger(__name__)

    def load_config(self) -> SystemConfig:
        """
        Load configuration from file or create default configuration.

        Returns:
            SystemConfig instance

        Raises:
            ConfigurationError: If configuration loading fails
        """
        try:
            if Path(self.config_path).exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                config = self._dict_to_config(config_data)
                self.logger.info(f"Configuration loaded from {self.config_path}")
            else:
                config = SystemConfig()
                self.save_config(config)
                self.logger.info("Default configuration created")
        except ConfigurationError:
            raise
        except (OSError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Failed to load configuration: {str(e)}") from e

        if not config.openai_config.api_key:
            config.openai_config.api_key = os.environ.get("OPENAI_API_KEY", "")

        self._validate_config(config)
        self._config = config
        return config

    def save_config(self, config: Optional[SystemConfig] = None) -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save (uses current config if None)

        Raises:
            ConfigurationError: If configuration saving fails
        """
        config_to_save = config or self._config
        if not config_to_save:
            raise ConfigurationError("No configuration to save")

        config_dict = self._config_to_dict(config_to_save)
        # Never persist secrets picked up from the environment
        config_dict['openai_config']['api_key'] = ""

        try:
            Path(self.config_path).parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, default=str)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {str(e)}") from e

        self.logger.info(f"Configuration saved to {self.config_path}")

    def get_config(self) -> SystemConfig:
        """
        Get current configuration, loading if necessary.

        Returns:
            SystemConfig instance
        """
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def update_config(self, updates: Dict[str, Any]) -> SystemConfig:
        """
        Update configuration with new values.

        Args:
            updates: Dictionary of configuration updates

        Returns:
            Updated SystemConfig instance
        """
        current_config = self.get_config()
        config_dict = self._config_to_dict(current_config)

        self._deep_update(config_dict, updates)

        updated_config = self._dict_to_config(config_dict)
        self._validate_config(updated_config)

        self._config = updated_config
        self.save_config()

        return updated_config

    def _validate_config(self, config: SystemConfig) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigurationError: If validation fails
        """
        thresholds = config.routing_thresholds
        for name, value in asdict(thresholds).items():
            if not 0 <= value <= 1:
                raise ConfigurationError(f"Threshold {name} must be between 0 and 1", config_key=name)

        if thresholds.low_confidence > thresholds.semantic_confidence:
            raise ConfigurationError(
                "low_confidence threshold cannot exceed semantic_confidence",
                config_key="low_confidence"
            )

        for name, value in asdict(config.timeouts).items():
            if value <= 0:
                raise ConfigurationError(f"Timeout {name} must be positive", config_key=name)

        if config.retry.max_retries < 0 or config.retry.backoff_ms < 0:
            raise ConfigurationError("Retry settings must not be negative", config_key="retry")

        if config.upload_limits.max_file_size_bytes <= 0:
            raise ConfigurationError("Maximum upload size must be positive", config_key="max_file_size_bytes")

        if not config.upload_limits.allowed_extensions:
            raise ConfigurationError("At least one upload extension must be allowed", config_key="allowed_extensions")

        if config.llm_backend not in _LLM_BACKENDS:
            raise ConfigurationError(
                f"Unknown LLM backend '{config.llm_backend}', expected one of {_LLM_BACKENDS}",
                config_key="llm_backend"
            )

        if config.openai_config.api_key and not config.openai_config.api_key.startswith('sk-'):
            self.logger.warning("OpenAI API key format may be invalid")

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        sections = {
            key: section_cls(**config_dict.get(key, {}))
            for key, section_cls in _SECTIONS.items()
        }
        return SystemConfig(
            **sections,
            llm_backend=config_dict.get('llm_backend', 'openai'),
            debug_mode=config_dict.get('debug_mode', False),
            metadata=config_dict.get('metadata', {})
        )

    def _config_to_dict(self, config: SystemConfig) -> Dict[str, Any]:
        """Convert SystemConfig object to dictionary."""
        return asdict(config)

    def _deep_update(self, base_dict: Dict[str, Any], updates: Dict[str, Any]) -> None:
        """Recursively update nested dictionary."""
        for key, value in updates.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value
