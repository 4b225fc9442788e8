"""Configuration loader for the search index synchronizer."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from index_sync.models.config import AppConfig

log = structlog.stdlib.get_logger()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables."""

    def __init__(self) -> None:
        """Initialize the ConfigLoader."""
        self.env_var_pattern = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to the configuration YAML file. If None, uses
                config/<APP_ENV>.yaml, falling back to config/default.yaml

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If configuration file is missing or invalid
        """
        if config_path is None:
            config_path = self._get_default_config_path()

        log.info("loading_configuration", config_path=config_path)

        config_dict = self._load_yaml_file(config_path)
        config_dict = self._substitute_env_vars(config_dict)

        try:
            app_config = AppConfig(**config_dict)
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Invalid configuration:\n{self._format_errors(e)}") from e

        self.validate_config(app_config)
        log.info("configuration_loaded_successfully", env=app_config.env)
        return app_config

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path based on environment.

        Returns:
            str: Path to the configuration file
        """
        env = os.getenv("APP_ENV", "default")
        config_dir = Path(__file__).parent.parent.parent / "config"
        config_file = config_dir / f"{env}.yaml"

        if not config_file.exists():
            config_file = config_dir / "default.yaml"

        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}. "
                f"Please create config/default.yaml or set APP_ENV to a valid environment."
            )

        return str(config_file)

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        """Load YAML configuration file.

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(config_path, "r") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration file {config_path}: {e}")

        if config_dict is None:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        log.debug("yaml_file_loaded", config_path=config_path)
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute environment variables in configuration.

        Environment variables are written as ${VAR_NAME} or ${VAR_NAME:-default}.
        """
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_in_string(config)
        else:
            return config

    def _substitute_env_var_in_string(self, value: str) -> str:
        """Substitute environment variables in a string.

        Raises:
            ConfigurationError: If a variable without a default is not set
        """

        def replace(match: re.Match[str]) -> str:
            var_name, default = match.group(1), match.group(2)
            env_value = os.getenv(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            raise ConfigurationError(
                f"Required environment variable not set: {var_name}. "
                f"Please set {var_name} in your environment or .env file."
            )

        return self.env_var_pattern.sub(replace, value)

    @staticmethod
    def _format_errors(error: ValidationError) -> str:
        return "\n".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
        )

    def validate_config(self, config: AppConfig) -> list[str]:
        """Check settings that are valid on their own but questionable together.

        Args:
            config: Application configuration to validate

        Returns:
            List of warning messages (empty if no warnings)
        """
        warnings = []
        postgres = config.postgres
        detection = postgres.change_detection

        if postgres.min_pool_size > postgres.max_pool_size:
            warnings.append(
                f"min_pool_size ({postgres.min_pool_size}) is greater than "
                f"max_pool_size ({postgres.max_pool_size})"
            )

        # Both entity kinds are read concurrently, each on its own connection.
        if postgres.max_pool_size < 2:
            warnings.append(
                f"max_pool_size ({postgres.max_pool_size}) serializes the per-kind queries; "
                f"use at least 2"
            )

        if detection.cycle_timeout > detection.polling_interval:
            warnings.append(
                f"cycle_timeout ({detection.cycle_timeout}s) exceeds polling_interval "
                f"({detection.polling_interval}s); slow cycles will skip ticks"
            )

        if config.meilisearch.task_poll_interval >= config.meilisearch.task_timeout:
            warnings.append(
                f"task_poll_interval ({config.meilisearch.task_poll_interval}s) should be "
                f"less than task_timeout ({config.meilisearch.task_timeout}s)"
            )

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)

        return warnings
