"""Configuration management with environment variable integration and validation."""

import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from pydantic import ValidationError

from .types import RunnerConfig
from .errors import ConfigurationError
from .log import get_logger, log_event

logger = get_logger(__name__)

ENV_PREFIX = "COMMANDRUNNER_"


def load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Load environment variables with the given prefix and convert to appropriate types."""
    overrides = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            field_name = key[len(prefix):].lower()
            overrides[field_name] = _convert_env_value(value)
    return overrides


def _convert_env_value(value: str) -> Any:
    """Convert string environment value to appropriate Python type."""
    if not value:
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    return value


class ConfigManager:
    """Central configuration management."""

    def __init__(self) -> None:
        self._config: Optional[RunnerConfig] = None

    def load_config(
        self, config_file: Optional[Path] = None, **overrides: Any
    ) -> RunnerConfig:
        """Load configuration from file and environment with explicit overrides.

        Precedence, highest first: explicit overrides, ``COMMANDRUNNER_*``
        environment variables, config file, model defaults.
        """
        config_data: Dict[str, Any] = {}

        if config_file is not None:
            config_file = Path(config_file)
            if not config_file.exists():
                raise ConfigurationError(f"Config file not found: {config_file}")
            config_data.update(self._load_from_file(config_file))

        # Unrelated COMMANDRUNNER_* variables are ignored rather than rejected.
        config_data.update(
            {
                k: v
                for k, v in load_env_overrides().items()
                if v is not None and k in RunnerConfig.model_fields
            }
        )
        config_data.update(overrides)

        unknown = set(config_data) - set(RunnerConfig.model_fields)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(sorted(unknown))}"
            )

        try:
            self._config = RunnerConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}", details={"errors": e.errors()}
            ) from e
        log_event(
            logger,
            "config",
            "Configuration loaded",
            config_file=str(config_file) if config_file else None,
            settings=self._config.model_dump(),
        )
        return self._config

    def get_config(self) -> RunnerConfig:
        """Get current configuration, loading defaults on first use."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def reset(self) -> None:
        """Forget the loaded configuration."""
        self._config = None

    def _load_from_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if config_file.suffix.lower() not in (".yml", ".yaml"):
            raise ConfigurationError(
                f"Unsupported config file format: {config_file.suffix}"
            )
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load config file {config_file}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_file} must contain a mapping"
            )
        return data


_config_manager = ConfigManager()


def load_config(**kwargs: Any) -> RunnerConfig:
    """Load global configuration."""
    return _config_manager.load_config(**kwargs)


def get_config() -> RunnerConfig:
    """Get current global configuration."""
    return _config_manager.get_config()


def reset_config() -> None:
    """Reset global configuration so the next get_config() reloads it."""
    _config_manager.reset()
