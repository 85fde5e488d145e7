"""Configuration management for Forge routing.

This module provides the Config class that manages application configuration,
including environment variables, YAML files, and runtime overrides.
"""

import os
from dataclasses import dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Type, Union

import yaml


def validate_config(func):
    """Decorator to validate configuration values."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        result = func(self, *args, **kwargs)
        self._validate()
        return result
    return wrapper


def _one_of(*choices: str) -> Callable[[Any], None]:
    def check(value: Any) -> None:
        if value not in choices:
            raise ValueError(f"Expected one of {', '.join(choices)}, got {value!r}")
    return check


@dataclass
class ConfigValue:
    """Configuration value with type information and validation."""
    value: Any
    type: Type
    required: bool = True
    default: Any = None
    validators: List[Callable[[Any], None]] = field(default_factory=list)

    def validate(self) -> None:
        """Validate the configuration value."""
        if self.required and self.value is None:
            raise ValueError("Required configuration value is missing")
        if self.value is not None and not isinstance(self.value, self.type):
            raise TypeError(f"Expected {self.type}, got {type(self.value)}")
        for validator in self.validators:
            validator(self.value)


class Config:
    """Configuration for Forge routing applications.

    Values come from built-in defaults, then environment variables, then any
    YAML file loaded explicitly. Nested sections are stored flattened with a
    double underscore separator (``routing__cache_dir``), and are exposed as
    environment variables with a single underscore
    (``FORGE_ROUTING_CACHE_DIR``).
    """

    def __init__(self, env_prefix: str = "FORGE_") -> None:
        """Initialize a new configuration instance.

        Args:
            env_prefix: Prefix for environment variables. Defaults to "FORGE_".
        """
        self._env_prefix = env_prefix
        self._values: Dict[str, ConfigValue] = {}
        self._load_defaults()
        self.load_env()

    def _load_defaults(self) -> None:
        """Load default configuration values."""
        defaults = {
            "debug": ConfigValue(False, bool, False),
            "env": ConfigValue(
                "production", str, False,
                validators=[_one_of("development", "production", "testing")],
            ),
            "log_level": ConfigValue(
                "INFO", str, False,
                validators=[_one_of("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")],
            ),
            "routing": {
                "cache_dir": ConfigValue("storage/cache/routes", str, False),
                "base_path": ConfigValue("", str, False),
                "middleware": ConfigValue(True, bool, False),
                "redirects_file": ConfigValue("", str, False),
            },
            "http": {
                "host": ConfigValue("0.0.0.0", str, False),
                "port": ConfigValue(8000, int, False),
            },
        }
        self._values = self._flatten_config(defaults)

    def _flatten_config(self, config: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
        """Flatten nested configuration into a flat dictionary."""
        result = {}
        for key, value in config.items():
            full_key = f"{prefix}{key}" if prefix else key
            if isinstance(value, dict):
                result.update(self._flatten_config(value, f"{full_key}__"))
            else:
                result[full_key] = value
        return result

    def _unflatten_config(self, config: Dict[str, ConfigValue]) -> Dict[str, Any]:
        """Unflatten configuration into a nested dictionary."""
        result: Dict[str, Any] = {}
        for key, value in config.items():
            parts = key.split("__")
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = value.value
        return result

    @validate_config
    def load_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file.

        Unknown keys are ignored so a shared application config file can
        carry sections this package does not use.

        Args:
            path: Path to the configuration file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file does not contain a mapping.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            return
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a dictionary")

        for key, value in self._flatten_config(config).items():
            if key in self._values:
                self._values[key].value = value

    @validate_config
    def load_env(self) -> None:
        """Load configuration from environment variables."""
        for key, entry in self._values.items():
            env_key = key.upper().replace("__", "_")
            value = os.getenv(f"{self._env_prefix}{env_key}")
            if value is not None:
                entry.value = self._convert_value(value, entry.type)

    def _convert_value(self, value: str, target_type: Type) -> Any:
        """Convert a string value to the target type."""
        if target_type == bool:
            return value.lower() in ("true", "1", "yes")
        elif target_type == int:
            return int(value)
        elif target_type == float:
            return float(value)
        elif target_type == str:
            return value
        else:
            raise TypeError(f"Unsupported type: {target_type}")

    def _validate(self) -> None:
        """Validate all configuration values."""
        for value in self._values.values():
            value.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Nested keys use the flattened form, e.g. ``routing__cache_dir``.
        """
        if key in self._values:
            return self._values[key].value
        return default

    @validate_config
    def set(self, key: str, value: Any) -> None:
        """Set a configuration value."""
        if key in self._values:
            self._values[key].value = value
        else:
            self._values[key] = ConfigValue(value, type(value), required=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return self._unflatten_config(self._values)

    @property
    def debug(self) -> bool:
        """Get debug mode status."""
        return self.get("debug", False)

    @property
    def env(self) -> str:
        """Get current environment."""
        return self.get("env", "production")

    @property
    def is_development(self) -> bool:
        """Development mode recompiles routes on every request."""
        return self.env == "development"

    @property
    def log_level(self) -> str:
        """Get log level."""
        return self.get("log_level", "INFO")

    @property
    def routing(self) -> Dict[str, Any]:
        """Get routing configuration."""
        return self.to_dict().get("routing", {})

    @property
    def http(self) -> Dict[str, Any]:
        """Get HTTP configuration."""
        return self.to_dict().get("http", {})
