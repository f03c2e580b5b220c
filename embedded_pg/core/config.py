"""Layered configuration: model defaults, a YAML file, EMBEDDED_PG_* variables, arguments.

Each layer overrides the one before it. Nested sections are addressed in the
environment with a double underscore, e.g. ``EMBEDDED_PG_TIMEOUTS__INITDB=60``.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .types import EmbeddedPgConfig

ENV_PREFIX = "EMBEDDED_PG_"
YAML_SUFFIXES = (".yml", ".yaml")
# Split on os.pathsep rather than commas
_PATH_LIST_FIELDS = frozenset({"binary_path"})
# Switched on by being set at all, even to an empty string
_FLAG_FIELDS = frozenset({"no_cleanup"})

_TRUE = frozenset({"true", "yes", "on"})
_FALSE = frozenset({"false", "no", "off"})


def load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Settings found in variables starting with prefix, as a nested dict."""
    overrides: Dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(prefix):
            continue
        key = name[len(prefix):].lower()
        if not raw.strip():
            if key in _FLAG_FIELDS:
                overrides[key] = True
            continue
        section, nested, field = key.partition("__")
        if nested:
            if field and "__" not in field:
                overrides.setdefault(section, {})[field] = _parse_env_value(raw)
        elif key in _PATH_LIST_FIELDS:
            overrides[key] = [entry for entry in raw.split(os.pathsep) if entry]
        else:
            overrides[key] = _parse_env_value(raw)
    return overrides


def _parse_env_value(raw: str) -> Any:
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            pass
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    if "," in raw:
        return [item.strip() for item in raw.split(",")]
    return raw


def _deep_update(target: Dict[str, Any], layer: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            target[key] = _deep_update(dict(current), value)
        else:
            target[key] = value
    return target


def read_config_file(path: Path) -> Dict[str, Any]:
    """Parse a YAML configuration file into a dict.

    Raises:
        ConfigurationError: missing, unreadable, not YAML, or not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    if path.suffix.lower() not in YAML_SUFFIXES:
        raise ConfigurationError(f"Unsupported config file format: {path.suffix}")
    try:
        with path.open(encoding="utf-8") as stream:
            data = yaml.safe_load(stream)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


class ConfigManager:
    """Builds an EmbeddedPgConfig from all layers and remembers the last one."""

    def __init__(self, env_prefix: str = ENV_PREFIX) -> None:
        self._env_prefix = env_prefix
        self._config: Optional[EmbeddedPgConfig] = None

    def load_config(
        self, config_file: Optional[Path] = None, **overrides: Any
    ) -> EmbeddedPgConfig:
        layers = []
        if config_file is not None:
            layers.append(read_config_file(config_file))
        layers.append(load_env_overrides(self._env_prefix))
        layers.append(overrides)

        merged: Dict[str, Any] = {}
        for layer in layers:
            _deep_update(merged, layer)
        try:
            self._config = EmbeddedPgConfig(**merged)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return self._config

    def get_config(self) -> EmbeddedPgConfig:
        if self._config is None:
            return self.load_config()
        return self._config

    def reset(self) -> None:
        self._config = None


_config_manager = ConfigManager()


def load_config(**kwargs: Any) -> EmbeddedPgConfig:
    return _config_manager.load_config(**kwargs)


def get_config() -> EmbeddedPgConfig:
    """Last loaded configuration; loads one from the environment if none was."""
    return _config_manager.get_config()


def reset_config() -> None:
    _config_manager.reset()
