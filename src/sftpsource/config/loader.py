"""
Configuration file loading.

Loads ``config.yaml`` (plus an optional ``config.<env>.yaml`` overlay) from a
project directory.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from sftpsource.config.resolver import resolve_config
from sftpsource.exceptions import ConfigurationError


class Config:
    """sftpsource configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        self.connections = data.get("connections", {}) or {}
        self.source = data.get("source", {}) or {}
        self.trigger = data.get("trigger", {}) or {}
        self.metadata = data.get("metadata", {}) or {}
        self.output = data.get("output", {}) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        if "." in key:
            value: Any = self.data
            for k in key.split("."):
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """Validate configuration structure (section types only)."""
        errors = []

        if not isinstance(self.data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(self.data).__name__}")

        for section in ("connections", "source", "trigger", "metadata", "output", "logging", "service"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a mapping, got {type(value).__name__}")

        if errors:
            raise ConfigurationError("\n".join(errors))


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load sftpsource configuration.

    Args:
        project_path: Path to project root (default: current directory)
        env: Environment name (dev, staging, prod); selects ``config.<env>.yaml``

    Returns:
        Config instance with merged and resolved configuration

    Raises:
        ConfigurationError: If the file is missing or not valid YAML
    """
    if project_path is None:
        project_path = Path.cwd()

    base_config_path = Path(project_path) / "config.yaml"
    if not base_config_path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {base_config_path}\n"
            f"  Suggestion: Create a config.yaml file in your project root",
            details={"path": str(base_config_path)},
        )

    config_data = _read_yaml(base_config_path)

    if env:
        env_config_path = Path(project_path) / f"config.{env}.yaml"
        if env_config_path.exists():
            _merge_dict(config_data, _read_yaml(env_config_path))

    config = Config(resolve_config(config_data, env or "dev"))
    config.validate()
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
            raise ConfigurationError(
                f"Error parsing {path.name}{where}:\n"
                f"  {e}\n"
                f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes",
                details={"path": str(path)},
            ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping at the top level", details={"path": str(path)})
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
