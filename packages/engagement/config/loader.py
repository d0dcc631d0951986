"""Configuration file loaders."""

import os
from functools import lru_cache
from pathlib import Path

import yaml

from engagement.config.schemas import EngineConfig


def _get_config_dir() -> Path:
    """Get the config directory path."""
    config_dir = os.environ.get("ENGAGEMENT_CONFIG_DIR")
    if config_dir:
        return Path(config_dir)

    # Default: look for config dir relative to project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        config_path = parent / "config"
        if config_path.is_dir() and (config_path / "engine.yaml").exists():
            return config_path

    raise FileNotFoundError("Config directory not found")


def _load_yaml(path: Path) -> dict:
    """Load a YAML config file."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: dict | list | str) -> dict | list | str:
    """Recursively expand environment variables in config values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        return os.environ.get(env_var, data)
    return data


def load_config_file(path: str | Path) -> EngineConfig:
    """Load an engine configuration from an explicit YAML path.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If schema validation fails
    """
    data = _expand_env_vars(_load_yaml(Path(path)))
    return EngineConfig(**data)


@lru_cache
def load_engine_config() -> EngineConfig:
    """Load the engine configuration from ``engine.yaml``."""
    return load_config_file(_get_config_dir() / "engine.yaml")


def reload_configs() -> None:
    """Clear cached configs to force reload."""
    load_engine_config.cache_clear()
