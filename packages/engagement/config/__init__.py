"""Configuration loaders and schemas."""

from engagement.config.loader import (
    load_config_file,
    load_engine_config,
    reload_configs,
)
from engagement.config.schemas import (
    BookingConfig,
    CancellationConfig,
    EngineConfig,
    NotificationsConfig,
    TimeWindows,
    TrackerConfig,
)
from engagement.config.settings import EngineSettings, get_settings

__all__ = [
    "load_config_file",
    "load_engine_config",
    "reload_configs",
    "BookingConfig",
    "CancellationConfig",
    "EngineConfig",
    "NotificationsConfig",
    "TimeWindows",
    "TrackerConfig",
    "EngineSettings",
    "get_settings",
]
