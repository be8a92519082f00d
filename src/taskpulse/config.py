"""
Settings - user configuration for taskpulse.

Settings are read from an optional YAML file and then overridden by
environment variables. Nothing here is required; every field has a default.
"""
import os
import yaml
from pathlib import Path
from typing import Dict, Optional, Union
from pydantic import BaseModel, Field, ValidationError, field_validator

from taskpulse.recovery import CorruptionError, FileOperationError
from taskpulse.logs import get_logger
from taskpulse.analytics.metrics import DEFAULT_HOURS_BY_PRIORITY

log = get_logger("config")

CONFIG_PATH = Path.home() / ".config" / "taskpulse" / "config.yml"
PROJECT_DATA_DIR = Path(".taskpulse")

_ENV_OVERRIDES = {
    "TASKPULSE_DATA_FILE": "data_file",
    "TASKPULSE_TREND_MONTHS": "trend_months",
    "TASKPULSE_COMPARISON_DAYS": "comparison_days",
    "TASKPULSE_CHANNEL": "channel_name",
}


class Settings(BaseModel):
    data_file: Path = Field(default=PROJECT_DATA_DIR / "data.yml", description="Workspace data file")
    unknown_label: str = Field(default="Unknown", description="Display name for dangling references")
    trend_months: int = Field(default=6, ge=1, le=36, description="Months covered by the monthly trend")
    comparison_days: int = Field(default=30, ge=1, description="Length of the period-over-period window")
    hours_by_priority: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_HOURS_BY_PRIORITY),
        description="Hour estimate for tasks without estimated_hours"
    )
    channel_name: str = Field(default="analytics:refresh", description="Refresh broadcast channel")

    @field_validator('hours_by_priority')
    @classmethod
    def validate_hours(cls, v):
        merged = dict(DEFAULT_HOURS_BY_PRIORITY)
        merged.update(v)
        for priority, hours in merged.items():
            if hours < 0:
                raise ValueError(f"Negative hour estimate for priority {priority}")
        return merged


def load_settings(config_path: Union[Path, str, None] = None) -> Settings:
    """
    Load settings from YAML and the environment.

    Args:
        config_path: Explicit config file; falls back to TASKPULSE_CONFIG and
            then to ~/.config/taskpulse/config.yml.

    Returns:
        A validated Settings instance.
    """
    path = Path(config_path or os.getenv("TASKPULSE_CONFIG") or CONFIG_PATH)
    data = {}

    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CorruptionError(f"Config file {path} is not valid YAML: {e}") from e
        except OSError as e:
            raise FileOperationError(f"Failed to read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptionError(f"Config file {path} must contain a mapping")
        log.debug(f"Loaded config from {path}")

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            data[field_name] = value

    try:
        return Settings(**data)
    except ValidationError as e:
        raise CorruptionError(f"Invalid configuration: {e}") from e


_settings: Optional[Settings] = None

def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings

def reset_settings():
    global _settings
    _settings = None
