"""
Monitor Configuration
=====================
Single source of truth for every engine tunable: buffer sizes, alert
policy and detector parameters.

Settings are pydantic models so that a typo or an out-of-range value in a
config file fails immediately with a clear message instead of silently
skewing the detectors.

Config file format (JSON):

    {
        "settings": {"alert_cooldown_seconds": 120, "cusum": {"h": 4.0}},
        "parameters": {"temperature": {"target": 25.0, "ucl": 27.0, ...}}
    }
"""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .limits import (
    ConfigurationError,
    ParameterLimits,
    DEFAULT_PROCESS_PARAMETERS,
    validate_limit_table,
)

logger = logging.getLogger(__name__)


class CusumSettings(BaseModel):
    """Tabular CUSUM parameters, in sigma units."""
    model_config = ConfigDict(extra='forbid')

    k: float = Field(0.5, ge=0)                           # Allowable slack
    h: float = Field(5.0, gt=0)                           # Decision interval
    warning_fraction: float = Field(0.7, gt=0, lt=1)      # Warn above fraction * h


class EwmaSettings(BaseModel):
    """EWMA smoothing and limit width."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    lambda_: float = Field(0.2, gt=0, le=1, alias='lambda')
    L: float = Field(3.0, gt=0)
    warning_fraction: float = Field(0.7, gt=0, lt=1)


class TrendSettings(BaseModel):
    """Windowed linear regression settings."""
    model_config = ConfigDict(extra='forbid')

    window: int = Field(50, ge=2)
    min_points: int = Field(10, ge=3)
    r_squared_threshold: float = Field(0.3, ge=0, le=1)
    projection_horizon: int = Field(100, ge=1)            # Readings ahead
    min_projected_drift_sigmas: float = Field(1.0, ge=0)  # 0 disables the gate

    @model_validator(mode='after')
    def check_window(self):
        if self.min_points > self.window:
            raise ValueError(
                f"trend.min_points ({self.min_points}) cannot exceed trend.window ({self.window})"
            )
        return self


class ShiftSettings(BaseModel):
    """Baseline-vs-recent mean shift settings."""
    model_config = ConfigDict(extra='forbid')

    window: int = Field(30, ge=2)
    threshold_sigmas: float = Field(1.5, gt=0)
    sigma_source: str = 'limits'

    @model_validator(mode='after')
    def check_sigma_source(self):
        allowed = ('limits', 'baseline')
        if self.sigma_source not in allowed:
            raise ValueError(
                f"shift.sigma_source must be one of {allowed}, got '{self.sigma_source}'"
            )
        return self


class MonitorSettings(BaseModel):
    """All engine settings."""
    model_config = ConfigDict(extra='forbid')

    reading_buffer_size: int = Field(500, ge=1)
    alert_history_size: int = Field(200, ge=1)
    alert_cooldown_seconds: float = Field(300.0, ge=0)
    capability_window: int = Field(50, ge=2)

    cusum: CusumSettings = Field(default_factory=CusumSettings)
    ewma: EwmaSettings = Field(default_factory=EwmaSettings)
    trend: TrendSettings = Field(default_factory=TrendSettings)
    shift: ShiftSettings = Field(default_factory=ShiftSettings)

    @model_validator(mode='after')
    def check_history_fits_buffer(self):
        if 2 * self.shift.window > self.reading_buffer_size:
            raise ValueError(
                f"reading_buffer_size ({self.reading_buffer_size}) must hold two shift "
                f"windows ({2 * self.shift.window})"
            )
        return self

    @property
    def history_size(self) -> int:
        """Per-parameter value history kept for trend and shift detection."""
        return max(self.trend.window, 2 * self.shift.window)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MonitorSettings':
        try:
            return cls(**(data or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Monitor settings validation failed:\n{str(e)}") from e


def get_default_config() -> Dict[str, Any]:
    """
    Default monitor configuration as a plain dictionary.

    Returns a deep copy, so callers may edit it freely before passing it to
    validate_monitor_config().
    """
    return {
        'config_name': 'Default Etch Line Monitor',
        'version': '1.0.0',
        'settings': MonitorSettings().to_dict(),
        'parameters': copy.deepcopy(DEFAULT_PROCESS_PARAMETERS),
    }


def validate_monitor_config(
    config: Dict[str, Any]
) -> Tuple[MonitorSettings, Dict[str, ParameterLimits]]:
    """
    Validate a full monitor configuration dictionary.

    Args:
        config: Dict with optional 'settings' and 'parameters' sections

    Returns:
        Tuple of (settings, {parameter_key: limits})

    Raises:
        ConfigurationError: On any invalid section
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Monitor configuration must be a mapping")

    settings = MonitorSettings.from_dict(config.get('settings'))
    parameters = validate_limit_table(config.get('parameters') or {})

    return settings, parameters


def load_monitor_config(
    path: Union[str, Path]
) -> Tuple[MonitorSettings, Dict[str, ParameterLimits]]:
    """
    Load and validate a monitor configuration from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the file is not valid JSON or fails validation
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}") from e

    settings, parameters = validate_monitor_config(config)
    logger.info("Loaded monitor config from %s (%d parameters)", path, len(parameters))

    return settings, parameters


def save_monitor_config(
    path: Union[str, Path],
    settings: MonitorSettings,
    parameters: Dict[str, ParameterLimits],
) -> Path:
    """Write settings and limits to a JSON file readable by load_monitor_config()."""
    path = Path(path)

    config = {
        'settings': settings.to_dict(),
        'parameters': {key: limits.to_dict() for key, limits in parameters.items()},
    }

    with open(path, 'w') as f:
        json.dump(config, f, indent=2)

    return path
