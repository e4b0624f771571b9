"""
Parameter Limits
================
Static per-parameter configuration: target, control limits and
specification limits.

Key Principle: Fail fast on bad limits. A limit table where the control
band is wider than the spec band (or the target sits outside it) is an
operator mistake and must be rejected when it is configured, never
discovered while readings are flowing.

Ordering invariant enforced for every parameter:

    lsl < lcl < target < ucl < usl
"""

import json
from pathlib import Path
from typing import Dict, Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator


class ConfigurationError(ValueError):
    """Invalid monitor or parameter configuration."""


class ParameterLimits(BaseModel):
    """Limits for a single monitored process parameter."""

    model_config = ConfigDict(frozen=True, extra='ignore', allow_inf_nan=False)

    target: float
    ucl: float  # Upper Control Limit
    lcl: float  # Lower Control Limit
    usl: float  # Upper Specification Limit
    lsl: float  # Lower Specification Limit
    name: str = ''
    unit: str = ''
    category: str = ''

    @model_validator(mode='after')
    def check_ordering(self):
        if not (self.lsl < self.lcl < self.target < self.ucl < self.usl):
            raise ValueError(
                "limits must satisfy lsl < lcl < target < ucl < usl, got "
                f"lsl={self.lsl}, lcl={self.lcl}, target={self.target}, "
                f"ucl={self.ucl}, usl={self.usl}"
            )
        return self

    @property
    def sigma(self) -> float:
        """Process sigma implied by the control band (UCL - LCL = 6σ)."""
        return (self.ucl - self.lcl) / 6

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


# Etch / deposition tool parameters monitored by default
DEFAULT_PROCESS_PARAMETERS: Dict[str, Dict[str, Any]] = {
    'temperature': {
        'name': 'Temperature', 'unit': '°C', 'category': 'thermal',
        'target': 25.0, 'ucl': 27.0, 'lcl': 23.0, 'usl': 28.0, 'lsl': 22.0,
    },
    'pressure': {
        'name': 'Chamber Pressure', 'unit': 'mTorr', 'category': 'vacuum',
        'target': 100.0, 'ucl': 105.0, 'lcl': 95.0, 'usl': 110.0, 'lsl': 90.0,
    },
    'gasFlow': {
        'name': 'Gas Flow Rate', 'unit': 'sccm', 'category': 'gas',
        'target': 50.0, 'ucl': 52.0, 'lcl': 48.0, 'usl': 55.0, 'lsl': 45.0,
    },
    'rfPower': {
        'name': 'RF Power', 'unit': 'W', 'category': 'power',
        'target': 300.0, 'ucl': 310.0, 'lcl': 290.0, 'usl': 320.0, 'lsl': 280.0,
    },
    'etchRate': {
        'name': 'Etch Rate', 'unit': 'nm/min', 'category': 'process',
        'target': 150.0, 'ucl': 158.0, 'lcl': 142.0, 'usl': 165.0, 'lsl': 135.0,
    },
    'uniformity': {
        'name': 'Uniformity', 'unit': '%', 'category': 'quality',
        'target': 2.0, 'ucl': 2.5, 'lcl': 0.5, 'usl': 3.0, 'lsl': 0.0,
    },
    'deposition': {
        'name': 'Deposition Thickness', 'unit': 'nm', 'category': 'process',
        'target': 100.0, 'ucl': 104.0, 'lcl': 96.0, 'usl': 108.0, 'lsl': 92.0,
    },
    'humidity': {
        'name': 'Humidity', 'unit': '%RH', 'category': 'environmental',
        'target': 45.0, 'ucl': 48.0, 'lcl': 42.0, 'usl': 50.0, 'lsl': 40.0,
    },
}


def validate_parameter_limits(
    key: str,
    data: Union[ParameterLimits, Dict[str, Any]],
) -> ParameterLimits:
    """
    Validate limits for one parameter.

    Args:
        key: Parameter key (used in error messages)
        data: Limits as a dict or an existing ParameterLimits

    Returns:
        Validated ParameterLimits

    Raises:
        ConfigurationError: If fields are missing, non-finite, or the
            ordering invariant is violated
    """
    if not key:
        raise ConfigurationError("Parameter key must be a non-empty string")

    if isinstance(data, ParameterLimits):
        return data

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Limits for '{key}' must be a mapping, got {type(data).__name__}"
        )

    try:
        return ParameterLimits(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid limits for '{key}':\n{e}") from e


def validate_limit_table(
    table: Dict[str, Union[ParameterLimits, Dict[str, Any]]]
) -> Dict[str, ParameterLimits]:
    """Validate a whole {key: limits} table, collecting every error."""
    validated = {}
    errors = []

    for key, data in table.items():
        try:
            validated[key] = validate_parameter_limits(key, data)
        except ConfigurationError as e:
            errors.append(str(e))

    if errors:
        raise ConfigurationError(
            "Limit table validation failed:\n  - " + "\n  - ".join(errors)
        )

    return validated


def default_parameter_limits() -> Dict[str, ParameterLimits]:
    """Validated copy of DEFAULT_PROCESS_PARAMETERS."""
    return validate_limit_table(DEFAULT_PROCESS_PARAMETERS)


def load_parameter_limits(path: Union[str, Path]) -> Dict[str, ParameterLimits]:
    """
    Load a limit table from a JSON file of the form {key: {target, ucl, ...}}.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the JSON is malformed or any limits are invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Limits file not found: {path}")

    try:
        with open(path, 'r') as f:
            table = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}") from e

    if not isinstance(table, dict):
        raise ConfigurationError(f"Limits file {path} must contain a JSON object")

    return validate_limit_table(table)
