"""
Limits and Configuration Tests
==============================
Tests for parameter limit validation and monitor settings.

Run with: python -m pytest tests/test_limits_config.py -v
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from process_monitor.limits import (
    ParameterLimits,
    ConfigurationError,
    DEFAULT_PROCESS_PARAMETERS,
    validate_parameter_limits,
    validate_limit_table,
    default_parameter_limits,
    load_parameter_limits,
)
from process_monitor.config import (
    MonitorSettings,
    EwmaSettings,
    get_default_config,
    validate_monitor_config,
    load_monitor_config,
    save_monitor_config,
)


TEMPERATURE = {'target': 25, 'ucl': 27, 'lcl': 23, 'usl': 28, 'lsl': 22,
               'name': 'Temperature', 'unit': '°C'}


class TestParameterLimits:
    """Tests for the ParameterLimits model."""

    def test_valid_limits(self):
        limits = ParameterLimits(**TEMPERATURE)

        assert limits.target == 25.0
        assert limits.name == 'Temperature'
        assert limits.sigma == pytest.approx(4 / 6)

    def test_ordering_violation_rejected(self):
        """Control band wider than spec band is a configuration error."""
        with pytest.raises(ConfigurationError, match="lsl < lcl < target < ucl < usl"):
            validate_parameter_limits('temperature', dict(TEMPERATURE, ucl=29))

    def test_target_outside_control_band_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_parameter_limits('temperature', dict(TEMPERATURE, target=27.5))

    def test_equal_limits_rejected(self):
        """The ordering is strict."""
        with pytest.raises(ConfigurationError):
            validate_parameter_limits('temperature', dict(TEMPERATURE, lcl=22))

    def test_missing_field_rejected(self):
        data = dict(TEMPERATURE)
        del data['usl']
        with pytest.raises(ConfigurationError, match="temperature"):
            validate_parameter_limits('temperature', data)

    def test_non_finite_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_parameter_limits('temperature', dict(TEMPERATURE, usl=float('inf')))

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_parameter_limits('temperature', [25, 27, 23, 28, 22])

    def test_empty_key_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_parameter_limits('', TEMPERATURE)

    def test_existing_instance_passes_through(self):
        limits = ParameterLimits(**TEMPERATURE)
        assert validate_parameter_limits('temperature', limits) is limits

    def test_limits_are_immutable(self):
        limits = ParameterLimits(**TEMPERATURE)
        with pytest.raises(Exception):
            limits.target = 26

    def test_equal_limits_compare_equal(self):
        assert ParameterLimits(**TEMPERATURE) == ParameterLimits(**TEMPERATURE)

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)


class TestLimitTables:
    """Tests for whole limit tables."""

    def test_default_table_is_valid(self):
        table = default_parameter_limits()

        assert set(table) == set(DEFAULT_PROCESS_PARAMETERS)
        assert len(table) == 8
        assert table['pressure'].unit == 'mTorr'

    def test_table_collects_all_errors(self):
        table = {
            'a': dict(TEMPERATURE, ucl=30),
            'b': dict(TEMPERATURE, lsl=24),
            'c': TEMPERATURE,
        }
        with pytest.raises(ConfigurationError) as exc_info:
            validate_limit_table(table)

        message = str(exc_info.value)
        assert "'a'" in message
        assert "'b'" in message
        assert "'c'" not in message

    def test_load_parameter_limits(self, tmp_path):
        path = tmp_path / "limits.json"
        path.write_text(json.dumps({'temperature': TEMPERATURE}))

        table = load_parameter_limits(path)

        assert table['temperature'].usl == 28.0

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_parameter_limits(tmp_path / "missing.json")

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "limits.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_parameter_limits(path)


class TestMonitorSettings:
    """Tests for MonitorSettings defaults and validation."""

    def test_defaults(self):
        settings = MonitorSettings()

        assert settings.reading_buffer_size == 500
        assert settings.alert_history_size == 200
        assert settings.alert_cooldown_seconds == 300.0
        assert settings.cusum.k == 0.5
        assert settings.cusum.h == 5.0
        assert settings.ewma.lambda_ == 0.2
        assert settings.ewma.L == 3.0
        assert settings.trend.min_points == 10
        assert settings.trend.r_squared_threshold == 0.3
        assert settings.shift.window == 30
        assert settings.shift.threshold_sigmas == 1.5

    def test_history_size(self):
        settings = MonitorSettings()
        assert settings.history_size == 60

    def test_lambda_alias(self):
        """'lambda' is a Python keyword; the config key is accepted as an alias."""
        assert EwmaSettings(**{'lambda': 0.3}).lambda_ == 0.3
        assert EwmaSettings(lambda_=0.3).lambda_ == 0.3
        assert MonitorSettings().to_dict()['ewma']['lambda'] == 0.2

    def test_invalid_lambda(self):
        with pytest.raises(ConfigurationError):
            MonitorSettings.from_dict({'ewma': {'lambda': 1.5}})

    def test_min_points_cannot_exceed_window(self):
        with pytest.raises(ConfigurationError):
            MonitorSettings.from_dict({'trend': {'window': 8, 'min_points': 10}})

    def test_buffer_must_hold_two_shift_windows(self):
        with pytest.raises(ConfigurationError):
            MonitorSettings.from_dict({'reading_buffer_size': 50, 'shift': {'window': 30}})

    def test_unknown_sigma_source(self):
        with pytest.raises(ConfigurationError):
            MonitorSettings.from_dict({'shift': {'sigma_source': 'guess'}})

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError):
            MonitorSettings.from_dict({'buffer': 100})


class TestMonitorConfigFiles:
    """Tests for monitor configuration files."""

    def test_default_config_validates(self):
        settings, parameters = validate_monitor_config(get_default_config())

        assert settings == MonitorSettings()
        assert len(parameters) == 8

    def test_default_config_is_a_copy(self):
        config = get_default_config()
        config['parameters']['temperature']['target'] = 999

        assert DEFAULT_PROCESS_PARAMETERS['temperature']['target'] == 25.0

    def test_save_and_load(self, tmp_path):
        settings = MonitorSettings.from_dict({'alert_cooldown_seconds': 60, 'ewma': {'lambda': 0.1}})
        parameters = {'temperature': ParameterLimits(**TEMPERATURE)}

        path = save_monitor_config(tmp_path / "monitor.json", settings, parameters)
        loaded_settings, loaded_parameters = load_monitor_config(path)

        assert loaded_settings.alert_cooldown_seconds == 60
        assert loaded_settings.ewma.lambda_ == 0.1
        assert loaded_parameters == parameters

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_monitor_config(tmp_path / "missing.json")

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "monitor.json"
        path.write_text("[1, 2")

        with pytest.raises(ConfigurationError):
            load_monitor_config(path)

    def test_non_mapping_config(self):
        with pytest.raises(ConfigurationError):
            validate_monitor_config(["settings"])
