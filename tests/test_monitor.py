"""
Process Monitor Tests
=====================
End-to-end tests for the engine-facing API: configure, ingest,
acknowledge, get_alerts, get_capability_summary, reset_detector_state.

Run with: python -m pytest tests/test_monitor.py -v
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from process_monitor import (
    ProcessMonitor,
    MonitorSettings,
    Reading,
    ConfigurationError,
    ProcessStatus,
    AlertType,
    AlertSeverity,
    DriftStatus,
    CapabilityRating,
    ProcessDataGenerator,
    default_parameter_limits,
)


TEMPERATURE = {'target': 25, 'ucl': 27, 'lcl': 23, 'usl': 28, 'lsl': 22, 'name': 'Temperature', 'unit': '°C'}
PRESSURE = {'target': 100, 'ucl': 105, 'lcl': 95, 'usl': 110, 'lsl': 90, 'name': 'Pressure'}
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
ACK_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def create_monitor(**settings):
    monitor = ProcessMonitor(MonitorSettings.from_dict(settings), clock=lambda: ACK_TIME)
    monitor.configure('temperature', TEMPERATURE)
    return monitor


def feed(monitor, values, key='temperature', start=T0, interval_seconds=1.0, line='Line A'):
    results = []
    for i, value in enumerate(values):
        reading = Reading(
            timestamp=start + timedelta(seconds=i * interval_seconds),
            line=line,
            values={key: value},
        )
        results.append(monitor.ingest(reading))
    return results


class TestEndToEndScenario:
    """Limits 25/27/23/28/22 fed with 25, 25, 26, 29, 26."""

    def test_out_of_spec_reading(self):
        monitor = create_monitor()
        results = feed(monitor, [25, 25, 26, 29, 26])

        classification = results[3]['temperature'].classification
        assert classification.status == ProcessStatus.CRITICAL
        assert classification.out_of_spec

        for i in (0, 1, 2, 4):
            assert results[i]['temperature'].classification.status == ProcessStatus.NORMAL

    def test_one_out_of_spec_alert(self):
        monitor = create_monitor()
        results = feed(monitor, [25, 25, 26, 29, 26])

        spec_alerts = [a for a in monitor.get_alerts() if a.type == AlertType.OUT_OF_SPEC]
        assert len(spec_alerts) == 1
        assert spec_alerts[0].severity == AlertSeverity.CRITICAL
        assert spec_alerts[0].value == 29.0
        assert spec_alerts[0].created_at == T0 + timedelta(seconds=3)

        # No alerts before the out-of-spec reading
        assert all(len(results[i]['temperature'].alerts) == 0 for i in range(3))
        assert AlertType.OUT_OF_SPEC in {a.type for a in results[3]['temperature'].alerts}


class TestIngest:
    """Tests for ingest()."""

    def test_result_contents(self):
        monitor = create_monitor()
        result = feed(monitor, [25.5])[0]['temperature']

        assert result.classification.value == 25.5
        assert result.assessment.cusum.available
        assert result.violations == []
        assert result.to_dict()['classification']['status'] == 'normal'

    def test_absent_parameter_skipped(self):
        monitor = create_monitor()
        monitor.configure('pressure', PRESSURE)

        results = monitor.ingest(Reading(timestamp=T0, line='Line A', values={'temperature': 25.0}))

        assert 'pressure' not in results
        assert monitor.get_drift_status()['pressure'] is None

    def test_nan_skipped(self):
        monitor = create_monitor()
        results = monitor.ingest(Reading(timestamp=T0, line='Line A', values={'temperature': float('nan')}))

        assert results == {}
        assert monitor.get_alerts() == []
        assert len(monitor.get_readings()) == 1

    def test_infinite_value_skipped(self):
        """A non-finite value leaves the detectors untouched."""
        monitor = create_monitor()
        results = feed(monitor, [float('inf')] + [25.0] * 59)

        assert results[0] == {}
        assert monitor.get_alerts() == []

        assessment = monitor.get_drift_status()['temperature']
        assert assessment.overall == DriftStatus.NORMAL
        assert assessment.cusum.cusum_plus == 0.0
        assert assessment.ewma.value == pytest.approx(25.0)
        assert np.isfinite(assessment.ewma.value)

    def test_negative_infinity_skipped(self):
        monitor = create_monitor()
        results = monitor.ingest(Reading(timestamp=T0, line='Line A', values={'temperature': float('-inf')}))

        assert results == {}
        assert monitor.get_drift_status()['temperature'] is None

    def test_unconfigured_parameter_skipped(self):
        monitor = create_monitor()
        results = monitor.ingest(Reading(timestamp=T0, line='Line A', values={'humidity': 99.0}))

        assert results == {}
        assert monitor.get_alerts() == []

    def test_absence_does_not_update_detectors(self):
        monitor = create_monitor()
        monitor.configure('pressure', PRESSURE)

        for i in range(5):
            monitor.ingest(Reading(timestamp=T0 + timedelta(seconds=i), line='Line A',
                                   values={'pressure': 103.0}))
        status_before = monitor.get_drift_status()['pressure']

        monitor.ingest(Reading(timestamp=T0 + timedelta(seconds=10), line='Line A',
                               values={'temperature': 25.0}))
        status_after = monitor.get_drift_status()['pressure']

        assert status_after.cusum.cusum_plus == status_before.cusum.cusum_plus

    def test_non_reading_rejected(self):
        monitor = create_monitor()
        with pytest.raises(TypeError):
            monitor.ingest({'temperature': 25.0})

    def test_western_electric_violations_reported(self):
        monitor = create_monitor()
        results = feed(monitor, [25.1] * 8)

        assert [v.value for v in results[7]['temperature'].violations] == ['RUN_OF_8']
        assert results[7]['temperature'].classification.status == ProcessStatus.NORMAL

    def test_reading_buffer_bounded(self):
        monitor = create_monitor(reading_buffer_size=60)
        feed(monitor, [25.0] * 100)

        assert len(monitor.get_readings()) == 60
        assert monitor.get_statistics()['total_readings'] == 100

    def test_simulated_stream(self):
        monitor = ProcessMonitor()
        parameters = default_parameter_limits()
        monitor.configure_many(parameters)

        readings = ProcessDataGenerator(seed=7).generate_readings(parameters, 200, start=T0)
        for reading in readings:
            results = monitor.ingest(reading)
            assert set(results) == set(parameters)

        drift = monitor.get_drift_status()
        assert all(a is not None for a in drift.values())


class TestDeduplication:
    """Tests for alert deduplication through the monitor."""

    def test_persistent_out_of_spec_alerts_once(self):
        """100 out-of-spec readings inside the cooldown: one OUT_OF_SPEC alert."""
        monitor = create_monitor()
        feed(monitor, [29.0] * 100, interval_seconds=1.0)

        spec_alerts = [a for a in monitor.get_alerts()
                       if a.type == AlertType.OUT_OF_SPEC and a.parameter_key == 'temperature']
        assert len(spec_alerts) == 1

    def test_condition_persisting_past_cooldown_alerts_again(self):
        monitor = create_monitor(alert_cooldown_seconds=60)
        feed(monitor, [29.0] * 100, interval_seconds=1.0)

        spec_alerts = [a for a in monitor.get_alerts() if a.type == AlertType.OUT_OF_SPEC]
        assert len(spec_alerts) == 2


class TestRetentionCap:
    """Tests for the alert history cap through the monitor."""

    def test_cap(self):
        monitor = ProcessMonitor(MonitorSettings.from_dict({'alert_history_size': 200}))
        for i in range(250):
            monitor.configure(f"p{i}", TEMPERATURE)

        for i in range(250):
            monitor.ingest(Reading(timestamp=T0 + timedelta(seconds=i), line='Line A',
                                   values={f"p{i}": 29.0}))

        alerts = monitor.get_alerts()
        assert len(alerts) == 200
        assert monitor.get_alerts(limit=1)[0].parameter_key == 'p249'


class TestAcknowledge:
    """Tests for acknowledge() through the monitor."""

    def test_acknowledge(self):
        monitor = create_monitor()
        feed(monitor, [29.0])
        alert = monitor.get_alerts()[0]

        assert monitor.acknowledge(alert.id)
        acked = [a for a in monitor.get_alerts() if a.id == alert.id][0]
        assert acked.acknowledged
        assert acked.acknowledged_at == ACK_TIME
        assert alert.id not in {a.id for a in monitor.get_alerts(unacknowledged_only=True)}

    def test_acknowledge_twice(self):
        monitor = create_monitor()
        feed(monitor, [29.0])
        alert_id = monitor.get_alerts()[0].id

        monitor.acknowledge(alert_id)
        before = [a.to_dict() for a in monitor.get_alerts()]
        assert monitor.acknowledge(alert_id)
        after = [a.to_dict() for a in monitor.get_alerts()]

        assert before == after

    def test_unknown_id(self):
        assert not create_monitor().acknowledge('missing')

    def test_alert_summary(self):
        monitor = create_monitor()
        feed(monitor, [29.0])
        monitor.acknowledge_all()

        summary = monitor.alert_summary()
        assert summary['total'] >= 1
        assert summary['unacknowledged'] == 0


class TestConfigure:
    """Tests for configure()."""

    def test_invalid_limits_fail_fast(self):
        monitor = ProcessMonitor()
        with pytest.raises(ConfigurationError):
            monitor.configure('temperature', dict(TEMPERATURE, lcl=26))
        assert 'temperature' not in monitor.parameters

    def test_get_limits(self):
        monitor = create_monitor()

        assert monitor.get_limits('temperature').ucl == 27
        assert monitor.get_limits('pressure') is None

    def test_idempotent(self):
        monitor = create_monitor()
        feed(monitor, [26.5] * 3)
        before = monitor.get_drift_status()['temperature'].cusum.cusum_plus

        monitor.configure('temperature', TEMPERATURE)
        result = feed(monitor, [25.0], start=T0 + timedelta(seconds=10))[0]['temperature']

        assert before > 0
        assert result.assessment.cusum.cusum_plus == pytest.approx(before - 0.5)

    def test_changed_limits_reset_state(self):
        monitor = create_monitor()
        feed(monitor, [26.5] * 3)

        monitor.configure('temperature', dict(TEMPERATURE, target=25.5))
        result = feed(monitor, [25.5], start=T0 + timedelta(seconds=10))[0]['temperature']

        assert result.assessment.cusum.cusum_plus == 0.0
        assert monitor.get_limits('temperature').target == 25.5


class TestResetDetectorState:
    """Tests for reset_detector_state()."""

    def test_reset_one(self):
        monitor = create_monitor()
        feed(monitor, [26.5] * 5)

        assert monitor.reset_detector_state('temperature')
        result = feed(monitor, [25.0], start=T0 + timedelta(seconds=10))[0]['temperature']

        assert result.assessment.cusum.cusum_plus == 0.0
        assert not result.assessment.cusum.alarm
        assert result.assessment.ewma.value == pytest.approx(25.0)

    def test_reset_unknown(self):
        assert not create_monitor().reset_detector_state('nope')

    def test_reset_configured_without_readings(self):
        assert create_monitor().reset_detector_state('temperature')

    def test_reset_all(self):
        monitor = create_monitor()
        monitor.configure('pressure', PRESSURE)
        assert monitor.reset_detector_state()


class TestCapabilitySummary:
    """Tests for get_capability_summary()."""

    def test_unknown_parameter(self):
        assert create_monitor().get_capability_summary('nope') is None

    def test_no_readings(self):
        summary = create_monitor().get_capability_summary('temperature')

        assert summary.sample_size == 0
        assert summary.cpk is None
        assert summary.rating == CapabilityRating.INSUFFICIENT_DATA

    def test_summary_over_window(self):
        np.random.seed(42)
        monitor = create_monitor(capability_window=50)
        feed(monitor, 25 + np.random.normal(0, 0.3, 120))

        summary = monitor.get_capability_summary('temperature')
        assert summary.sample_size == 50
        assert summary.cpk > 1.33

    def test_identical_values(self):
        monitor = create_monitor()
        feed(monitor, [25.0] * 20)

        summary = monitor.get_capability_summary('temperature')
        assert summary.cpk is None

    def test_identical_inexact_values(self):
        monitor = create_monitor()
        feed(monitor, [25.3] * 20)

        summary = monitor.get_capability_summary('temperature')
        assert summary.cpk is None
        assert summary.rating == CapabilityRating.INSUFFICIENT_DATA

    def test_capability_table(self):
        monitor = create_monitor()
        monitor.configure('pressure', PRESSURE)
        feed(monitor, [24.0, 25.0, 26.0])

        table = monitor.get_capability_table()
        assert list(table['parameter']) == ['temperature', 'pressure']
        assert table.loc[0, 'Cpk'] == pytest.approx(1.0)


class TestReadSide:
    """Tests for history, drift status and statistics snapshots."""

    def test_parameter_history(self):
        monitor = create_monitor()
        feed(monitor, [25.0, 27.5, 29.0])

        history = monitor.get_parameter_history('temperature')
        assert isinstance(history, pd.DataFrame)
        assert list(history['value']) == [25.0, 27.5, 29.0]
        assert list(history['status']) == ['normal', 'warning', 'critical']
        assert len(monitor.get_parameter_history('temperature', 2)) == 2

    def test_drift_status_before_readings(self):
        monitor = create_monitor()
        assert monitor.get_drift_status() == {'temperature': None}

    def test_drift_status(self):
        monitor = create_monitor()
        feed(monitor, [27.0] * 10)

        assert monitor.get_drift_status()['temperature'].overall == DriftStatus.CRITICAL

    def test_statistics(self):
        monitor = create_monitor()
        feed(monitor, [25.0, 25.0, 27.5, 29.0])

        stats = monitor.get_statistics()
        assert stats['total_readings'] == 4
        assert stats['out_of_limits_percent'] == pytest.approx(50.0)
        assert stats['critical_alerts'] >= 1

    def test_statistics_empty(self):
        stats = create_monitor().get_statistics()

        assert stats['total_readings'] == 0
        assert stats['out_of_limits_percent'] is None

    def test_prediction(self):
        monitor = create_monitor()
        feed(monitor, 25 + 0.02 * np.arange(50))

        prediction = monitor.predict_time_to_out_of_control('temperature')
        assert prediction.predicted
        assert monitor.predict_time_to_out_of_control('nope') is None

    def test_latest_status(self):
        monitor = create_monitor()
        feed(monitor, [27.5])
        assert monitor.latest_status() == {'temperature': ProcessStatus.WARNING}

    def test_readings_dataframe(self):
        monitor = create_monitor()
        feed(monitor, [25.0, 26.0])

        df = monitor.get_readings_dataframe()
        assert list(df['temperature']) == [25.0, 26.0]
