"""
Export and Simulation Tests
===========================
Tests for alert/reading export and the simulated reading source.

Run with: python -m pytest tests/test_export_simulation.py -v
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from process_monitor import ProcessMonitor, Reading, default_parameter_limits
from process_monitor.export import (
    ALERT_COLUMNS,
    alerts_to_dataframe,
    export_alerts_csv,
    export_alerts_json,
    export_alerts_excel,
    export_readings_csv,
)
from process_monitor.simulation import (
    LINES,
    ProcessDataGenerator,
    run_simulation,
)


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
TEMPERATURE = {'target': 25, 'ucl': 27, 'lcl': 23, 'usl': 28, 'lsl': 22, 'name': 'Temperature'}


def create_alerting_monitor():
    """Monitor with one out-of-control and one out-of-spec reading ingested."""
    monitor = ProcessMonitor()
    monitor.configure('temperature', TEMPERATURE)
    monitor.ingest(Reading(timestamp=T0, line='Line A', values={'temperature': 27.5}))
    monitor.ingest(Reading(timestamp=T0 + timedelta(seconds=1), line='Line B', values={'temperature': 29.0}))
    return monitor


class TestAlertExport:
    """Tests for alert export formats."""

    def test_dataframe(self):
        alerts = create_alerting_monitor().get_alerts()
        df = alerts_to_dataframe(alerts)

        assert list(df.columns) == ALERT_COLUMNS
        assert len(df) == len(alerts)
        assert 'OUT_OF_SPEC' in set(df['type'])

    def test_empty_dataframe(self):
        df = alerts_to_dataframe([])
        assert df.empty
        assert list(df.columns) == ALERT_COLUMNS

    def test_csv_with_metadata(self, tmp_path):
        alerts = create_alerting_monitor().get_alerts()
        path = export_alerts_csv(alerts, tmp_path / "alerts.csv", metadata={'line': 'Etch 1'})

        text = path.read_text()
        assert text.startswith("# Process Drift Monitor Export")
        assert "# line: Etch 1" in text

        df = pd.read_csv(path, comment='#')
        assert len(df) == len(alerts)

    def test_csv_without_metadata(self, tmp_path):
        alerts = create_alerting_monitor().get_alerts()
        path = export_alerts_csv(alerts, tmp_path / "alerts.csv")

        df = pd.read_csv(path)
        assert list(df.columns) == ALERT_COLUMNS

    def test_json(self, tmp_path):
        monitor = create_alerting_monitor()
        alerts = monitor.get_alerts()
        path = export_alerts_json(alerts, tmp_path / "alerts.json", session_info={'operator': 'shift B'})

        with open(path) as f:
            data = json.load(f)

        assert data['session'] == {'operator': 'shift B'}
        assert data['summary']['total'] == len(alerts)
        assert len(data['alerts']) == len(alerts)
        assert data['alerts'][0]['created_at'].startswith('2024-01-01')

    def test_excel(self, tmp_path):
        monitor = create_alerting_monitor()
        path = export_alerts_excel(
            monitor.get_alerts(),
            tmp_path / "alerts.xlsx",
            capability=monitor.get_capability_table(),
            session_info={'line': 'Etch 1'},
        )

        sheets = pd.ExcelFile(path).sheet_names
        assert sheets == ['Alerts', 'Summary', 'Capability', 'Metadata']

        alerts_df = pd.read_excel(path, sheet_name='Alerts')
        assert len(alerts_df) == len(monitor.get_alerts())

    def test_readings_csv(self, tmp_path):
        monitor = create_alerting_monitor()
        path = export_readings_csv(monitor.get_readings(), tmp_path / "readings.csv", metadata={'seed': 1})

        df = pd.read_csv(path, comment='#')
        assert list(df['temperature']) == [27.5, 29.0]
        assert list(df['line']) == ['Line A', 'Line B']


class TestProcessDataGenerator:
    """Tests for the simulated reading source."""

    def test_seeded_output_is_reproducible(self):
        parameters = default_parameter_limits()
        a = ProcessDataGenerator(seed=3).generate_readings(parameters, 50, start=T0)
        b = ProcessDataGenerator(seed=3).generate_readings(parameters, 50, start=T0)

        assert [r.values for r in a] == [r.values for r in b]

    def test_lines_rotate(self):
        parameters = default_parameter_limits()
        readings = ProcessDataGenerator(seed=1).generate_readings(parameters, 8, start=T0)

        assert [r.line for r in readings] == LINES + LINES

    def test_timestamps_spaced(self):
        parameters = default_parameter_limits()
        readings = ProcessDataGenerator(seed=1).generate_readings(parameters, 3, start=T0, interval_seconds=2.5)

        assert [r.timestamp for r in readings] == [T0 + timedelta(seconds=2.5 * i) for i in range(3)]
        assert readings[0].reading_id == f"RDG-{int(T0.timestamp() * 1000)}-0"

    def test_values_stay_near_limits(self):
        parameters = default_parameter_limits()
        readings = ProcessDataGenerator(seed=5).generate_readings(parameters, 500, start=T0)

        for key, limits in parameters.items():
            values = np.array([r.get(key) for r in readings])
            margin = 0.1 * (limits.usl - limits.lsl)
            assert values.min() >= limits.lsl - margin
            assert values.max() <= limits.usl + margin
            assert limits.lsl <= np.median(values) <= limits.usl

    def test_inject_shift(self):
        parameters = {'temperature': default_parameter_limits()['temperature']}
        generator = ProcessDataGenerator(seed=2, noise_level=0.05)
        generator.inject_drift('temperature', 0.0)

        before = [generator.generate_reading(parameters, T0, i).get('temperature') for i in range(20)]
        generator.inject_shift('temperature', 1.5)
        after = [generator.generate_reading(parameters, T0, i).get('temperature') for i in range(20, 40)]

        assert np.mean(after) - np.mean(before) > 1.0

    def test_correlated_mode(self):
        parameters = default_parameter_limits()
        reading = ProcessDataGenerator(seed=4, correlated=True).generate_reading(parameters, T0, 0)

        assert set(reading.values) == set(parameters)


class TestRunSimulation:
    """Tests for the simulation command."""

    def test_writes_outputs(self, tmp_path):
        result = run_simulation(n_readings=120, output_dir=str(tmp_path / "sim"), seed=42)

        for label in ('readings', 'alerts', 'capability'):
            assert Path(result[label]).exists()

        readings = pd.read_csv(result['readings'], comment='#')
        assert len(readings) == 120
        assert result['statistics']['total_readings'] == 120

        capability = pd.read_csv(result['capability'])
        assert len(capability) == 8
