"""
Simulated Process Data
======================
Generates realistic multi-parameter readings for demos, the dashboard and
tests. The generator stands in for a live reading source: it knows nothing
about the monitor and only produces Reading objects.

Value model per parameter and reading:
    target + drift + line offset + cyclical + noise (+ rare outlier)

- drift: slow random walk rate, occasionally re-drawn; rare step shifts
  (at most one per 50 readings per parameter)
- line offset: fixed per monitoring line (Line A-D), as a fraction of the
  control range
- cyclical: slow sine component (environmental effects)
- noise: uniform, scaled by noise_level x control range
- values are clamped to a band just outside the spec limits

Usage:
    python -m process_monitor.simulation --n-readings 500 --output-dir ./sim_data
"""

import argparse
import json
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List, Union

import numpy as np

from .limits import ParameterLimits, default_parameter_limits, validate_limit_table
from .readings import Reading, to_timestamp


LINES = ['Line A', 'Line B', 'Line C', 'Line D']

# Offset of each line from target, as a fraction of the control range
LINE_OFFSETS = {
    'Line A': 0.0,
    'Line B': 0.02,
    'Line C': -0.01,
    'Line D': 0.015,
}

# Source parameter -> {affected parameter: coefficient}
PARAMETER_CORRELATIONS = {
    'temperature': {'etchRate': 0.8, 'uniformity': -0.3},
    'pressure': {'etchRate': 0.5, 'deposition': 0.6},
    'rfPower': {'etchRate': 0.7, 'uniformity': 0.4},
    'gasFlow': {'etchRate': 0.4, 'deposition': 0.5},
}

DRIFT_RATE_SCALE = 0.001
DRIFT_RATE_CHANGE_PROBABILITY = 0.001
SHIFT_PROBABILITY = 0.002
SHIFT_MIN_SPACING = 50
SHIFT_MAGNITUDE = 0.3
CYCLE_FREQUENCY = 0.05
CYCLE_AMPLITUDE = 0.05
OUTLIER_PROBABILITY = 0.005
OUTLIER_MAGNITUDE = 0.8
CLAMP_MARGIN = 0.1


@dataclass
class DriftState:
    """Random-walk state of one simulated parameter."""
    drift: float = 0.0
    drift_rate: float = 0.0
    last_shift: int = 0


class ProcessDataGenerator:
    """
    Seedable generator of simulated process readings.

    Args:
        seed: Seed for numpy's default_rng (None for nondeterministic output)
        noise_level: Noise amplitude as a fraction of the control range
        correlated: Propagate deviations of upstream parameters (temperature,
            pressure, rfPower, gasFlow) into the parameters they affect
    """

    def __init__(self, seed: Optional[int] = None, noise_level: float = 0.3, correlated: bool = False):
        self.rng = np.random.default_rng(seed)
        self.noise_level = noise_level
        self.correlated = correlated
        self.drift_states: Dict[str, DriftState] = {}

    def _drift_state(self, key: str) -> DriftState:
        if key not in self.drift_states:
            self.drift_states[key] = DriftState(
                drift_rate=(self.rng.random() - 0.5) * DRIFT_RATE_SCALE,
            )
        return self.drift_states[key]

    def inject_drift(self, key: str, drift_rate: float):
        """Force a drift rate (units per reading) for a parameter."""
        self._drift_state(key).drift_rate = drift_rate

    def inject_shift(self, key: str, amount: float):
        """Apply an immediate step change to a parameter."""
        self._drift_state(key).drift += amount

    def generate_value(self, key: str, limits: ParameterLimits, iteration: int, line: str) -> float:
        control_range = limits.ucl - limits.lcl
        state = self._drift_state(key)

        state.drift += state.drift_rate

        if self.rng.random() < DRIFT_RATE_CHANGE_PROBABILITY:
            state.drift_rate = (self.rng.random() - 0.5) * 2 * DRIFT_RATE_SCALE

        if self.rng.random() < SHIFT_PROBABILITY and iteration - state.last_shift > SHIFT_MIN_SPACING:
            state.drift += (self.rng.random() - 0.5) * control_range * SHIFT_MAGNITUDE
            state.last_shift = iteration

        line_offset = LINE_OFFSETS.get(line, 0.0) * control_range
        cyclical = np.sin(iteration * CYCLE_FREQUENCY) * control_range * CYCLE_AMPLITUDE
        noise = (self.rng.random() - 0.5) * control_range * self.noise_level

        outlier = 0.0
        if self.rng.random() < OUTLIER_PROBABILITY:
            outlier = (self.rng.random() - 0.5) * control_range * OUTLIER_MAGNITUDE

        value = limits.target + state.drift + line_offset + cyclical + noise + outlier

        spec_range = limits.usl - limits.lsl
        low = limits.lsl - CLAMP_MARGIN * spec_range
        high = limits.usl + CLAMP_MARGIN * spec_range
        value = min(max(value, low), high)

        return round(float(value), 4)

    def _apply_correlations(self, values: Dict[str, float], parameters: Dict[str, ParameterLimits]):
        for source, targets in PARAMETER_CORRELATIONS.items():
            if source not in values or source not in parameters:
                continue
            src = parameters[source]
            deviation = (values[source] - src.target) / (src.ucl - src.lcl)

            for target, coefficient in targets.items():
                if target in values and target in parameters:
                    tgt = parameters[target]
                    values[target] = round(
                        values[target] + deviation * coefficient * (tgt.ucl - tgt.lcl) * 0.1, 4
                    )

    def generate_reading(
        self,
        parameters: Dict[str, ParameterLimits],
        timestamp: Union[datetime, int, str, None] = None,
        iteration: int = 0,
    ) -> Reading:
        """
        Generate one reading covering every parameter.

        Lines rotate A, B, C, D with the iteration number.
        """
        timestamp = to_timestamp(timestamp)
        line = LINES[iteration % len(LINES)]

        values = {
            key: self.generate_value(key, limits, iteration, line)
            for key, limits in parameters.items()
        }
        if self.correlated:
            self._apply_correlations(values, parameters)

        return Reading(
            timestamp=timestamp,
            line=line,
            values=values,
            reading_id=f"RDG-{int(timestamp.timestamp() * 1000)}-{iteration}",
        )

    def generate_readings(
        self,
        parameters: Dict[str, ParameterLimits],
        n: int,
        start: Union[datetime, int, str, None] = None,
        interval_seconds: float = 1.0,
    ) -> List[Reading]:
        """Generate n readings spaced interval_seconds apart."""
        start = to_timestamp(start)
        return [
            self.generate_reading(parameters, start + timedelta(seconds=i * interval_seconds), i)
            for i in range(n)
        ]


# =============================================================================
# COMMAND LINE
# =============================================================================

def run_simulation(
    n_readings: int,
    output_dir: str,
    seed: int = 42,
    parameters: Optional[Dict[str, ParameterLimits]] = None,
    interval_seconds: float = 1.0,
) -> Dict[str, Any]:
    """
    Generate readings, monitor them and write readings, alerts and a
    capability table to output_dir.

    Returns:
        Dict with the written file paths and session statistics
    """
    from .export import export_alerts_csv, export_readings_csv
    from .monitor import ProcessMonitor

    parameters = parameters or default_parameter_limits()
    generator = ProcessDataGenerator(seed=seed)
    monitor = ProcessMonitor()
    monitor.configure_many(parameters)

    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    readings = generator.generate_readings(parameters, n_readings, start, interval_seconds)
    for reading in readings:
        monitor.ingest(reading)

    os.makedirs(output_dir, exist_ok=True)
    metadata = {'seed': seed, 'n_readings': n_readings}

    readings_path = export_readings_csv(readings, os.path.join(output_dir, 'readings.csv'), metadata)
    alerts_path = export_alerts_csv(monitor.get_alerts(), os.path.join(output_dir, 'alerts.csv'), metadata)

    capability_path = os.path.join(output_dir, 'capability.csv')
    monitor.get_capability_table().to_csv(capability_path, index=False)

    return {
        'readings': readings_path,
        'alerts': alerts_path,
        'capability': capability_path,
        'statistics': monitor.get_statistics(),
    }


def main():
    parser = argparse.ArgumentParser(
        description='Simulate process readings and run them through the drift monitor',
    )
    parser.add_argument(
        '--n-readings', type=int, default=500,
        help='Number of readings to generate (default: 500)',
    )
    parser.add_argument(
        '--output-dir', type=str, default='./sim_data',
        help='Output directory (default: ./sim_data)',
    )
    parser.add_argument(
        '--seed', type=int, default=42,
        help='Random seed for reproducibility (default: 42)',
    )
    parser.add_argument(
        '--interval', type=float, default=1.0,
        help='Seconds between readings (default: 1.0)',
    )
    parser.add_argument(
        '--limits', type=str, default=None,
        help='JSON file with parameter limits (default: built-in table)',
    )

    args = parser.parse_args()

    parameters = None
    if args.limits:
        with open(args.limits, 'r') as f:
            parameters = validate_limit_table(json.load(f))

    print('=' * 70)
    print('Process Drift Monitor - Simulation')
    print('=' * 70)
    print(f'Readings:  {args.n_readings}')
    print(f'Seed:      {args.seed}')
    print(f'Output:    {args.output_dir}/')
    print()

    result = run_simulation(
        n_readings=args.n_readings,
        output_dir=args.output_dir,
        seed=args.seed,
        parameters=parameters,
        interval_seconds=args.interval,
    )

    stats = result['statistics']
    print(f"Alerts raised:      {stats['total_alerts']} ({stats['critical_alerts']} critical)")
    if stats['out_of_limits_percent'] is not None:
        print(f"Out of limits (%):  {stats['out_of_limits_percent']:.1f}")
    print()
    for label in ('readings', 'alerts', 'capability'):
        print(f'  {label:<12} {result[label]}')


if __name__ == '__main__':
    main()
