"""
Process Monitor
===============
Engine-facing API: configure parameters, ingest readings, manage alerts
and read capability summaries.

Processing model: one reading at a time. ingest() classifies every
configured parameter of the reading, feeds the drift engine, and raises
alerts before returning. ingest() and acknowledge() are serialized by an
internal lock; readers copy state under the same lock, so capability
summaries and history snapshots are always internally consistent.

Usage:
    monitor = ProcessMonitor()
    monitor.configure('temperature', {'target': 25, 'ucl': 27, 'lcl': 23,
                                      'usl': 28, 'lsl': 22, 'name': 'Temperature'})
    results = monitor.ingest(Reading(timestamp=now, line='Line A',
                                     values={'temperature': 29.0}))
    results['temperature'].classification.status   # ProcessStatus.CRITICAL
    monitor.get_alerts(unacknowledged_only=True)
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable, Union

import numpy as np
import pandas as pd

from .alerts import Alert, AlertAggregator, summarize_alerts
from .config import MonitorSettings
from .drift import DriftAssessment, DriftEngine, OutOfControlPrediction
from .limits import ParameterLimits, validate_parameter_limits
from .readings import Reading, ReadingBuffer, readings_to_dataframe
from .spc import (
    CapabilitySummary,
    ClassificationResult,
    ProcessStatus,
    ViolationType,
    calculate_capability,
    classify_reading,
    violations_at,
)

logger = logging.getLogger(__name__)

# Recent readings used for the out-of-limits percentage in get_statistics()
STATISTICS_WINDOW = 100


@dataclass
class ParameterResult:
    """Everything ingest() computed for one parameter of one reading."""
    classification: ClassificationResult
    assessment: DriftAssessment
    violations: List[ViolationType] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'classification': self.classification.to_dict(),
            'assessment': self.assessment.to_dict(),
            'violations': [v.value for v in self.violations],
            'alerts': [a.id for a in self.alerts],
        }


class ProcessMonitor:
    """
    One monitoring session: limits, reading buffer, drift engine and alerts.

    Independent sessions (e.g. one per manufacturing line) are independent
    instances; nothing is shared at module level.
    """

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or MonitorSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()

        self._limits: Dict[str, ParameterLimits] = {}
        self._buffer = ReadingBuffer(self.settings.reading_buffer_size)
        self._engine = DriftEngine(self.settings)
        self._alerts = AlertAggregator(
            max_alerts=self.settings.alert_history_size,
            cooldown_seconds=self.settings.alert_cooldown_seconds,
            clock=self._clock,
        )
        self._latest_status: Dict[str, ProcessStatus] = {}

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def configure(self, key: str, limits: Union[ParameterLimits, Dict[str, Any]]) -> ParameterLimits:
        """
        Set the limits of a parameter.

        Idempotent for unchanged limits. Changed limits replace the old ones
        and reset the parameter's CUSUM/EWMA state, which was accumulated
        against the old target.

        Raises:
            ConfigurationError: If the limits are invalid
        """
        validated = validate_parameter_limits(key, limits)

        with self._lock:
            current = self._limits.get(key)
            if current == validated:
                return current

            self._limits[key] = validated
            if current is None:
                logger.info("Configured parameter '%s'", key)
            else:
                self._engine.reset(key)
                logger.info("Reconfigured parameter '%s'; drift state reset", key)

        return validated

    def configure_many(self, table: Dict[str, Union[ParameterLimits, Dict[str, Any]]]) -> Dict[str, ParameterLimits]:
        return {key: self.configure(key, limits) for key, limits in table.items()}

    @property
    def parameters(self) -> Dict[str, ParameterLimits]:
        with self._lock:
            return dict(self._limits)

    def get_limits(self, key: str) -> Optional[ParameterLimits]:
        with self._lock:
            return self._limits.get(key)

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def ingest(self, reading: Reading) -> Dict[str, ParameterResult]:
        """
        Process one reading.

        Parameters that are absent (or NaN) in the reading, or that have not
        been configured, are skipped: no classification, no detector update,
        no alert.

        Returns:
            Parameter key -> ParameterResult for every processed parameter
        """
        if not isinstance(reading, Reading):
            raise TypeError(f"ingest() expects a Reading, got {type(reading).__name__}")

        results: Dict[str, ParameterResult] = {}

        with self._lock:
            self._buffer.append(reading)

            for key in reading.values:
                limits = self._limits.get(key)
                if limits is None:
                    logger.debug("Skipping unconfigured parameter '%s'", key)
                    continue

                value = reading.get(key)
                if value is None:
                    logger.debug("Skipping absent value for '%s'", key)
                    continue

                classification = classify_reading(value, limits)
                assessment = self._engine.assess(key, value, limits)

                history = self._engine.history(key)
                violations = violations_at(history, limits, len(history) - 1)

                alerts = self._alerts.process(
                    key, limits, reading.line, reading.timestamp, classification, assessment,
                )

                self._latest_status[key] = classification.status
                results[key] = ParameterResult(
                    classification=classification,
                    assessment=assessment,
                    violations=violations,
                    alerts=alerts,
                )

        return results

    def ingest_many(self, readings: List[Reading]) -> List[Dict[str, ParameterResult]]:
        return [self.ingest(r) for r in readings]

    def reset_detector_state(self, key: Optional[str] = None) -> bool:
        """
        Operator reset of CUSUM/EWMA state for one parameter, or all when key
        is None.

        Returns:
            False if key is not a configured parameter
        """
        with self._lock:
            if key is not None and key not in self._limits:
                logger.warning("Cannot reset unknown parameter '%s'", key)
                return False

            if key is not None and key not in self._engine.parameters:
                # Configured but no readings yet: already at initial state
                return True

            return self._engine.reset(key)

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def acknowledge(self, alert_id: str) -> bool:
        with self._lock:
            return self._alerts.acknowledge(alert_id)

    def acknowledge_all(self, key: Optional[str] = None) -> int:
        with self._lock:
            return self._alerts.acknowledge_all(key)

    def get_alerts(self, unacknowledged_only: bool = False, limit: Optional[int] = None) -> List[Alert]:
        """Alerts newest first."""
        with self._lock:
            return self._alerts.get_alerts(unacknowledged_only=unacknowledged_only, limit=limit)

    def alert_summary(self) -> Dict[str, Any]:
        with self._lock:
            return self._alerts.summary()

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def get_capability_summary(self, key: str, window: Optional[int] = None) -> Optional[CapabilitySummary]:
        """
        Capability over the last `window` retained values of a parameter
        (default: settings.capability_window).

        Returns:
            CapabilitySummary, or None if the parameter is not configured
        """
        with self._lock:
            limits = self._limits.get(key)
            if limits is None:
                return None
            values = self._buffer.values(key, window or self.settings.capability_window)

        return calculate_capability(values, limits)

    def get_capability_table(self) -> pd.DataFrame:
        """Capability of every configured parameter, one row each."""
        rows = []
        for key, limits in self.parameters.items():
            summary = self.get_capability_summary(key)
            row = {'parameter': key, 'name': limits.name or key}
            row.update(summary.to_dict())
            rows.append(row)
        return pd.DataFrame(rows)

    def get_readings(self, count: Optional[int] = None) -> List[Reading]:
        with self._lock:
            return self._buffer.latest(count)

    def get_readings_dataframe(self, count: Optional[int] = None) -> pd.DataFrame:
        return readings_to_dataframe(self.get_readings(count))

    def get_parameter_history(self, key: str, count: Optional[int] = None) -> pd.DataFrame:
        """
        Timestamped values of one parameter with their classification.

        Columns: timestamp, line, value, status, out_of_control, out_of_spec
        """
        with self._lock:
            limits = self._limits.get(key)
            readings = self._buffer.latest()

        rows = []
        for reading in readings:
            value = reading.get(key)
            if value is None:
                continue
            row = {'timestamp': reading.timestamp, 'line': reading.line, 'value': value}
            if limits is not None:
                result = classify_reading(value, limits)
                row.update(
                    status=result.status.value,
                    out_of_control=result.out_of_control,
                    out_of_spec=result.out_of_spec,
                )
            rows.append(row)

        if count is not None:
            rows = rows[-count:] if count > 0 else []

        return pd.DataFrame(rows, columns=['timestamp', 'line', 'value', 'status', 'out_of_control', 'out_of_spec'])

    def get_drift_status(self) -> Dict[str, Optional[DriftAssessment]]:
        """Latest drift assessment per configured parameter (None before any reading)."""
        with self._lock:
            return {key: self._engine.last_assessment(key) for key in self._limits}

    def predict_time_to_out_of_control(self, key: str) -> Optional[OutOfControlPrediction]:
        with self._lock:
            limits = self._limits.get(key)
            if limits is None:
                return None
            return self._engine.predict_time_to_out_of_control(key, limits)

    def get_statistics(self) -> Dict[str, Any]:
        """Session counters for dashboards."""
        with self._lock:
            recent = self._buffer.latest(STATISTICS_WINDOW)
            limits = dict(self._limits)
            alerts = self._alerts.get_alerts()
            total_readings = self._buffer.total_appended
            retained = len(self._buffer)

        flagged = 0
        for reading in recent:
            for key, lim in limits.items():
                value = reading.get(key)
                if value is not None and (value > lim.ucl or value < lim.lcl):
                    flagged += 1
                    break

        summary = summarize_alerts(alerts)

        return {
            'total_readings': total_readings,
            'retained_readings': retained,
            'total_alerts': summary['total'],
            'unacknowledged_alerts': summary['unacknowledged'],
            'critical_alerts': summary['by_severity']['critical'],
            'out_of_limits_percent': float(flagged / len(recent) * 100) if recent else None,
        }

    def latest_status(self) -> Dict[str, ProcessStatus]:
        with self._lock:
            return dict(self._latest_status)

    def parameter_values(self, key: str, count: Optional[int] = None) -> np.ndarray:
        with self._lock:
            return self._buffer.values(key, count)
