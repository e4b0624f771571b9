"""
Alert Aggregation
=================
Turns classification and drift results into a bounded, deduplicated list
of operator alerts.

Policy:
- One alert per (parameter, alert type) while a condition persists: a
  repeat within the cooldown window is suppressed unless its severity is
  higher than the last alert raised for that key.
- Cooldown is measured on reading timestamps, so replaying recorded data
  produces the same alerts as the live run.
- The list is capped. At capacity the oldest acknowledged alert is evicted
  first; only when none is acknowledged does the oldest alert go.
- Only the aggregator mutates the acknowledgement fields. Alerts handed out
  by get_alerts() are copies.
"""

import copy
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple, Callable

from .drift import DriftAssessment
from .limits import ParameterLimits
from .spc import ClassificationResult

logger = logging.getLogger(__name__)


class AlertType(Enum):
    """Condition that raised an alert."""
    OUT_OF_CONTROL = "OUT_OF_CONTROL"
    OUT_OF_SPEC = "OUT_OF_SPEC"
    CUSUM_DRIFT = "CUSUM_DRIFT"
    EWMA_DRIFT = "EWMA_DRIFT"
    TREND = "TREND"
    PROCESS_SHIFT = "PROCESS_SHIFT"


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return SEVERITY_LEVELS[self]


SEVERITY_LEVELS = {
    AlertSeverity.INFO: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.CRITICAL: 3,
}

TYPE_WEIGHTS = {
    AlertType.OUT_OF_SPEC: 50,
    AlertType.PROCESS_SHIFT: 40,
    AlertType.CUSUM_DRIFT: 30,
    AlertType.OUT_OF_CONTROL: 20,
    AlertType.EWMA_DRIFT: 15,
    AlertType.TREND: 10,
}

RECOMMENDED_ACTIONS = {
    AlertType.OUT_OF_SPEC: [
        'Stop production immediately',
        'Isolate affected batch for quality review',
        'Check equipment calibration',
        'Review recent process changes',
        'Notify quality engineering team',
    ],
    AlertType.OUT_OF_CONTROL: [
        'Monitor closely for next 10 readings',
        'Verify sensor readings',
        'Check for environmental changes',
        'Review control chart for patterns',
    ],
    AlertType.CUSUM_DRIFT: [
        'Investigate root cause of sustained drift',
        'Check for gradual equipment degradation',
        'Review consumable status (gas, chemicals)',
        'Consider preventive maintenance',
    ],
    AlertType.EWMA_DRIFT: [
        'Monitor trend development',
        'Check for systematic errors',
        'Review recent recipe changes',
        'Verify measurement system stability',
    ],
    AlertType.TREND: [
        'Track trend progression',
        'Identify potential causes',
        'Plan preventive action if trend continues',
        'Schedule equipment review',
    ],
    AlertType.PROCESS_SHIFT: [
        'Investigate cause of sudden change',
        'Check for equipment malfunction',
        'Review maintenance history',
        'Verify process recipe settings',
        'Check lot-to-lot material variation',
    ],
}

# Estimated yield loss (percentage points) per alert type
YIELD_IMPACT_RANGES = {
    AlertType.OUT_OF_SPEC: (2.0, 10.0),
    AlertType.OUT_OF_CONTROL: (0.5, 2.0),
    AlertType.CUSUM_DRIFT: (1.0, 5.0),
    AlertType.EWMA_DRIFT: (0.5, 3.0),
    AlertType.TREND: (0.2, 1.0),
    AlertType.PROCESS_SHIFT: (2.0, 8.0),
}

SEVERITY_IMPACT_MULTIPLIERS = {
    AlertSeverity.CRITICAL: 1.5,
    AlertSeverity.WARNING: 1.0,
    AlertSeverity.INFO: 0.5,
}


@dataclass
class Alert:
    """An operator alert."""
    id: str
    type: AlertType
    severity: AlertSeverity
    parameter_key: str
    parameter_name: str
    line: str
    value: float
    message: str
    created_at: datetime
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    limit: Optional[float] = None
    limit_type: Optional[str] = None  # 'USL', 'LSL', 'UCL', 'LCL'
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def priority(self) -> int:
        """Severity weight * 100 + type weight; higher is more urgent."""
        return self.severity.level * 100 + TYPE_WEIGHTS.get(self.type, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'parameter_key': self.parameter_key,
            'parameter_name': self.parameter_name,
            'line': self.line,
            'value': self.value,
            'message': self.message,
            'created_at': self.created_at.isoformat(),
            'acknowledged': self.acknowledged,
            'acknowledged_at': self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            'limit': self.limit,
            'limit_type': self.limit_type,
            'priority': self.priority,
            'details': dict(self.details),
        }


# =============================================================================
# ALERT HELPERS
# =============================================================================

def sort_alerts_by_priority(alerts: List[Alert]) -> List[Alert]:
    """Most urgent first; ties keep their input order."""
    return sorted(alerts, key=lambda a: a.priority, reverse=True)


def summarize_alerts(alerts: List[Alert]) -> Dict[str, Any]:
    """Counts by acknowledgement, severity, type, parameter and line."""
    summary = {
        'total': len(alerts),
        'unacknowledged': sum(1 for a in alerts if not a.acknowledged),
        'by_severity': {s.value: 0 for s in (AlertSeverity.CRITICAL, AlertSeverity.WARNING, AlertSeverity.INFO)},
        'by_type': {},
        'by_parameter': {},
        'by_line': {},
    }

    for alert in alerts:
        summary['by_severity'][alert.severity.value] += 1
        summary['by_type'][alert.type.value] = summary['by_type'].get(alert.type.value, 0) + 1
        summary['by_parameter'][alert.parameter_key] = summary['by_parameter'].get(alert.parameter_key, 0) + 1
        summary['by_line'][alert.line] = summary['by_line'].get(alert.line, 0) + 1

    return summary


def get_recommended_actions(alert: Alert) -> List[str]:
    return list(RECOMMENDED_ACTIONS.get(
        alert.type,
        ['Investigate the issue', 'Contact process engineering'],
    ))


def estimate_yield_impact(alert: Alert, current_yield: float = 95.0) -> Dict[str, Any]:
    """
    Rough yield-loss estimate for an alert.

    Midpoint of the type's impact range scaled by severity.
    """
    low, high = YIELD_IMPACT_RANGES.get(alert.type, (0.0, 1.0))
    multiplier = SEVERITY_IMPACT_MULTIPLIERS.get(alert.severity, 1.0)
    avg_impact = (low + high) / 2 * multiplier

    return {
        'estimated_yield_loss': round(avg_impact, 2),
        'projected_yield': round(current_yield - avg_impact, 2),
        'impact_range': {'min': low, 'max': high},
        'confidence': 'medium',
    }


def _drift_severity(alarm: bool) -> AlertSeverity:
    return AlertSeverity.CRITICAL if alarm else AlertSeverity.WARNING


# =============================================================================
# AGGREGATOR
# =============================================================================

class AlertAggregator:
    """
    Creates, deduplicates and retains alerts.

    A repeat of the same (parameter, type) inside the cooldown window is
    suppressed. A higher severity is not a repeat: a CUSUM or EWMA warning
    followed by an alarm raises a second alert of that type.

    Usage:
        aggregator = AlertAggregator(max_alerts=200, cooldown_seconds=300)
        new_alerts = aggregator.process(key, limits, line, timestamp, classification, assessment)
        aggregator.acknowledge(new_alerts[0].id)
    """

    def __init__(
        self,
        max_alerts: int = 200,
        cooldown_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        if max_alerts < 1:
            raise ValueError(f"max_alerts must be positive, got {max_alerts}")
        self.max_alerts = max_alerts
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

        self._alerts: "OrderedDict[str, Alert]" = OrderedDict()
        self._last_raised: Dict[Tuple[str, AlertType], Tuple[datetime, AlertSeverity]] = {}
        self.total_created = 0
        self.total_suppressed = 0
        self.total_evicted = 0

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _in_cooldown(self, key: str, alert_type: AlertType, severity: AlertSeverity, timestamp: datetime) -> bool:
        last = self._last_raised.get((key, alert_type))
        if last is None:
            return False

        last_time, last_severity = last
        if severity.level > last_severity.level:
            return False

        elapsed = (timestamp - last_time).total_seconds()
        return elapsed < self.cooldown_seconds

    def _evict_one(self):
        victim_id = next((a.id for a in self._alerts.values() if a.acknowledged), None)

        if victim_id is None:
            victim_id = next(iter(self._alerts))
            victim = self._alerts[victim_id]
            logger.warning(
                "Alert history full (%d); evicting unacknowledged %s alert %s for '%s'",
                self.max_alerts, victim.severity.value, victim.id, victim.parameter_key,
            )

        del self._alerts[victim_id]
        self.total_evicted += 1

    def raise_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        key: str,
        limits: ParameterLimits,
        line: str,
        value: float,
        message: str,
        timestamp: datetime,
        limit: Optional[float] = None,
        limit_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """
        Record an alert unless it duplicates one raised within the cooldown.

        Returns:
            The new Alert, or None if suppressed
        """
        if self._in_cooldown(key, alert_type, severity, timestamp):
            self.total_suppressed += 1
            logger.debug("Suppressed duplicate %s alert for '%s'", alert_type.value, key)
            return None

        alert = Alert(
            id=self._id_factory(),
            type=alert_type,
            severity=severity,
            parameter_key=key,
            parameter_name=limits.name or key,
            line=line,
            value=float(value),
            message=message,
            created_at=timestamp,
            limit=limit,
            limit_type=limit_type,
            details=details or {},
        )

        if len(self._alerts) >= self.max_alerts:
            self._evict_one()

        self._alerts[alert.id] = alert
        self._last_raised[(key, alert_type)] = (timestamp, severity)
        self.total_created += 1
        logger.info("%s alert %s: %s", severity.value.upper(), alert_type.value, message)

        return copy.deepcopy(alert)

    def process(
        self,
        key: str,
        limits: ParameterLimits,
        line: str,
        timestamp: datetime,
        classification: ClassificationResult,
        assessment: Optional[DriftAssessment] = None,
    ) -> List[Alert]:
        """
        Raise the alerts implied by one parameter's results for one reading.

        Args:
            key: Parameter key
            limits: Limits of the parameter
            line: Monitoring line of the reading
            timestamp: Reading timestamp (drives the cooldown)
            classification: Control-chart classification of the value
            assessment: Drift assessment of the value, if any

        Returns:
            Newly created alerts (possibly empty)
        """
        name = limits.name or key
        unit = f" {limits.unit}" if limits.unit else ""
        value = classification.value
        candidates = []

        if classification.out_of_spec:
            upper = value > limits.usl
            candidates.append(dict(
                alert_type=AlertType.OUT_OF_SPEC,
                severity=AlertSeverity.CRITICAL,
                message=f"{name} ({value:.2f}{unit}) exceeded {'upper' if upper else 'lower'} spec limit",
                limit=limits.usl if upper else limits.lsl,
                limit_type='USL' if upper else 'LSL',
            ))
        elif classification.out_of_control:
            upper = value > limits.ucl
            candidates.append(dict(
                alert_type=AlertType.OUT_OF_CONTROL,
                severity=AlertSeverity.WARNING,
                message=f"{name} ({value:.2f}{unit}) exceeded {'upper' if upper else 'lower'} control limit",
                limit=limits.ucl if upper else limits.lcl,
                limit_type='UCL' if upper else 'LCL',
            ))

        if assessment is not None:
            cusum = assessment.cusum
            if cusum.available and (cusum.alarm or cusum.warning):
                statistic = cusum.cusum_plus if cusum.direction == 'positive' else cusum.cusum_minus
                candidates.append(dict(
                    alert_type=AlertType.CUSUM_DRIFT,
                    severity=_drift_severity(cusum.alarm),
                    message=(
                        f"CUSUM drift {'detected' if cusum.alarm else 'warning'} for {name} "
                        f"({cusum.direction} direction)"
                    ),
                    details={
                        'direction': cusum.direction,
                        'cusum_value': statistic,
                        'threshold': cusum.threshold,
                    },
                ))

            ewma = assessment.ewma
            if ewma.available and (ewma.alarm or ewma.warning):
                candidates.append(dict(
                    alert_type=AlertType.EWMA_DRIFT,
                    severity=_drift_severity(ewma.alarm),
                    message=(
                        f"EWMA drift {'detected' if ewma.alarm else 'warning'} for {name} "
                        f"(deviation: {ewma.deviation:.3f})"
                    ),
                    details={
                        'ewma_value': ewma.value,
                        'deviation': ewma.deviation,
                        'ucl': ewma.ucl,
                        'lcl': ewma.lcl,
                    },
                ))

            trend = assessment.trend
            if trend.significant:
                candidates.append(dict(
                    alert_type=AlertType.TREND,
                    severity=AlertSeverity.WARNING,
                    message=(
                        f"Significant trend detected for {name} "
                        f"({trend.direction}, R²={trend.regression.r_squared:.2f})"
                    ),
                    details={
                        'slope': trend.regression.slope,
                        'direction': trend.direction,
                        'r_squared': trend.regression.r_squared,
                        'projected_drift': trend.projected_drift,
                    },
                ))

            shift = assessment.shift
            if shift.detected:
                candidates.append(dict(
                    alert_type=AlertType.PROCESS_SHIFT,
                    severity=AlertSeverity.WARNING,
                    message=(
                        f"Process shift detected for {name} "
                        f"({shift.shift_in_sigmas:.1f}σ {shift.direction})"
                    ),
                    details={
                        'shift': shift.shift,
                        'shift_in_sigmas': shift.shift_in_sigmas,
                        'direction': shift.direction,
                    },
                ))

        created = []
        for candidate in candidates:
            alert = self.raise_alert(
                key=key,
                limits=limits,
                line=line,
                value=value,
                timestamp=timestamp,
                **candidate,
            )
            if alert is not None:
                created.append(alert)

        return created

    # -------------------------------------------------------------------------
    # Lifecycle and queries
    # -------------------------------------------------------------------------

    def acknowledge(self, alert_id: str) -> bool:
        """
        Mark an alert acknowledged.

        Idempotent: acknowledging twice keeps the first acknowledged_at.

        Returns:
            False if the id is unknown (never raised, or already evicted)
        """
        alert = self._alerts.get(alert_id)
        if alert is None:
            logger.warning("Cannot acknowledge unknown alert id %s", alert_id)
            return False

        if not alert.acknowledged:
            alert.acknowledged = True
            alert.acknowledged_at = self._clock()

        return True

    def acknowledge_all(self, key: Optional[str] = None) -> int:
        """Acknowledge every open alert (optionally for one parameter)."""
        count = 0
        for alert in self._alerts.values():
            if alert.acknowledged or (key is not None and alert.parameter_key != key):
                continue
            alert.acknowledged = True
            alert.acknowledged_at = self._clock()
            count += 1
        return count

    def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    def get_alerts(self, unacknowledged_only: bool = False, limit: Optional[int] = None) -> List[Alert]:
        """
        Retained alerts, newest first.

        Args:
            unacknowledged_only: Skip acknowledged alerts
            limit: Maximum number of alerts to return
        """
        if limit is not None and limit <= 0:
            return []

        alerts = []
        for alert in reversed(self._alerts.values()):
            if unacknowledged_only and alert.acknowledged:
                continue
            alerts.append(copy.deepcopy(alert))
            if limit is not None and len(alerts) >= limit:
                break
        return alerts

    def summary(self) -> Dict[str, Any]:
        return summarize_alerts(list(self._alerts.values()))

    def clear_cooldowns(self, key: Optional[str] = None):
        """Forget last-raised times so the next condition alerts immediately."""
        if key is None:
            self._last_raised.clear()
        else:
            for cooldown_key in [k for k in self._last_raised if k[0] == key]:
                del self._last_raised[cooldown_key]

    def __len__(self) -> int:
        return len(self._alerts)
