"""
Drift Detection Module
======================
Stateful sequential tests that catch process drift a single-sample
control-chart check would miss.

Detectors:
- CUSUM: two-sided tabular cumulative sum of standardized deviations.
  Accumulates small persistent biases; state persists until an explicit
  reset and is never cleared by an alarm.
- EWMA: exponentially weighted moving average with asymptotic limits.
- Trend: least-squares slope over a window of recent values.
- Shift: recent-window mean against the preceding baseline window.

The DriftEngine owns one CUSUM/EWMA state and one value history per
parameter and combines the four detectors into a DriftAssessment for every
reading. A detector that cannot compute (too few values, zero sigma)
reports itself unavailable; it never aborts the assessment.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional, List

import numpy as np
from scipy import stats

from .config import MonitorSettings
from .limits import ParameterLimits

logger = logging.getLogger(__name__)


class DriftStatus(Enum):
    """Status of a detector or of a whole drift assessment."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    UNAVAILABLE = "unavailable"  # Insufficient data, never "healthy"


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class CusumResult:
    """CUSUM state after one update."""
    available: bool
    cusum_plus: float = 0.0
    cusum_minus: float = 0.0
    threshold: float = 5.0
    warning: bool = False
    alarm: bool = False
    direction: Optional[str] = None  # 'positive' or 'negative'

    @property
    def status(self) -> DriftStatus:
        if not self.available:
            return DriftStatus.UNAVAILABLE
        if self.alarm:
            return DriftStatus.CRITICAL
        if self.warning:
            return DriftStatus.WARNING
        return DriftStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'available': self.available,
            'cusum_plus': self.cusum_plus,
            'cusum_minus': self.cusum_minus,
            'threshold': self.threshold,
            'warning': self.warning,
            'alarm': self.alarm,
            'direction': self.direction,
            'status': self.status.value,
        }


@dataclass
class EwmaResult:
    """EWMA statistic and limits after one update."""
    available: bool
    value: Optional[float] = None
    ucl: Optional[float] = None
    lcl: Optional[float] = None
    target: Optional[float] = None
    deviation: Optional[float] = None
    warning: bool = False
    alarm: bool = False

    @property
    def status(self) -> DriftStatus:
        if not self.available:
            return DriftStatus.UNAVAILABLE
        if self.alarm:
            return DriftStatus.CRITICAL
        if self.warning:
            return DriftStatus.WARNING
        return DriftStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'available': self.available,
            'value': self.value,
            'ucl': self.ucl,
            'lcl': self.lcl,
            'target': self.target,
            'deviation': self.deviation,
            'warning': self.warning,
            'alarm': self.alarm,
            'status': self.status.value,
        }


@dataclass
class Regression:
    """Ordinary least-squares fit of value against arrival index."""
    slope: float
    intercept: float
    r_squared: float
    p_value: Optional[float]
    n_points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slope': self.slope,
            'intercept': self.intercept,
            'r_squared': self.r_squared,
            'p_value': self.p_value,
            'n_points': self.n_points,
        }


@dataclass
class TrendResult:
    """Trend analysis over the recent window."""
    regression: Optional[Regression] = None
    significant: bool = False
    direction: Optional[str] = None  # 'increasing' or 'decreasing'
    projected_drift: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.regression is not None

    @property
    def status(self) -> DriftStatus:
        if not self.available:
            return DriftStatus.UNAVAILABLE
        return DriftStatus.WARNING if self.significant else DriftStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'available': self.available,
            'regression': self.regression.to_dict() if self.regression else None,
            'significant': self.significant,
            'direction': self.direction,
            'projected_drift': self.projected_drift,
            'status': self.status.value,
        }


@dataclass
class ShiftResult:
    """Baseline-vs-recent mean comparison."""
    available: bool
    baseline_mean: Optional[float] = None
    recent_mean: Optional[float] = None
    baseline_std: Optional[float] = None
    shift: Optional[float] = None
    shift_in_sigmas: Optional[float] = None
    detected: bool = False
    direction: Optional[str] = None  # 'positive' or 'negative'

    @property
    def status(self) -> DriftStatus:
        if not self.available:
            return DriftStatus.UNAVAILABLE
        return DriftStatus.WARNING if self.detected else DriftStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'available': self.available,
            'baseline_mean': self.baseline_mean,
            'recent_mean': self.recent_mean,
            'baseline_std': self.baseline_std,
            'shift': self.shift,
            'shift_in_sigmas': self.shift_in_sigmas,
            'detected': self.detected,
            'direction': self.direction,
            'status': self.status.value,
        }


@dataclass
class DriftAssessment:
    """Combined drift assessment for one parameter at one reading."""
    cusum: CusumResult
    ewma: EwmaResult
    trend: TrendResult
    shift: ShiftResult
    overall: DriftStatus

    @property
    def insufficient_data(self) -> bool:
        return self.overall == DriftStatus.UNAVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cusum': self.cusum.to_dict(),
            'ewma': self.ewma.to_dict(),
            'trend': self.trend.to_dict(),
            'shift': self.shift.to_dict(),
            'overall': self.overall.value,
        }


@dataclass
class OutOfControlPrediction:
    """Projection of a significant trend onto the control limits."""
    predicted: bool
    readings_to_ooc: Optional[int] = None
    direction: Optional[str] = None
    confidence: Optional[float] = None  # R² of the trend

    def to_dict(self) -> Dict[str, Any]:
        return {
            'predicted': self.predicted,
            'readings_to_ooc': self.readings_to_ooc,
            'direction': self.direction,
            'confidence': self.confidence,
        }


# =============================================================================
# DETECTORS
# =============================================================================

class CusumDetector:
    """
    Two-sided tabular CUSUM on standardized deviations from target.

        z  = (x - target) / sigma,   sigma = (UCL - LCL) / 6
        C+ = max(0, C+ + z - k)
        C- = max(0, C- - z - k)

    Warning when max(C+, C-) > warning_fraction * h, alarm when it exceeds h.
    Alarms are level-triggered: the sums are only cleared by reset().
    """

    def __init__(self, k: float = 0.5, h: float = 5.0, warning_fraction: float = 0.7):
        self.k = k
        self.h = h
        self.warning_fraction = warning_fraction
        self.cusum_plus = 0.0
        self.cusum_minus = 0.0

    def update(self, value: float, limits: ParameterLimits) -> CusumResult:
        sigma = limits.sigma
        if not sigma > 0:
            return CusumResult(
                available=False,
                cusum_plus=self.cusum_plus,
                cusum_minus=self.cusum_minus,
                threshold=self.h,
            )

        z = (value - limits.target) / sigma
        self.cusum_plus = max(0.0, self.cusum_plus + z - self.k)
        self.cusum_minus = max(0.0, self.cusum_minus - z - self.k)

        peak = max(self.cusum_plus, self.cusum_minus)

        return CusumResult(
            available=True,
            cusum_plus=self.cusum_plus,
            cusum_minus=self.cusum_minus,
            threshold=self.h,
            warning=peak > self.warning_fraction * self.h,
            alarm=peak > self.h,
            direction='positive' if self.cusum_plus > self.cusum_minus else 'negative',
        )

    def reset(self):
        self.cusum_plus = 0.0
        self.cusum_minus = 0.0


class EwmaDetector:
    """
    EWMA of the raw values, starting at the target.

        ewma = lambda * x + (1 - lambda) * ewma

    Limits are the asymptotic ones, recomputed from the current limits on
    every update:

        sigma_e = sigma * sqrt(lambda / (2 - lambda))
        UCL_e / LCL_e = target ± L * sigma_e

    Alarm outside the L band, warning outside warning_fraction of it.
    """

    def __init__(self, lambda_: float = 0.2, L: float = 3.0, warning_fraction: float = 0.7):
        if not (0.0 < lambda_ <= 1.0):
            raise ValueError(f"lambda must be in (0, 1], got {lambda_}")
        self.lambda_ = lambda_
        self.L = L
        self.warning_fraction = warning_fraction
        self.ewma: Optional[float] = None

    def update(self, value: float, limits: ParameterLimits) -> EwmaResult:
        sigma = limits.sigma
        if not sigma > 0:
            return EwmaResult(available=False, value=self.ewma, target=limits.target)

        if self.ewma is None:
            self.ewma = limits.target

        self.ewma = self.lambda_ * value + (1.0 - self.lambda_) * self.ewma

        ewma_sigma = sigma * math.sqrt(self.lambda_ / (2.0 - self.lambda_))
        ucl = limits.target + self.L * ewma_sigma
        lcl = limits.target - self.L * ewma_sigma
        warning_width = self.L * self.warning_fraction * ewma_sigma

        deviation = self.ewma - limits.target

        return EwmaResult(
            available=True,
            value=self.ewma,
            ucl=ucl,
            lcl=lcl,
            target=limits.target,
            deviation=deviation,
            warning=abs(deviation) > warning_width,
            alarm=self.ewma > ucl or self.ewma < lcl,
        )

    def reset(self):
        self.ewma = None


def fit_linear_regression(values: np.ndarray) -> Optional[Regression]:
    """
    Least-squares line through (index, value) pairs.

    Returns None for fewer than 2 values. R² is 0 for a constant series.
    The slope p-value (two-sided t-test) needs at least 3 values.
    """
    values = np.asarray(values, dtype=float)
    n = len(values)

    if n < 2:
        return None

    x = np.arange(n)
    x_mean = np.mean(x)
    y_mean = np.mean(values)

    sxx = np.sum((x - x_mean) ** 2)
    slope = float(np.sum((x - x_mean) * (values - y_mean)) / sxx)
    intercept = float(y_mean - slope * x_mean)

    y_pred = slope * x + intercept
    ss_res = float(np.sum((values - y_pred) ** 2))
    ss_tot = float(np.sum((values - y_mean) ** 2))

    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    p_value = None
    if n > 2:
        if ss_res > 0:
            std_err = math.sqrt(ss_res / (n - 2) / sxx)
            t_stat = slope / std_err
            p_value = float(2 * stats.t.sf(abs(t_stat), n - 2))
        else:
            p_value = 0.0 if slope != 0 else 1.0

    return Regression(
        slope=slope,
        intercept=intercept,
        r_squared=float(r_squared),
        p_value=p_value,
        n_points=n,
    )


class TrendDetector:
    """
    Windowed linear trend test.

    A trend is significant when R² exceeds r_squared_threshold and, unless
    min_projected_drift_sigmas is 0, the slope projected projection_horizon
    readings ahead moves the process by more than that many sigmas.
    """

    def __init__(
        self,
        window: int = 50,
        min_points: int = 10,
        r_squared_threshold: float = 0.3,
        projection_horizon: int = 100,
        min_projected_drift_sigmas: float = 1.0,
    ):
        self.window = window
        self.min_points = min_points
        self.r_squared_threshold = r_squared_threshold
        self.projection_horizon = projection_horizon
        self.min_projected_drift_sigmas = min_projected_drift_sigmas

    def analyze(self, values: np.ndarray, limits: Optional[ParameterLimits] = None) -> TrendResult:
        values = np.asarray(values, dtype=float)[-self.window:]

        if len(values) < self.min_points:
            return TrendResult()

        regression = fit_linear_regression(values)
        projected_drift = regression.slope * self.projection_horizon

        significant = regression.r_squared > self.r_squared_threshold
        if significant and limits is not None and self.min_projected_drift_sigmas > 0:
            significant = abs(projected_drift) > self.min_projected_drift_sigmas * limits.sigma

        return TrendResult(
            regression=regression,
            significant=significant,
            direction='increasing' if regression.slope > 0 else 'decreasing',
            projected_drift=projected_drift,
        )


class ShiftDetector:
    """
    Step-change test: mean of the last `window` values against the mean of
    the `window` values before them.

    Sigma comes from the control band ('limits') or from the baseline
    window's population standard deviation ('baseline').
    """

    def __init__(self, window: int = 30, threshold_sigmas: float = 1.5, sigma_source: str = 'limits'):
        if sigma_source not in ('limits', 'baseline'):
            raise ValueError(f"sigma_source must be 'limits' or 'baseline', got '{sigma_source}'")
        self.window = window
        self.threshold_sigmas = threshold_sigmas
        self.sigma_source = sigma_source

    def analyze(self, values: np.ndarray, limits: ParameterLimits) -> ShiftResult:
        values = np.asarray(values, dtype=float)

        if len(values) < 2 * self.window:
            return ShiftResult(available=False)

        recent = values[-self.window:]
        baseline = values[-2 * self.window:-self.window]

        baseline_mean = float(np.mean(baseline))
        recent_mean = float(np.mean(recent))
        baseline_std = float(np.std(baseline))
        shift = recent_mean - baseline_mean

        sigma = limits.sigma if self.sigma_source == 'limits' else baseline_std

        result = ShiftResult(
            available=sigma > 0,
            baseline_mean=baseline_mean,
            recent_mean=recent_mean,
            baseline_std=baseline_std,
            shift=shift,
            direction='positive' if shift > 0 else 'negative',
        )

        if sigma > 0:
            result.shift_in_sigmas = shift / sigma
            result.detected = abs(result.shift_in_sigmas) > self.threshold_sigmas

        return result


def combine_status(
    cusum: CusumResult,
    ewma: EwmaResult,
    trend: TrendResult,
    shift: ShiftResult,
) -> DriftStatus:
    """
    Overall drift status.

    CRITICAL on a CUSUM or EWMA alarm; WARNING on a CUSUM/EWMA warning, a
    significant trend or a detected shift; UNAVAILABLE only when no detector
    could compute; NORMAL otherwise.
    """
    if cusum.alarm or ewma.alarm:
        return DriftStatus.CRITICAL

    if cusum.warning or ewma.warning or trend.significant or shift.detected:
        return DriftStatus.WARNING

    if not (cusum.available or ewma.available or trend.available or shift.available):
        return DriftStatus.UNAVAILABLE

    return DriftStatus.NORMAL


def predict_time_to_out_of_control(
    values: np.ndarray,
    limits: ParameterLimits,
    trend_detector: Optional[TrendDetector] = None,
) -> OutOfControlPrediction:
    """
    Readings until a significant trend carries the latest value across a
    control limit (UCL when rising, LCL when falling).
    """
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return OutOfControlPrediction(predicted=False)

    trend = (trend_detector or TrendDetector()).analyze(values, limits)

    if not trend.significant or abs(trend.regression.slope) < 1e-4:
        return OutOfControlPrediction(predicted=False)

    slope = trend.regression.slope
    current = values[-1]

    if slope > 0:
        readings = (limits.ucl - current) / slope
    else:
        readings = (limits.lcl - current) / slope

    return OutOfControlPrediction(
        predicted=True,
        readings_to_ooc=max(0, int(round(readings))),
        direction=trend.direction,
        confidence=trend.regression.r_squared,
    )


# =============================================================================
# DRIFT ENGINE
# =============================================================================

@dataclass
class ParameterDriftState:
    """Everything the engine keeps for one parameter."""
    cusum: CusumDetector
    ewma: EwmaDetector
    history: deque
    n_updates: int = 0
    last_assessment: Optional[DriftAssessment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cusum_plus': self.cusum.cusum_plus,
            'cusum_minus': self.cusum.cusum_minus,
            'ewma': self.ewma.ewma,
            'history_length': len(self.history),
            'n_updates': self.n_updates,
        }


class DriftEngine:
    """
    Runs CUSUM, EWMA, trend and shift detection per parameter.

    State is updated strictly in the order assess() is called. The engine
    is not safe for concurrent assess() calls; callers serialize ingestion.

    Usage:
        engine = DriftEngine(MonitorSettings())
        assessment = engine.assess('temperature', 25.3, limits)
        if assessment.overall == DriftStatus.CRITICAL:
            ...
    """

    def __init__(self, settings: Optional[MonitorSettings] = None):
        self.settings = settings or MonitorSettings()
        self.trend_detector = TrendDetector(
            window=self.settings.trend.window,
            min_points=self.settings.trend.min_points,
            r_squared_threshold=self.settings.trend.r_squared_threshold,
            projection_horizon=self.settings.trend.projection_horizon,
            min_projected_drift_sigmas=self.settings.trend.min_projected_drift_sigmas,
        )
        self.shift_detector = ShiftDetector(
            window=self.settings.shift.window,
            threshold_sigmas=self.settings.shift.threshold_sigmas,
            sigma_source=self.settings.shift.sigma_source,
        )
        self._states: Dict[str, ParameterDriftState] = {}

    def _new_state(self) -> ParameterDriftState:
        s = self.settings
        return ParameterDriftState(
            cusum=CusumDetector(k=s.cusum.k, h=s.cusum.h, warning_fraction=s.cusum.warning_fraction),
            ewma=EwmaDetector(lambda_=s.ewma.lambda_, L=s.ewma.L, warning_fraction=s.ewma.warning_fraction),
            history=deque(maxlen=s.history_size),
        )

    def _state(self, key: str) -> ParameterDriftState:
        if key not in self._states:
            self._states[key] = self._new_state()
        return self._states[key]

    @property
    def parameters(self) -> List[str]:
        return list(self._states)

    def assess(self, key: str, value: float, limits: ParameterLimits) -> DriftAssessment:
        """
        Feed one value for a parameter and assess drift.

        Args:
            key: Parameter key
            value: New value (must be present; absent values are skipped
                by the caller and never reach the detectors)
            limits: Limits of the parameter

        Returns:
            DriftAssessment with every detector's result
        """
        state = self._state(key)
        state.history.append(float(value))
        state.n_updates += 1

        history = np.fromiter(state.history, dtype=float, count=len(state.history))

        cusum = state.cusum.update(value, limits)
        ewma = state.ewma.update(value, limits)
        trend = self.trend_detector.analyze(history, limits)
        shift = self.shift_detector.analyze(history, limits)

        assessment = DriftAssessment(
            cusum=cusum,
            ewma=ewma,
            trend=trend,
            shift=shift,
            overall=combine_status(cusum, ewma, trend, shift),
        )
        state.last_assessment = assessment

        return assessment

    def reset(self, key: Optional[str] = None) -> bool:
        """
        Clear CUSUM and EWMA state to initial values.

        Value history is kept: it is arrival data, not detector state.

        Args:
            key: Parameter to reset, or None for all parameters

        Returns:
            False if key is given and has no state
        """
        if key is None:
            for state in self._states.values():
                state.cusum.reset()
                state.ewma.reset()
            logger.info("Reset drift detector state for all %d parameters", len(self._states))
            return True

        state = self._states.get(key)
        if state is None:
            return False

        state.cusum.reset()
        state.ewma.reset()
        logger.info("Reset drift detector state for '%s'", key)
        return True

    def discard(self, key: str):
        """Drop all state, history included, for a parameter."""
        self._states.pop(key, None)

    def history(self, key: str) -> np.ndarray:
        state = self._states.get(key)
        if state is None:
            return np.array([], dtype=float)
        return np.array(state.history, dtype=float)

    def last_assessment(self, key: str) -> Optional[DriftAssessment]:
        state = self._states.get(key)
        return state.last_assessment if state else None

    def state_snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        state = self._states.get(key)
        return state.to_dict() if state else None

    def predict_time_to_out_of_control(self, key: str, limits: ParameterLimits) -> OutOfControlPrediction:
        return predict_time_to_out_of_control(self.history(key), limits, self.trend_detector)
