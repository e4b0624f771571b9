"""
Statistical Process Control (SPC) Module
=========================================
Control-chart classification of individual readings and process
capability analysis for monitored process parameters.

Key Features:
- Shewhart classification against control and specification limits
- Control-chart zones (C/B/A bands around the target)
- Western Electric rules for non-random patterns
- I-MR control limit estimation from data
- Process capability indices (Cp, Cpk, Ppk, Cpm)

All limit-based calculations take sigma from the configured control band
(UCL - LCL = 6σ), not from the data, so a reading is judged against the
process the limits describe.
"""

import numpy as np
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from enum import Enum

from .limits import ParameterLimits


class ProcessStatus(Enum):
    """Health of a single classified reading."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class ViolationType(Enum):
    """Western Electric rule violations."""
    BEYOND_3SIGMA = "Point beyond 3σ"
    ZONE_A_2OF3 = "2 of 3 consecutive in Zone A"
    ZONE_B_4OF5 = "4 of 5 consecutive in Zone B"
    RUN_OF_8 = "8 consecutive on same side"
    TREND_6 = "6 consecutive increasing/decreasing"


class CapabilityRating(Enum):
    """Capability bands on Cpk."""
    EXCELLENT = "excellent"
    GOOD = "good"
    MARGINAL = "marginal"
    POOR = "poor"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class ClassificationResult:
    """Result of classifying one value against its limits."""
    value: float
    target: float
    deviation: float
    deviation_percent: Optional[float]
    out_of_control: bool
    out_of_spec: bool
    status: ProcessStatus
    zone: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'value': self.value,
            'target': self.target,
            'deviation': self.deviation,
            'deviation_percent': self.deviation_percent,
            'out_of_control': self.out_of_control,
            'out_of_spec': self.out_of_spec,
            'status': self.status.value,
            'zone': self.zone,
        }


@dataclass
class EstimatedLimits:
    """Control limits estimated from data with an individuals chart."""
    center_line: float
    ucl: float
    lcl: float
    sigma: float
    n_points: int

    def to_dict(self) -> Dict[str, float]:
        return {
            'center_line': self.center_line,
            'ucl': self.ucl,
            'lcl': self.lcl,
            'sigma': self.sigma,
            'n_points': self.n_points,
        }


@dataclass
class CapabilitySummary:
    """
    Process capability over a sample of readings.

    Every statistic is None when it is undefined for the sample (fewer than
    2 values, or zero spread for the indices).
    """
    sample_size: int
    mean: Optional[float] = None
    std_dev: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    range: Optional[float] = None

    cp: Optional[float] = None          # (USL - LSL) / 6s
    cp_upper: Optional[float] = None    # (USL - μ) / 3s
    cp_lower: Optional[float] = None    # (μ - LSL) / 3s
    cpk: Optional[float] = None         # min(Cpu, Cpl)
    ppk: Optional[float] = None         # Overall-sigma performance index
    cpm: Optional[float] = None         # Taguchi capability index
    sigma_level: Optional[float] = None

    out_of_control_percent: Optional[float] = None
    out_of_spec_percent: Optional[float] = None
    rating: CapabilityRating = CapabilityRating.INSUFFICIENT_DATA

    @property
    def available(self) -> bool:
        return self.cpk is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sample_size': self.sample_size,
            'mean': self.mean,
            'std_dev': self.std_dev,
            'min': self.min,
            'max': self.max,
            'range': self.range,
            'Cp': self.cp,
            'Cpu': self.cp_upper,
            'Cpl': self.cp_lower,
            'Cpk': self.cpk,
            'Ppk': self.ppk,
            'Cpm': self.cpm,
            'sigma_level': self.sigma_level,
            'out_of_control_percent': self.out_of_control_percent,
            'out_of_spec_percent': self.out_of_spec_percent,
            'rating': self.rating.value,
        }


# =============================================================================
# CONTROL CHART CLASSIFICATION
# =============================================================================

def get_zone(value: float, limits: ParameterLimits) -> str:
    """
    Control-chart zone of a value.

    Zones are measured from the target in thirds of the control band on the
    value's side: C (within 1σ), B (1σ-2σ), A (2σ-3σ), OUT (beyond the
    control limit). A '+' or '-' suffix gives the side of the target.
    """
    if value >= limits.target:
        band = (limits.ucl - limits.target) / 3
        deviation = value - limits.target
        side = '+'
    else:
        band = (limits.target - limits.lcl) / 3
        deviation = limits.target - value
        side = '-'

    if deviation <= band:
        zone = 'C'
    elif deviation <= 2 * band:
        zone = 'B'
    elif deviation <= 3 * band:
        zone = 'A'
    else:
        zone = 'OUT'

    return zone + side


def classify_reading(value: float, limits: ParameterLimits) -> ClassificationResult:
    """
    Classify one value against control and specification limits.

    Args:
        value: Measured value
        limits: Limits of the parameter

    Returns:
        ClassificationResult. Status is CRITICAL when out of spec, WARNING
        when out of control but in spec, NORMAL otherwise.
    """
    value = float(value)
    deviation = value - limits.target

    out_of_control = value > limits.ucl or value < limits.lcl
    out_of_spec = value > limits.usl or value < limits.lsl

    if out_of_spec:
        status = ProcessStatus.CRITICAL
    elif out_of_control:
        status = ProcessStatus.WARNING
    else:
        status = ProcessStatus.NORMAL

    deviation_percent = None
    if limits.target != 0:
        deviation_percent = deviation / limits.target * 100

    return ClassificationResult(
        value=value,
        target=limits.target,
        deviation=deviation,
        deviation_percent=deviation_percent,
        out_of_control=out_of_control,
        out_of_spec=out_of_spec,
        status=status,
        zone=get_zone(value, limits),
    )


# =============================================================================
# WESTERN ELECTRIC RULES
# =============================================================================

def violations_at(
    values: np.ndarray,
    limits: ParameterLimits,
    i: int,
) -> List[ViolationType]:
    """Western Electric violations of the point at index i."""
    cl = limits.target
    sigma = limits.sigma
    val = values[i]
    point_violations = []

    # Rule 1: Beyond 3σ
    if val > limits.ucl or val < limits.lcl:
        point_violations.append(ViolationType.BEYOND_3SIGMA)

    # Rule 2: 2 of 3 in Zone A (same side)
    if i >= 2:
        recent = values[i-2:i+1]
        above_2sigma = sum(1 for v in recent if v > cl + 2*sigma)
        below_2sigma = sum(1 for v in recent if v < cl - 2*sigma)
        if above_2sigma >= 2 or below_2sigma >= 2:
            point_violations.append(ViolationType.ZONE_A_2OF3)

    # Rule 3: 4 of 5 beyond 1σ (same side)
    if i >= 4:
        recent = values[i-4:i+1]
        above_1sigma = sum(1 for v in recent if v > cl + sigma)
        below_1sigma = sum(1 for v in recent if v < cl - sigma)
        if above_1sigma >= 4 or below_1sigma >= 4:
            point_violations.append(ViolationType.ZONE_B_4OF5)

    # Rule 4: 8 consecutive on same side
    if i >= 7:
        recent = values[i-7:i+1]
        if all(v > cl for v in recent) or all(v < cl for v in recent):
            point_violations.append(ViolationType.RUN_OF_8)

    # Rule 5: 6 consecutive increasing or decreasing
    if i >= 5:
        diffs = np.diff(values[i-5:i+1])
        if all(d > 0 for d in diffs) or all(d < 0 for d in diffs):
            point_violations.append(ViolationType.TREND_6)

    return point_violations


def check_western_electric_rules(
    values: np.ndarray,
    limits: ParameterLimits,
) -> List[List[ViolationType]]:
    """
    Apply Western Electric rules to a series of values.

    Args:
        values: Measurements in arrival order
        limits: Limits of the parameter (center line = target)

    Returns:
        List of violation lists, one per point
    """
    values = np.asarray(values, dtype=float)
    return [violations_at(values, limits, i) for i in range(len(values))]


def estimate_control_limits(values: np.ndarray, min_points: int = 10) -> Optional[EstimatedLimits]:
    """
    Estimate individuals-chart control limits from data.

    Sigma is estimated from the average moving range (MR-bar / d2 with
    d2 = 1.128 for ranges of 2 consecutive points).

    Returns:
        EstimatedLimits, or None with fewer than min_points values
    """
    values = np.asarray(values, dtype=float)
    n = len(values)

    if n < max(min_points, 2):
        return None

    mr_bar = np.mean(np.abs(np.diff(values)))
    sigma = mr_bar / 1.128
    mean = float(np.mean(values))

    return EstimatedLimits(
        center_line=mean,
        ucl=mean + 3 * sigma,
        lcl=mean - 3 * sigma,
        sigma=float(sigma),
        n_points=n,
    )


# =============================================================================
# PROCESS CAPABILITY
# =============================================================================

def rate_capability(cpk: Optional[float]) -> CapabilityRating:
    """Map Cpk to a capability band."""
    if cpk is None:
        return CapabilityRating.INSUFFICIENT_DATA
    if cpk >= 1.33:
        return CapabilityRating.EXCELLENT
    if cpk >= 1.0:
        return CapabilityRating.GOOD
    if cpk >= 0.67:
        return CapabilityRating.MARGINAL
    return CapabilityRating.POOR


def calculate_capability(
    values: np.ndarray,
    limits: ParameterLimits,
) -> CapabilitySummary:
    """
    Calculate process capability indices for a sample.

    Args:
        values: Sample of measurements
        limits: Limits of the parameter (spec limits drive the indices)

    Returns:
        CapabilitySummary. With fewer than 2 values every statistic is None;
        with zero spread the indices are None rather than infinite.
    """
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    n = len(values)

    if n < 2:
        return CapabilitySummary(sample_size=n)

    mean = float(np.mean(values))
    # Identical values can leave a rounding-level std; treat them as zero spread
    s = 0.0 if np.ptp(values) == 0 else float(np.std(values, ddof=1))

    out_of_control = int(np.sum((values > limits.ucl) | (values < limits.lcl)))
    out_of_spec = int(np.sum((values > limits.usl) | (values < limits.lsl)))

    summary = CapabilitySummary(
        sample_size=n,
        mean=mean,
        std_dev=s,
        min=float(np.min(values)),
        max=float(np.max(values)),
        range=float(np.max(values) - np.min(values)),
        out_of_control_percent=out_of_control / n * 100,
        out_of_spec_percent=out_of_spec / n * 100,
    )

    if s > 0:
        summary.cp = (limits.usl - limits.lsl) / (6 * s)
        summary.cp_upper = (limits.usl - mean) / (3 * s)
        summary.cp_lower = (mean - limits.lsl) / (3 * s)
        summary.cpk = min(summary.cp_upper, summary.cp_lower)
        # The retained window is the whole observed process, so the
        # performance index uses the same overall sigma
        summary.ppk = summary.cpk
        summary.sigma_level = 3 * summary.cpk

    # Cpm (Taguchi) - incorporates deviation from target
    tau = np.sqrt(s**2 + (mean - limits.target)**2)
    if s > 0 and tau > 0:
        summary.cpm = float((limits.usl - limits.lsl) / (6 * tau))

    summary.rating = rate_capability(summary.cpk)

    return summary


def format_capability_summary(
    parameter_name: str,
    summary: CapabilitySummary,
    limits: Optional[ParameterLimits] = None,
) -> str:
    """Format a capability summary as markdown."""
    lines = [
        f"## Process Capability: {parameter_name}",
        "",
        f"**Sample Size:** {summary.sample_size}",
    ]

    if limits is not None:
        lines.extend([
            "",
            "### Limits",
            f"- Target: {limits.target:.4f} {limits.unit}".rstrip(),
            f"- Control: {limits.lcl:.4f} to {limits.ucl:.4f}",
            f"- Spec: {limits.lsl:.4f} to {limits.usl:.4f}",
        ])

    if summary.mean is None:
        lines.extend(["", "Insufficient data for capability analysis"])
        return "\n".join(lines)

    lines.extend([
        "",
        "### Statistics",
        f"- Mean: {summary.mean:.4f}",
        f"- Std Dev: {summary.std_dev:.4f}",
        f"- Out of Control: {summary.out_of_control_percent:.1f}%",
        f"- Out of Spec: {summary.out_of_spec_percent:.1f}%",
        "",
        "### Capability",
    ])

    if summary.cpk is None:
        lines.append("Capability undefined (no variation in sample)")
    else:
        lines.extend([
            f"- Cp: {summary.cp:.2f}",
            f"- Cpk: {summary.cpk:.2f} ({summary.rating.value})",
            f"- Ppk: {summary.ppk:.2f}",
        ])
        if summary.cpm is not None:
            lines.append(f"- Cpm: {summary.cpm:.2f}")

    return "\n".join(lines)
