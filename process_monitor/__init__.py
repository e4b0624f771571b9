"""
Process Drift Monitor - Core Module
===================================
Statistical process monitoring and drift detection for manufacturing
process parameters.

Engine Components:
- limits: Per-parameter control and specification limits
- spc: Control chart classification, Western Electric rules, capability
- drift: CUSUM, EWMA, trend and shift detectors, drift engine
- alerts: Deduplicated, bounded, acknowledgeable alert stream
- monitor: Engine-facing API (configure, ingest, acknowledge, ...)

Supporting Modules:
- config: Pydantic-validated monitor settings and config files
- readings: Readings and the bounded reading buffer
- simulation: Simulated reading source
- export: CSV, JSON and Excel export

Usage:
    from process_monitor import ProcessMonitor, Reading, default_parameter_limits
    from process_monitor.spc import classify_reading, calculate_capability
    from process_monitor.drift import DriftEngine, CusumDetector
    from process_monitor.alerts import AlertAggregator
    from process_monitor.export import export_alerts_excel
"""

# Limits and Configuration
from .limits import (
    ParameterLimits,
    ConfigurationError,
    DEFAULT_PROCESS_PARAMETERS,
    validate_parameter_limits,
    validate_limit_table,
    default_parameter_limits,
    load_parameter_limits,
)

from .config import (
    MonitorSettings,
    CusumSettings,
    EwmaSettings,
    TrendSettings,
    ShiftSettings,
    get_default_config,
    validate_monitor_config,
    load_monitor_config,
    save_monitor_config,
)

# Readings
from .readings import (
    Reading,
    ReadingBuffer,
    readings_to_dataframe,
)

# Statistical Process Control
from .spc import (
    ProcessStatus,
    ViolationType,
    CapabilityRating,
    ClassificationResult,
    CapabilitySummary,
    classify_reading,
    check_western_electric_rules,
    estimate_control_limits,
    calculate_capability,
    format_capability_summary,
)

# Drift Detection
from .drift import (
    DriftStatus,
    DriftAssessment,
    CusumDetector,
    EwmaDetector,
    TrendDetector,
    ShiftDetector,
    DriftEngine,
)

# Alerts
from .alerts import (
    Alert,
    AlertType,
    AlertSeverity,
    AlertAggregator,
    sort_alerts_by_priority,
    summarize_alerts,
    get_recommended_actions,
    estimate_yield_impact,
)

from .monitor import (
    ProcessMonitor,
    ParameterResult,
)

from .simulation import ProcessDataGenerator

__version__ = "1.0.0"
