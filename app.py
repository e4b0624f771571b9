"""
Process Drift Monitor
=====================
Live statistical process monitoring dashboard.

Main entry point for the Streamlit application:
    streamlit run app.py
"""

import streamlit as st
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from process_monitor import __version__
from pages._shared_state import (
    get_monitor,
    advance_simulation,
    reset_session,
    drift_label,
    plot_control_chart,
)

st.set_page_config(
    page_title="Process Drift Monitor",
    page_icon="📉",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("Process Drift Monitor")
st.caption(f"Statistical process control and drift detection | v{__version__}")

monitor = get_monitor()

# =============================================================================
# SIDEBAR
# =============================================================================

with st.sidebar:
    st.header("Simulation")

    n_step = st.number_input("Readings per step", min_value=1, max_value=500, value=20)

    if st.button("Ingest readings", type="primary", use_container_width=True):
        advance_simulation(int(n_step))

    if st.button("Reset detector state", use_container_width=True):
        monitor.reset_detector_state()
        st.success("CUSUM/EWMA state cleared")

    if st.button("Restart session", use_container_width=True):
        reset_session()
        st.rerun()

    st.divider()
    st.header("Display")

    parameters = monitor.parameters
    selected = st.multiselect(
        "Parameters",
        options=list(parameters),
        default=list(parameters)[:4],
        format_func=lambda k: parameters[k].name or k,
    )
    history_points = st.slider("History (readings)", 20, 500, 100)

# =============================================================================
# SUMMARY
# =============================================================================

stats = monitor.get_statistics()

col1, col2, col3, col4 = st.columns(4)
with col1:
    st.metric("Readings", stats['total_readings'])
with col2:
    st.metric("Open alerts", stats['unacknowledged_alerts'])
with col3:
    st.metric("Critical alerts", stats['critical_alerts'])
with col4:
    pct = stats['out_of_limits_percent']
    st.metric("Out of limits (recent)", f"{pct:.1f}%" if pct is not None else "N/A")

if stats['total_readings'] == 0:
    st.info("No readings yet. Use **Ingest readings** in the sidebar to start the simulated source.")
    st.stop()

# =============================================================================
# DRIFT STATUS
# =============================================================================

st.subheader("Drift Status")

drift = monitor.get_drift_status()
cols = st.columns(4)
for i, (key, limits) in enumerate(parameters.items()):
    assessment = drift.get(key)
    with cols[i % 4]:
        st.markdown(f"**{limits.name or key}**  \n{drift_label(assessment)}")
        if assessment is not None and assessment.cusum.available:
            st.caption(
                f"CUSUM +{assessment.cusum.cusum_plus:.2f} / -{assessment.cusum.cusum_minus:.2f}"
                f" (h={assessment.cusum.threshold:g})"
            )

# =============================================================================
# CONTROL CHARTS
# =============================================================================

st.subheader("Control Charts")

for key in selected:
    limits = parameters[key]
    history = monitor.get_parameter_history(key, history_points)
    if history.empty:
        continue

    fig = plot_control_chart(history, limits, f"{limits.name or key} ({limits.unit})")
    st.plotly_chart(fig, use_container_width=True)

    prediction = monitor.predict_time_to_out_of_control(key)
    if prediction is not None and prediction.predicted:
        st.warning(
            f"{limits.name or key}: {prediction.direction} trend, "
            f"~{prediction.readings_to_ooc} readings to control limit "
            f"(R²={prediction.confidence:.2f})"
        )

st.markdown("---")
st.markdown("👈 **Use the sidebar to navigate to Alerts and Capability**")
