"""
Process Capability Page
=======================
Capability indices over the retained sample window, per parameter.
"""

import streamlit as st

from process_monitor.spc import (
    CapabilityRating,
    estimate_control_limits,
    format_capability_summary,
)
from pages._shared_state import get_monitor, plot_capability_histogram

st.set_page_config(page_title="Capability", page_icon="📊", layout="wide")

st.title("Process Capability")
st.markdown("Cp, Cpk and Ppk over the most recent readings of each parameter.")

monitor = get_monitor()

RATING_COLORS = {
    CapabilityRating.EXCELLENT: "green",
    CapabilityRating.GOOD: "blue",
    CapabilityRating.MARGINAL: "orange",
    CapabilityRating.POOR: "red",
    CapabilityRating.INSUFFICIENT_DATA: "gray",
}

table = monitor.get_capability_table()
if table.empty:
    st.info("No parameters configured.")
    st.stop()

st.dataframe(
    table[['parameter', 'name', 'sample_size', 'mean', 'std_dev', 'Cp', 'Cpk', 'Ppk', 'Cpm', 'rating']],
    use_container_width=True,
    hide_index=True,
)

st.divider()

parameters = monitor.parameters
key = st.selectbox("Parameter", list(parameters), format_func=lambda k: parameters[k].name or k)
limits = parameters[key]

window = st.slider("Sample window (readings)", 10, monitor.settings.reading_buffer_size,
                   monitor.settings.capability_window)
summary = monitor.get_capability_summary(key, window)
values = monitor.parameter_values(key, window)

col1, col2, col3, col4 = st.columns(4)
with col1:
    st.markdown(f"### :{RATING_COLORS[summary.rating]}[{summary.rating.value.replace('_', ' ').title()}]")
with col2:
    st.metric("Cpk", f"{summary.cpk:.2f}" if summary.cpk is not None else "N/A")
with col3:
    st.metric("Cp", f"{summary.cp:.2f}" if summary.cp is not None else "N/A")
with col4:
    st.metric("Samples", summary.sample_size)

if len(values):
    st.plotly_chart(plot_capability_histogram(values, limits), use_container_width=True)

estimated = estimate_control_limits(values)
if estimated is not None:
    st.caption(
        f"Limits estimated from data (I-MR): CL {estimated.center_line:.4f}, "
        f"UCL {estimated.ucl:.4f}, LCL {estimated.lcl:.4f} | configured UCL {limits.ucl:g}, LCL {limits.lcl:g}"
    )

with st.expander("Capability report (markdown)"):
    st.markdown(format_capability_summary(limits.name or key, summary, limits))
