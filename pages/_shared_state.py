"""
Shared Session State
====================
One ProcessMonitor and one simulated reading source per browser session,
plus chart helpers used by every page.
"""

import streamlit as st
import numpy as np
import pandas as pd
import plotly.graph_objects as go
from datetime import datetime, timedelta, timezone
from typing import Optional

from process_monitor import (
    ProcessMonitor,
    ProcessDataGenerator,
    MonitorSettings,
    default_parameter_limits,
)
from process_monitor.drift import DriftAssessment, DriftStatus
from process_monitor.limits import ParameterLimits


STATUS_COLORS = {
    DriftStatus.NORMAL: 'green',
    DriftStatus.WARNING: 'orange',
    DriftStatus.CRITICAL: 'red',
    DriftStatus.UNAVAILABLE: 'gray',
}


def get_monitor() -> ProcessMonitor:
    """Session monitor, configured with the default parameter table."""
    if 'monitor' not in st.session_state:
        monitor = ProcessMonitor(MonitorSettings())
        monitor.configure_many(default_parameter_limits())
        st.session_state.monitor = monitor
    return st.session_state.monitor


def get_generator() -> ProcessDataGenerator:
    if 'generator' not in st.session_state:
        st.session_state.generator = ProcessDataGenerator(seed=42)
        st.session_state.iteration = 0
        st.session_state.sim_time = datetime.now(timezone.utc)
    return st.session_state.generator


def advance_simulation(n_readings: int, interval_seconds: float = 2.0):
    """Generate n readings and ingest them into the session monitor."""
    monitor = get_monitor()
    generator = get_generator()

    for _ in range(n_readings):
        st.session_state.sim_time += timedelta(seconds=interval_seconds)
        reading = generator.generate_reading(
            monitor.parameters,
            st.session_state.sim_time,
            st.session_state.iteration,
        )
        st.session_state.iteration += 1
        monitor.ingest(reading)


def reset_session():
    for key in ('monitor', 'generator', 'iteration', 'sim_time'):
        st.session_state.pop(key, None)


def drift_label(assessment: Optional[DriftAssessment]) -> str:
    """Status text; parameters without enough data never read as healthy."""
    if assessment is None or assessment.overall == DriftStatus.UNAVAILABLE:
        return ":gray[Insufficient data]"
    color = STATUS_COLORS[assessment.overall]
    return f":{color}[{assessment.overall.value.title()}]"


def plot_control_chart(history: pd.DataFrame, limits: ParameterLimits, title: str):
    """Individual-values chart with target, control and spec limits."""
    fig = go.Figure()

    colors = np.where(
        history['out_of_spec'].astype(bool), 'red',
        np.where(history['out_of_control'].astype(bool), 'orange', 'blue'),
    )

    fig.add_trace(go.Scatter(
        x=history['timestamp'], y=history['value'],
        mode='markers+lines',
        marker=dict(color=colors, size=6),
        line=dict(color='lightblue', width=1),
        text=history['line'],
        hovertemplate='%{text}<br>Value: %{y:.4f}<extra></extra>',
        name='Data',
    ))

    fig.add_hline(y=limits.target, line_dash="solid", line_color="green",
                  annotation_text=f"Target: {limits.target:g}")
    fig.add_hline(y=limits.ucl, line_dash="dash", line_color="orange",
                  annotation_text=f"UCL: {limits.ucl:g}")
    fig.add_hline(y=limits.lcl, line_dash="dash", line_color="orange",
                  annotation_text=f"LCL: {limits.lcl:g}")
    fig.add_hline(y=limits.usl, line_dash="dashdot", line_color="red",
                  annotation_text=f"USL: {limits.usl:g}")
    fig.add_hline(y=limits.lsl, line_dash="dashdot", line_color="red",
                  annotation_text=f"LSL: {limits.lsl:g}")

    fig.update_layout(
        title=title,
        height=350,
        showlegend=False,
        margin=dict(l=20, r=20, t=50, b=20),
    )
    fig.update_yaxes(title_text=limits.unit or "Value")

    return fig


def plot_capability_histogram(values: np.ndarray, limits: ParameterLimits):
    """Distribution of recent values against spec limits and target."""
    fig = go.Figure()

    fig.add_trace(go.Histogram(
        x=values,
        nbinsx=20,
        name='Distribution',
        marker_color='lightblue',
        opacity=0.7,
    ))

    fig.add_vline(x=limits.lsl, line_dash="dash", line_color="red",
                  annotation_text=f"LSL: {limits.lsl:g}")
    fig.add_vline(x=limits.usl, line_dash="dash", line_color="red",
                  annotation_text=f"USL: {limits.usl:g}")
    fig.add_vline(x=limits.target, line_dash="solid", line_color="green",
                  annotation_text=f"Target: {limits.target:g}")

    if len(values):
        mean = float(np.mean(values))
        fig.add_vline(x=mean, line_dash="dot", line_color="blue",
                      annotation_text=f"Mean: {mean:.4f}")

    fig.update_layout(
        title="Process Capability Distribution",
        xaxis_title=limits.unit or "Value",
        yaxis_title="Frequency",
        height=400,
    )

    return fig
