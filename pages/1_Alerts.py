"""
Alerts Page
===========
Review, prioritize, acknowledge and export process alerts.
"""

import tempfile
from pathlib import Path

import streamlit as st

from process_monitor.alerts import (
    AlertSeverity,
    sort_alerts_by_priority,
    get_recommended_actions,
    estimate_yield_impact,
)
from process_monitor.export import (
    alerts_to_dataframe,
    export_alerts_excel,
    export_alerts_json,
)
from pages._shared_state import get_monitor

st.set_page_config(page_title="Alerts", page_icon="🚨", layout="wide")

st.title("Alerts")

monitor = get_monitor()

SEVERITY_ICONS = {
    AlertSeverity.CRITICAL: "🔴",
    AlertSeverity.WARNING: "🟠",
    AlertSeverity.INFO: "🔵",
}

# =============================================================================
# SIDEBAR
# =============================================================================

with st.sidebar:
    st.header("Filter")
    unacknowledged_only = st.checkbox("Unacknowledged only", value=True)
    order = st.radio("Order", ["Newest first", "Priority"])
    limit = st.number_input("Max alerts", min_value=1, max_value=500, value=50)

    st.divider()
    if st.button("Acknowledge all", use_container_width=True):
        n = monitor.acknowledge_all()
        st.success(f"Acknowledged {n} alerts")

alerts = monitor.get_alerts(unacknowledged_only=unacknowledged_only, limit=int(limit))
if order == "Priority":
    alerts = sort_alerts_by_priority(alerts)

# =============================================================================
# SUMMARY
# =============================================================================

summary = monitor.alert_summary()

col1, col2, col3, col4 = st.columns(4)
with col1:
    st.metric("Retained", summary['total'])
with col2:
    st.metric("Unacknowledged", summary['unacknowledged'])
with col3:
    st.metric("Critical", summary['by_severity']['critical'])
with col4:
    st.metric("Warning", summary['by_severity']['warning'])

if not alerts:
    st.info("No alerts match the current filter.")
    st.stop()

# =============================================================================
# ALERT LIST
# =============================================================================

for alert in alerts:
    icon = SEVERITY_ICONS[alert.severity]
    header = f"{icon} {alert.type.value} | {alert.parameter_name} | {alert.line} | {alert.created_at:%H:%M:%S}"

    with st.expander(header, expanded=False):
        st.markdown(alert.message)

        col1, col2 = st.columns([2, 1])
        with col1:
            st.markdown("**Recommended actions**")
            for action in get_recommended_actions(alert):
                st.markdown(f"- {action}")
        with col2:
            impact = estimate_yield_impact(alert)
            st.metric("Est. yield loss", f"{impact['estimated_yield_loss']:.2f}%")
            st.caption(f"Priority {alert.priority}")

            if alert.acknowledged:
                st.caption(f"Acknowledged {alert.acknowledged_at:%Y-%m-%d %H:%M:%S}")
            elif st.button("Acknowledge", key=f"ack_{alert.id}"):
                monitor.acknowledge(alert.id)
                st.rerun()

# =============================================================================
# EXPORT
# =============================================================================

st.subheader("Export")

all_alerts = monitor.get_alerts()
df = alerts_to_dataframe(all_alerts)

col1, col2, col3 = st.columns(3)

with col1:
    st.download_button(
        "Download CSV",
        data=df.to_csv(index=False),
        file_name="alerts.csv",
        mime="text/csv",
    )

with tempfile.TemporaryDirectory() as tmp:
    json_path = export_alerts_json(all_alerts, Path(tmp) / "alerts.json", monitor.get_statistics())
    xlsx_path = export_alerts_excel(all_alerts, Path(tmp) / "alerts.xlsx", monitor.get_capability_table())

    with col2:
        st.download_button(
            "Download JSON",
            data=json_path.read_bytes(),
            file_name="alerts.json",
            mime="application/json",
        )
    with col3:
        st.download_button(
            "Download Excel",
            data=xlsx_path.read_bytes(),
            file_name="alerts.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
