"""
Alert and Reading Export
========================
Export monitoring results for reporting and offline analysis.

Supported Formats:
- CSV with optional metadata header
- Excel with multiple sheets (alerts, summary, capability, metadata)
- JSON with full structure
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

import pandas as pd

from .alerts import Alert, summarize_alerts
from .readings import Reading, readings_to_dataframe


ALERT_COLUMNS = [
    'id', 'created_at', 'severity', 'type', 'parameter_key', 'parameter_name',
    'line', 'value', 'limit', 'limit_type', 'message', 'priority',
    'acknowledged', 'acknowledged_at',
]


def alerts_to_dataframe(alerts: List[Alert]) -> pd.DataFrame:
    """One row per alert; details are not flattened."""
    rows = []
    for alert in alerts:
        row = alert.to_dict()
        row.pop('details', None)
        rows.append(row)
    return pd.DataFrame(rows, columns=ALERT_COLUMNS)


def _write_csv(df: pd.DataFrame, output_path: Path, metadata: Optional[Dict[str, Any]]):
    if metadata:
        with open(output_path, 'w') as f:
            f.write("# Process Drift Monitor Export\n")
            f.write(f"# Export Date: {datetime.now(timezone.utc).isoformat()}\n")
            for key, value in metadata.items():
                f.write(f"# {key}: {value}\n")
            f.write("#\n")

        df.to_csv(output_path, mode='a', index=False)
    else:
        df.to_csv(output_path, index=False)


def export_alerts_csv(
    alerts: List[Alert],
    output_path: Union[str, Path],
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Export alerts to CSV with optional metadata header.

    The header lines start with '#', so the file reads back with
    pd.read_csv(path, comment='#').

    Args:
        alerts: Alerts to export
        output_path: Output file path
        metadata: Additional metadata to include in header

    Returns:
        Path to exported file
    """
    output_path = Path(output_path)
    _write_csv(alerts_to_dataframe(alerts), output_path, metadata)
    return output_path


def export_readings_csv(
    readings: List[Reading],
    output_path: Union[str, Path],
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """Export readings to CSV, one column per parameter."""
    output_path = Path(output_path)
    _write_csv(readings_to_dataframe(readings), output_path, metadata)
    return output_path


def export_alerts_json(
    alerts: List[Alert],
    output_path: Union[str, Path],
    session_info: Optional[Dict[str, Any]] = None,
    pretty_print: bool = True,
) -> Path:
    """
    Export alerts to JSON with a summary block.

    Args:
        alerts: Alerts to export
        output_path: Output file path
        session_info: Monitoring session metadata
        pretty_print: Format JSON with indentation

    Returns:
        Path to exported file
    """
    output_path = Path(output_path)

    export_data = {
        'export_info': {
            'format_version': '1.0',
            'export_date': datetime.now(timezone.utc).isoformat(),
            'exporter': 'Process Drift Monitor',
        },
        'session': session_info or {},
        'summary': summarize_alerts(alerts),
        'alerts': [a.to_dict() for a in alerts],
    }

    indent = 2 if pretty_print else None

    with open(output_path, 'w') as f:
        json.dump(export_data, f, indent=indent, default=str)

    return output_path


def export_alerts_excel(
    alerts: List[Alert],
    output_path: Union[str, Path],
    capability: Optional[pd.DataFrame] = None,
    session_info: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Export alerts to Excel with multiple sheets.

    Sheets:
    - Alerts: One row per alert
    - Summary: Counts by severity and type
    - Capability: Capability table (if given)
    - Metadata: Session information (if given)

    Returns:
        Path to exported file
    """
    output_path = Path(output_path)

    alerts_df = alerts_to_dataframe(alerts)

    summary = summarize_alerts(alerts)
    summary_rows = [{'Group': 'total', 'Key': 'all', 'Count': summary['total']},
                    {'Group': 'total', 'Key': 'unacknowledged', 'Count': summary['unacknowledged']}]
    for group in ('by_severity', 'by_type', 'by_parameter', 'by_line'):
        for key, count in summary[group].items():
            summary_rows.append({'Group': group, 'Key': key, 'Count': count})

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        alerts_df.to_excel(writer, sheet_name='Alerts', index=False)
        pd.DataFrame(summary_rows).to_excel(writer, sheet_name='Summary', index=False)

        if capability is not None:
            capability.to_excel(writer, sheet_name='Capability', index=False)

        if session_info:
            meta_df = pd.DataFrame([
                {'Field': k, 'Value': str(v)}
                for k, v in session_info.items()
            ])
            meta_df.to_excel(writer, sheet_name='Metadata', index=False)

    return output_path
