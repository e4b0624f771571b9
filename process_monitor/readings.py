"""
Readings and Reading Buffer
===========================
A Reading is one multi-parameter sample from a monitoring line. Readings
are immutable and retained in a fixed-capacity FIFO ring buffer; the
oldest reading is evicted first when the buffer is full.

Readings are kept in arrival order. Timestamps are carried for display and
export only: out-of-order timestamps are tolerated and never reorder the
buffer.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Iterator, Mapping, Union

import numpy as np
import pandas as pd


def to_timestamp(value: Union[datetime, pd.Timestamp, int, float, str, None]) -> datetime:
    """
    Normalize a timestamp to a timezone-aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), pandas Timestamps,
    epoch milliseconds and ISO-8601 strings. None means "now".
    """
    if value is None:
        return datetime.now(timezone.utc)

    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        ts = pd.Timestamp(int(value), unit='ms', tz='UTC')
    else:
        ts = pd.Timestamp(value)
        if ts.tzinfo is None:
            ts = ts.tz_localize('UTC')
        else:
            ts = ts.tz_convert('UTC')

    return ts.to_pydatetime()


def is_missing(value: Any) -> bool:
    """True if a parameter value is absent or unusable (None, NaN or infinite)."""
    if value is None:
        return True
    try:
        return not math.isfinite(float(value))
    except (TypeError, ValueError):
        return True


@dataclass(frozen=True)
class Reading:
    """
    One sample of process parameters from a monitoring line.

    Attributes:
        timestamp: Sample time (timezone-aware)
        line: Monitoring line identifier (e.g. 'Line A')
        values: Parameter key -> measured value. Keys may be missing.
        reading_id: Optional source identifier
    """
    timestamp: datetime
    line: str
    values: Mapping[str, float] = field(default_factory=dict)
    reading_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'timestamp', to_timestamp(self.timestamp))
        object.__setattr__(self, 'values', dict(self.values))

    def get(self, key: str) -> Optional[float]:
        """Value for a parameter, or None if absent or non-finite."""
        value = self.values.get(key)
        if is_missing(value):
            return None
        return float(value)

    @property
    def epoch_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reading_id': self.reading_id,
            'timestamp': self.timestamp.isoformat(),
            'line': self.line,
            'values': dict(self.values),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reading':
        """
        Build a Reading from a transport dict.

        Parameter values may be given under 'values' or 'parameters'.
        """
        values = data.get('values')
        if values is None:
            values = data.get('parameters', {})

        return cls(
            timestamp=to_timestamp(data.get('timestamp')),
            line=str(data.get('line', '')),
            values=values,
            reading_id=data.get('reading_id', data.get('id')),
        )


class ReadingBuffer:
    """
    Fixed-capacity FIFO ring buffer of readings.

    Appending to a full buffer evicts the oldest reading in O(1).
    """

    def __init__(self, capacity: int = 500):
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")
        self._readings = deque(maxlen=capacity)
        self.total_appended = 0

    @property
    def capacity(self) -> int:
        return self._readings.maxlen

    def append(self, reading: Reading) -> Optional[Reading]:
        """Append a reading; return the evicted reading, if any."""
        evicted = None
        if len(self._readings) == self._readings.maxlen:
            evicted = self._readings[0]
        self._readings.append(reading)
        self.total_appended += 1
        return evicted

    def latest(self, count: Optional[int] = None) -> List[Reading]:
        """Most recent readings in arrival order (oldest first)."""
        readings = list(self._readings)
        if count is None:
            return readings
        if count <= 0:
            return []
        return readings[-count:]

    def values(self, key: str, count: Optional[int] = None) -> np.ndarray:
        """
        Last `count` present values of one parameter, oldest first.

        Readings where the parameter is absent are skipped, so the result
        may come from more than `count` readings.
        """
        if count is not None and count <= 0:
            return np.array([], dtype=float)

        values = []
        for reading in reversed(self._readings):
            value = reading.get(key)
            if value is None:
                continue
            values.append(value)
            if count is not None and len(values) >= count:
                break
        values.reverse()
        return np.array(values, dtype=float)

    def clear(self):
        self._readings.clear()

    def __len__(self) -> int:
        return len(self._readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(list(self._readings))


def readings_to_dataframe(readings: List[Reading]) -> pd.DataFrame:
    """
    Flatten readings into a DataFrame.

    Columns: reading_id, timestamp, line, then one column per parameter key
    (NaN where the parameter was absent).
    """
    rows = []
    for r in readings:
        row = {
            'reading_id': r.reading_id,
            'timestamp': r.timestamp,
            'line': r.line,
        }
        row.update(dict(r.values))
        rows.append(row)

    if not rows:
        return pd.DataFrame(columns=['reading_id', 'timestamp', 'line'])

    return pd.DataFrame(rows)
