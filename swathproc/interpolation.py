#!/usr/bin/env python3
"""
Time-Series Interpolator

Resamples auxiliary tables (navigation, adjusted navigation, tide,
attitude, sonar depth) onto ping timestamps. Tables are immutable after
load; a forward cursor makes lookups for monotonically increasing ping
times O(1) amortized.
"""

from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import CubicSpline

from .config import InterpMode


# Columns interpolated on the circle and the range results are wrapped into
ANGULAR_COLUMNS = {
    'heading': (0.0, 360.0),
    'lon': (-180.0, 180.0),
}


def wrap_angle(value: float, lower: float) -> float:
    return (value - lower) % 360.0 + lower


class TimeSeries:
    """
    Strictly time-ordered table of named value columns.

    Args:
        name: Label used in diagnostics
        times: Sample times in seconds, strictly increasing
        values: Array of shape (n, len(columns))
        columns: Column names

    Raises:
        ValueError: if the table is empty or times do not increase
    """

    def __init__(self, name: str, times: Sequence[float], values: np.ndarray,
                 columns: Sequence[str]):
        self.name = name
        self.times = np.asarray(times, dtype=float)
        self.columns = tuple(columns)
        values = np.asarray(values, dtype=float).reshape(len(self.times), len(self.columns))

        if len(self.times) == 0:
            raise ValueError(f"{name}: empty time series")
        if np.any(np.diff(self.times) <= 0.0):
            raise ValueError(f"{name}: sample times must increase strictly")

        # unwrap angular columns so interpolation never crosses the cut
        self.values = values.copy()
        for i, column in enumerate(self.columns):
            if column in ANGULAR_COLUMNS:
                self.values[:, i] = np.degrees(np.unwrap(np.radians(values[:, i])))

        # second-derivative coefficients computed once per table
        self._spline: Optional[CubicSpline] = None
        if len(self.times) >= 2:
            self._spline = CubicSpline(self.times, self.values, axis=0, bc_type='natural')

        self._cursor = 1

    def __len__(self) -> int:
        return len(self.times)

    @property
    def start_time(self) -> float:
        return float(self.times[0])

    @property
    def end_time(self) -> float:
        return float(self.times[-1])

    def column(self, name: str) -> np.ndarray:
        """Raw (unwrapped) values of one column."""
        return self.values[:, self.columns.index(name)]

    def bracket(self, t: float, hint: Optional[int] = None) -> int:
        """
        Index i with times[i-1] <= t <= times[i], clamped to [1, n-1].

        The search starts from ``hint`` (or the internal cursor) and only
        walks forward, so sequential calls with non-decreasing times never
        return a smaller index. A time earlier than the hint falls back to
        a binary search.
        """
        n = len(self.times)
        if n < 2:
            return 0
        i = self._cursor if hint is None else max(1, min(hint, n - 1))
        if t < self.times[i - 1]:
            i = max(1, min(int(np.searchsorted(self.times, t, side='left')), n - 1))
        while i < n - 1 and self.times[i] < t:
            i += 1
        self._cursor = i
        return i

    def interpolate(self, t: float, mode: InterpMode = InterpMode.LINEAR,
                    hint: Optional[int] = None) -> Tuple[Dict[str, float], int]:
        """
        Evaluate every column at time t.

        Linear interpolation clamps to the end samples outside the table.
        The natural cubic spline is only used strictly inside the time
        span; anywhere else the linear result is returned.

        Returns:
            (column name -> value, bracketing index)
        """
        i = self.bracket(t, hint)
        if len(self.times) == 1:
            row = self.values[0]
        elif mode == InterpMode.SPLINE and self.times[0] < t < self.times[-1]:
            row = self._spline(t)
        elif t <= self.times[0]:
            row = self.values[0]
        elif t >= self.times[-1]:
            row = self.values[-1]
        else:
            t0, t1 = self.times[i - 1], self.times[i]
            w = (t - t0) / (t1 - t0)
            row = self.values[i - 1] + w * (self.values[i] - self.values[i - 1])

        result = {}
        for column, value in zip(self.columns, row):
            value = float(value)
            if column in ANGULAR_COLUMNS:
                value = wrap_angle(value, ANGULAR_COLUMNS[column][0])
            result[column] = value
        return result, i
