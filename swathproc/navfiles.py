#!/usr/bin/env python3
"""
Auxiliary Time-Series Files

Readers for the flat-text navigation, adjusted navigation, tide, attitude
and sonar depth files merged into pings during reprocessing, plus the
per-beam static correction table.

Every reader drops malformed lines and samples that do not advance in
time with a diagnostic; neither is fatal.
"""

import math
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import NavAdjMode
from .interpolation import TimeSeries


logger = logging.getLogger(__name__)

NAV_COLUMNS = ('lon', 'lat', 'heading', 'speed', 'draft', 'roll', 'pitch', 'heave')
NAVADJ_COLUMNS = ('lon', 'lat', 'z')
REQUIRED_NAV_COLUMNS = ('lon', 'lat')

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def fix_y2k(year: int) -> int:
    """Expand a two digit year: 62-99 -> 19xx, 00-61 -> 20xx."""
    if year < 62:
        return year + 2000
    if year < 100:
        return year + 1900
    return year


def calendar_to_epoch(year: int, month: int, day: int, hour: int = 0,
                      minute: int = 0, second: float = 0.0) -> float:
    """Seconds since 1970-01-01 UTC for a calendar date and time."""
    dt = datetime(fix_y2k(year), month, day, tzinfo=timezone.utc)
    return (dt - EPOCH).total_seconds() + hour * 3600.0 + minute * 60.0 + second


def julian_to_epoch(year: int, jday: int, hour: int = 0, minute: int = 0,
                    second: float = 0.0) -> float:
    """Seconds since 1970-01-01 UTC for a year / day-of-year time."""
    dt = datetime(fix_y2k(year), 1, 1, tzinfo=timezone.utc) + timedelta(days=jday - 1)
    return (dt - EPOCH).total_seconds() + hour * 3600.0 + minute * 60.0 + second


# ---------------------------------------------------------------------------
# Shared loading loop
# ---------------------------------------------------------------------------

class _SampleCollector:
    """Gathers (time, row) samples and enforces strictly increasing time."""

    def __init__(self, path: str, columns: Sequence[str]):
        self.path = path
        self.columns = tuple(columns)
        self.times: List[float] = []
        self.rows: List[List[float]] = []
        self.malformed = 0
        self.out_of_order = 0

    def add(self, t: float, row: Dict[str, float]):
        if self.times and t <= self.times[-1]:
            self.out_of_order += 1
            logger.debug(f"{self.path}: sample at {t:.3f} does not follow {self.times[-1]:.3f}, dropped")
            return
        self.times.append(t)
        self.rows.append([row.get(c, math.nan) for c in self.columns])

    def bad_line(self, lineno: int, line: str):
        self.malformed += 1
        logger.debug(f"{self.path}:{lineno}: unparseable line skipped: {line[:60]!r}")

    def build(self, name: str, required: Sequence[str] = ()) -> TimeSeries:
        if self.malformed:
            logger.warning(f"{self.path}: {self.malformed} malformed lines skipped")
        if self.out_of_order:
            logger.warning(f"{self.path}: {self.out_of_order} samples out of time order dropped")
        if not self.times:
            raise ValueError(f"{self.path}: no usable {name} samples")

        values = np.asarray(self.rows, dtype=float)
        # keep only columns present on every sample
        keep = [i for i, c in enumerate(self.columns)
                if c in required or not np.any(np.isnan(values[:, i]))]
        missing = [c for c in required if np.any(np.isnan(values[:, self.columns.index(c)]))]
        if missing:
            raise ValueError(f"{self.path}: samples missing required {', '.join(missing)}")

        dropped = [c for i, c in enumerate(self.columns)
                   if i not in keep and not np.all(np.isnan(values[:, i]))]
        if dropped:
            logger.warning(f"{self.path}: {', '.join(dropped)} missing on some lines, "
                           f"column(s) not used")

        series = TimeSeries(name, self.times, values[:, keep], [self.columns[i] for i in keep])
        logger.info(f"Loaded {len(series)} {name} samples from {self.path} "
                    f"({series.start_time:.3f} - {series.end_time:.3f})")
        return series


def _read_lines(path: str, collector: _SampleCollector,
                parse: Callable[[str], Optional[Tuple[float, Dict[str, float]]]]):
    with open(path, 'r', errors='replace') as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.rstrip('\r\n')
            if not line.strip() or line.lstrip().startswith('#'):
                continue
            try:
                sample = parse(line)
            except (ValueError, IndexError):
                sample = None
            if sample is None:
                collector.bad_line(lineno, line)
                continue
            collector.add(*sample)


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

def _nav_time_and_position(fields: List[str], fmt: int) -> Tuple[float, int]:
    """Return (time, index of the longitude field) for whitespace formats."""
    if fmt == 1:
        return float(fields[0]), 1
    if fmt == 2:
        return calendar_to_epoch(int(fields[0]), int(fields[1]), int(fields[2]),
                                 int(fields[3]), int(fields[4]), float(fields[5])), 6
    if fmt == 3:
        return julian_to_epoch(int(fields[0]), int(fields[1]), int(fields[2]),
                               int(fields[3]), float(fields[4])), 5
    if fmt == 4:
        daymin = float(fields[2])
        return julian_to_epoch(int(fields[0]), int(fields[1]),
                               second=daymin * 60.0 + float(fields[3])), 4
    if fmt == 9:
        return float(fields[6]), 7
    raise ValueError(f"Unsupported navigation format {fmt}")


def parse_simrad90(line: str) -> Tuple[float, Dict[str, float]]:
    """Fixed-column legacy navigation record (ddmmyy hhmmsscc lat lon)."""
    t = calendar_to_epoch(int(line[6:8]), int(line[4:6]), int(line[2:4]),
                          int(line[9:11]), int(line[11:13]),
                          int(line[13:15]) + 0.01 * int(line[15:17]))
    lat = float(line[18:20]) + float(line[20:27]) / 60.0
    if line[27] in 'Ss':
        lat = -lat
    lon = float(line[29:32]) + float(line[32:39]) / 60.0
    if line[39] in 'Ww':
        lon = -lon
    return t, {'lon': lon, 'lat': lat}


def _parse_nmea_coordinate(value: str, hemisphere: str, degree_digits: int) -> float:
    degrees = float(value[:degree_digits])
    minutes = float(value[degree_digits:])
    coordinate = degrees + minutes / 60.0
    if hemisphere in ('S', 'W'):
        coordinate = -coordinate
    return coordinate


def _load_nmea(path: str, fmt: int, collector: _SampleCollector, timeshift: float):
    """GLL (format 6) or GGA (format 7) fixes, each timed by the last ZDA."""
    wanted = 'GLL' if fmt == 6 else 'GGA'
    day_start: Optional[float] = None
    with open(path, 'r', errors='replace') as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line.startswith('$') or len(line) < 6:
                continue
            parts = line.split('*')[0].split(',')
            sentence = parts[0][3:6]
            try:
                if sentence == 'ZDA':
                    # $xxZDA,hhmmss.ss,dd,mm,yyyy,...
                    day_start = calendar_to_epoch(int(parts[4]), int(parts[3]), int(parts[2]))
                elif sentence == wanted and day_start is not None:
                    if wanted == 'GLL':
                        lat_str, lat_dir, lon_str, lon_dir, clock = parts[1:6]
                    else:
                        clock, lat_str, lat_dir, lon_str, lon_dir = parts[1:6]
                    t = (day_start + int(clock[0:2]) * 3600.0 + int(clock[2:4]) * 60.0
                         + float(clock[4:]))
                    lat = _parse_nmea_coordinate(lat_str, lat_dir, 2)
                    lon = _parse_nmea_coordinate(lon_str, lon_dir, 3)
                    collector.add(t + timeshift, {'lon': lon, 'lat': lat})
            except (ValueError, IndexError):
                collector.bad_line(lineno, line)


def load_navigation(path: str, fmt: int = 9, timeshift: float = 0.0) -> TimeSeries:
    """
    Load a navigation file.

    Args:
        path: Navigation file
        fmt: Column layout (1-4, 6-9)
        timeshift: Seconds added to every sample time

    Returns:
        TimeSeries with lon/lat and, for format 9, whichever of heading,
        speed, draft, roll, pitch and heave every line provides
    """
    collector = _SampleCollector(path, NAV_COLUMNS)

    if fmt in (6, 7):
        _load_nmea(path, fmt, collector, timeshift)
    else:
        def parse(line: str):
            if fmt == 8:
                t, row = parse_simrad90(line)
                return t + timeshift, row
            fields = line.replace(',', ' ').split()
            t, ilon = _nav_time_and_position(fields, fmt)
            row = {'lon': float(fields[ilon]), 'lat': float(fields[ilon + 1])}
            for offset, column in enumerate(NAV_COLUMNS[2:], start=2):
                if fmt == 9 and ilon + offset < len(fields):
                    row[column] = float(fields[ilon + offset])
            return t + timeshift, row

        _read_lines(path, collector, parse)

    return collector.build('navigation', required=REQUIRED_NAV_COLUMNS)


def load_navadj(path: str, mode: NavAdjMode) -> TimeSeries:
    """
    Load adjusted navigation.

    Lines hold ``yr mon day hr min sec time lon lat heading speed draft roll
    pitch heave [z]``. Longitude/latitude mode needs at least 9 fields; the
    depth mode needs the 16th ``z`` field on every line.
    """
    collector = _SampleCollector(path, NAVADJ_COLUMNS)
    min_fields = 16 if mode == NavAdjMode.LLZ else 9

    def parse(line: str):
        fields = line.split()
        if len(fields) < min_fields:
            return None
        row = {'lon': float(fields[7]), 'lat': float(fields[8])}
        if mode == NavAdjMode.LLZ:
            row['z'] = float(fields[15])
        return float(fields[6]), row

    _read_lines(path, collector, parse)
    required = NAVADJ_COLUMNS if mode == NavAdjMode.LLZ else REQUIRED_NAV_COLUMNS
    return collector.build('adjusted navigation', required=required)


# number of leading time fields for the table formats 1-4
_TIME_FIELDS = {1: 1, 2: 6, 3: 5, 4: 4}


def _table_time(fields, fmt: int, kind: str) -> float:
    """Decode the leading time columns of a table line in format 1-4."""
    if fmt == 1:
        return float(fields[0])
    if fmt == 2:
        return calendar_to_epoch(int(fields[0]), int(fields[1]), int(fields[2]),
                                 int(fields[3]), int(fields[4]), float(fields[5]))
    if fmt == 3:
        return julian_to_epoch(int(fields[0]), int(fields[1]), int(fields[2]),
                               int(fields[3]), float(fields[4]))
    if fmt == 4:
        return julian_to_epoch(int(fields[0]), int(fields[1]),
                               second=float(fields[2]) * 60.0 + float(fields[3]))
    raise ValueError(f"Unsupported {kind} format {fmt}")


def load_tide(path: str, fmt: int = 1) -> TimeSeries:
    """Load a tide table (formats 1-4, tide value in meters last)."""
    if fmt not in _TIME_FIELDS:
        raise ValueError(f"Unsupported tide format {fmt}")
    collector = _SampleCollector(path, ('tide',))

    def parse(line: str):
        fields = line.replace(',', ' ').split()
        return _table_time(fields, fmt, 'tide'), {'tide': float(fields[_TIME_FIELDS[fmt]])}

    _read_lines(path, collector, parse)
    return collector.build('tide', required=('tide',))


def load_attitude(path: str, fmt: int = 1) -> TimeSeries:
    """Load attitude samples: time columns (formats 1-4), then roll pitch heave."""
    if fmt not in _TIME_FIELDS:
        raise ValueError(f"Unsupported attitude format {fmt}")
    collector = _SampleCollector(path, ('roll', 'pitch', 'heave'))

    def parse(line: str):
        fields = line.replace(',', ' ').split()
        i = _TIME_FIELDS[fmt]
        return _table_time(fields, fmt, 'attitude'), {'roll': float(fields[i]),
                                                      'pitch': float(fields[i + 1]),
                                                      'heave': float(fields[i + 2])}

    _read_lines(path, collector, parse)
    return collector.build('attitude', required=('roll', 'pitch', 'heave'))


def load_sonardepth(path: str, fmt: int = 1) -> TimeSeries:
    """Load sonar depth samples: time columns (formats 1-4), then depth."""
    if fmt not in _TIME_FIELDS:
        raise ValueError(f"Unsupported sonar depth format {fmt}")
    collector = _SampleCollector(path, ('depth',))

    def parse(line: str):
        fields = line.replace(',', ' ').split()
        return _table_time(fields, fmt, 'sonar depth'), {'depth': float(fields[_TIME_FIELDS[fmt]])}

    _read_lines(path, collector, parse)
    return collector.build('sonar depth', required=('depth',))


def load_static(path: str) -> Dict[int, float]:
    """Load ``beam offset`` per-beam static depth corrections."""
    offsets: Dict[int, float] = {}
    with open(path, 'r') as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            fields = line.split()
            try:
                offsets[int(fields[0])] = float(fields[1])
            except (ValueError, IndexError):
                logger.warning(f"{path}:{lineno}: unparseable static correction skipped")
    logger.info(f"Loaded {len(offsets)} static beam corrections from {path}")
    return offsets
