#!/usr/bin/env python3
"""
Summary Index

Scans a finished swath file and writes a YAML summary next to it
(``<file>.inf``): record counts, beam flag counts, time span and the
bounding box of navigation and depths.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import numpy as np
import yaml

from .record_stream import RecordReader
from .records import BeamFlag, Ping, RecordKind


SUMMARY_SUFFIX = '.inf'

logger = logging.getLogger(__name__)


class _Extent:
    def __init__(self):
        self.minimum = np.inf
        self.maximum = -np.inf

    def add(self, values):
        values = np.asarray(values, dtype=float)
        if values.size:
            self.minimum = min(self.minimum, float(values.min()))
            self.maximum = max(self.maximum, float(values.max()))

    def as_dict(self) -> Dict[str, Any]:
        if self.minimum > self.maximum:
            return {'min': None, 'max': None}
        return {'min': self.minimum, 'max': self.maximum}


def _iso(t: float) -> str:
    return datetime.fromtimestamp(t, tz=timezone.utc).isoformat()


def summarize(path: str) -> Dict[str, Any]:
    """
    Collect summary statistics for a swath file.

    Args:
        path: Swath file to scan

    Returns:
        Nested dictionary ready to be dumped as YAML
    """
    records = {kind.name.lower(): 0 for kind in RecordKind}
    records['other'] = 0
    beams = {'good': 0, 'flagged': 0, 'null': 0}
    times = _Extent()
    lon, lat, depth = _Extent(), _Extent(), _Extent()

    with RecordReader(path) as reader:
        for kind, obj in reader:
            if kind in (RecordKind.PING, RecordKind.NAV) and isinstance(obj, Ping):
                records[RecordKind(kind).name.lower()] += 1
                times.add([obj.time_d])
                lon.add([obj.kinematics.lon])
                lat.add([obj.kinematics.lat])
                if obj.nbeams:
                    null = (obj.beamflag & int(BeamFlag.NULL)) != 0
                    good = obj.beamflag == int(BeamFlag.NONE)
                    beams['null'] += int(np.count_nonzero(null))
                    beams['good'] += int(np.count_nonzero(good))
                    beams['flagged'] += int(np.count_nonzero(~null & ~good))
                    depth.add(obj.bath[good])
            elif kind == RecordKind.COMMENT:
                records['comment'] += 1
            else:
                records['other'] += 1
        skipped = reader.records_skipped

    span = times.as_dict()
    summary = {
        'file': path,
        'records': records,
        'records_skipped': skipped,
        'beams': beams,
        'time': {
            'start': _iso(span['min']) if span['min'] is not None else None,
            'end': _iso(span['max']) if span['max'] is not None else None,
            'duration_s': span['max'] - span['min'] if span['min'] is not None else 0.0,
        },
        'longitude': lon.as_dict(),
        'latitude': lat.as_dict(),
        'depth': depth.as_dict(),
    }
    return summary


def write_summary(path: str) -> str:
    """Write ``<path>.inf`` for a closed swath file and return its name."""
    summary = summarize(path)
    inf_path = path + SUMMARY_SUFFIX
    with open(inf_path, 'w') as f:
        yaml.safe_dump(summary, f, default_flow_style=False, sort_keys=False)
    logger.info(f"Wrote summary {inf_path}: {summary['records']['ping']} pings, "
                f"{summary['beams']['good']} good beams")
    return inf_path
