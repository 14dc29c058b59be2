#!/usr/bin/env python3
"""
Edit Ledger

Saved manual and automatic beam edits, replayed onto pings during
reprocessing. Edits are held in time-sorted arrays and consumed with a
single forward cursor: pings arrive in time order, so the search for a
ping's edits never restarts from the beginning.

Edit save files are sequences of 16-byte big-endian records
``(time: float64, beam: int32, action: int32)``, optionally preceded by a
1024-byte text header beginning with ``ESFVERSION02`` or ``ESFVERSION03``.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Tuple

import numpy as np

from .records import FLAG_FILTER, FLAG_MANUAL, FLAG_SONAR, BeamFlag, beam_null, beam_ok


ESF_HEADER_SIZE = 1024
ESF_RECORD_SIZE = 16
ESF_DTYPE = np.dtype([('time', '>f8'), ('beam', '>i4'), ('action', '>i4')])

# timestamps at or beyond this are unset entries
ESF_TIME_LIMIT = 4.29497e9
MAX_TIME_DIFF = 0.00011
MAX_TIME_DIFF_V1 = 0.0011      # old files were written with 1 ms time resolution
MULTIPLICITY_FACTOR = 1000000


class EditAction(IntEnum):
    FLAG = 1
    UNFLAG = 2
    ZERO = 3
    FILTER = 4
    SONAR = 5


class EsfMode(IntEnum):
    """How beams without an edit event are treated."""
    EXPLICIT = 0
    IMPLICIT_NULL = 1
    IMPLICIT_GOOD = 2


@dataclass(frozen=True)
class EditRecord:
    time_d: float
    beam: int
    action: EditAction


class EditLedger:
    """
    Time-sorted edit events for one swath file.

    Args:
        times: Edit times in seconds
        beams: Beam numbers (including any ping multiplicity offset)
        actions: EditAction codes
        version: Edit file version; version 1 uses a looser time match
        mode: Treatment of beams without edits
    """

    def __init__(self, times, beams, actions, version: int = 3,
                 mode: EsfMode = EsfMode.EXPLICIT):
        times = np.asarray(times, dtype=float)
        order = np.argsort(times, kind='stable')
        self.times = times[order]
        self.beams = np.asarray(beams, dtype=np.int64)[order]
        self.actions = np.asarray(actions, dtype=np.int64)[order]
        self.version = version
        self.mode = mode
        self.max_time_diff = MAX_TIME_DIFF_V1 if version == 1 else MAX_TIME_DIFF

        # first candidate index for the next ping; only ever advances
        self.cursor = 0
        self.applied = Counter()
        self.ignored = 0

        self.logger = logging.getLogger('EditLedger')

    @classmethod
    def from_records(cls, records: Iterable[EditRecord], **kwargs) -> 'EditLedger':
        records = list(records)
        return cls([r.time_d for r in records], [r.beam for r in records],
                   [int(r.action) for r in records], **kwargs)

    def __len__(self) -> int:
        return len(self.times)

    def find(self, ping_time: float, multiplicity: int = 0) -> Tuple[int, int]:
        """
        Locate the edits belonging to one ping.

        Advances the cursor past every edit earlier than the ping (within
        the matching tolerance) and scans the run of edits at the ping time.

        Args:
            ping_time: Ping timestamp
            multiplicity: Number of earlier pings sharing this timestamp

        Returns:
            (first, last) indices of matching edits; first > last if none
        """
        n = len(self.times)
        while self.cursor < n and self.times[self.cursor] < ping_time - self.max_time_diff:
            self.cursor += 1

        beam_lo = MULTIPLICITY_FACTOR * multiplicity
        beam_hi = beam_lo + MULTIPLICITY_FACTOR
        first, last = self.cursor, self.cursor - 1
        j = self.cursor
        while j < n and self.times[j] <= ping_time + self.max_time_diff:
            if beam_lo <= self.beams[j] < beam_hi:
                if last < first:
                    first = j
                last = j
            j += 1
        return first, last

    def apply(self, ping_time: float, beamflag: np.ndarray, multiplicity: int = 0) -> int:
        """
        Apply the saved edits for one ping to its beam flags in place.

        Flag and filter only change good beams, unflag only restores
        flagged beams that still carry data, and zero nulls a beam
        unconditionally. Edits for beams past the end of the ping are
        ignored. Later edits for the same beam override earlier ones.

        In the implicit modes, beams of an edited ping that no edit set
        take the implicit value; pings without edits are left alone.

        Returns:
            Number of beams whose flag changed
        """
        first, last = self.find(ping_time, multiplicity)
        if first > last:
            return 0
        original = beamflag.copy()
        nbeams = len(beamflag)
        beam_offset = MULTIPLICITY_FACTOR * multiplicity
        touched = np.zeros(nbeams, dtype=bool)

        for j in range(first, last + 1):
            i = int(self.beams[j]) - beam_offset
            if i < 0 or i >= nbeams:
                self.ignored += 1
                continue
            action = int(self.actions[j])
            flag = int(beamflag[i])

            if action in (EditAction.FLAG, EditAction.SONAR, EditAction.FILTER):
                if beam_ok(flag):
                    beamflag[i] = {EditAction.FLAG: FLAG_MANUAL,
                                   EditAction.SONAR: FLAG_SONAR,
                                   EditAction.FILTER: FLAG_FILTER}[action]
            elif action == EditAction.UNFLAG:
                if not beam_ok(flag) and not beam_null(flag):
                    beamflag[i] = BeamFlag.NONE
            elif action == EditAction.ZERO:
                beamflag[i] = BeamFlag.NULL
            else:
                self.ignored += 1
                continue
            # edits on beams that were already null do not count as set
            if not beam_null(flag):
                touched[i] = True
            self.applied[EditAction(action).name] += 1

        if self.mode == EsfMode.IMPLICIT_NULL:
            beamflag[~touched] = BeamFlag.NULL
        elif self.mode == EsfMode.IMPLICIT_GOOD:
            beamflag[~touched] = BeamFlag.NONE

        return int(np.count_nonzero(beamflag != original))

    def log_statistics(self):
        summary = ', '.join(f"{name.lower()}: {count}" for name, count in sorted(self.applied.items()))
        self.logger.info(f"Applied edits ({summary or 'none'}), {self.ignored} ignored")


def parse_esf(data: bytes, source: str = '<bytes>') -> EditLedger:
    """
    Decode an edit save file image.

    The text header is optional. Files written on little-endian hosts
    without byte order normalisation are detected from implausible times and
    action codes and decoded accordingly.
    """
    version, mode = 1, EsfMode.EXPLICIT
    if data[:12] in (b'ESFVERSION03', b'ESFVERSION02'):
        version = int(data[10:12])
        if version == 3:
            match = re.search(rb'ESF Mode: (\d+)', data[:ESF_HEADER_SIZE])
            if match:
                mode = EsfMode(int(match.group(1)))
        data = data[ESF_HEADER_SIZE:]

    count = len(data) // ESF_RECORD_SIZE
    if len(data) % ESF_RECORD_SIZE:
        logging.getLogger(__name__).warning(
            f"{source}: {len(data) % ESF_RECORD_SIZE} trailing bytes ignored")
    records = np.frombuffer(data, dtype=ESF_DTYPE, count=count)

    if count and not _plausible(records):
        swapped = np.frombuffer(data, dtype=ESF_DTYPE.newbyteorder('<'), count=count)
        if _plausible(swapped):
            records = swapped

    times = records['time'].astype(float)
    keep = np.isfinite(times) & (times < ESF_TIME_LIMIT)
    ledger = EditLedger(times[keep], records['beam'][keep].astype(np.int64),
                        records['action'][keep].astype(np.int64), version=version, mode=mode)
    ledger.logger.info(f"Loaded {len(ledger)} edits from {source} "
                       f"(version {version}, mode {mode.name.lower()})")
    return ledger


def _plausible(records: np.ndarray) -> bool:
    """True when most records have a sane time and a known action code."""
    times = records['time']
    actions = records['action']
    ok = (np.isfinite(times) & (times >= 0.0) & (times < ESF_TIME_LIMIT)
          & (actions >= int(EditAction.FLAG)) & (actions <= int(EditAction.SONAR)))
    return np.count_nonzero(ok) * 2 >= len(records)


def load_edits(path: str) -> EditLedger:
    """Read an edit save file from disk."""
    with open(path, 'rb') as f:
        data = f.read()
    return parse_esf(data, source=path)
