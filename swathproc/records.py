#!/usr/bin/env python3
"""
Swath Record Structures

In-memory ping model and the framed binary layout of the swath record
stream read and written by the reprocessing driver.

Every record on disk is a 16-byte RecordHeader followed by ``data_count``
bytes of payload:
- 8 bytes: preamble (unique identifier)
- 2 bytes: record kind
- 2 bytes: layout version
- 4 bytes: data_count (length of payload to follow)

All values are little-endian.
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Optional, Tuple, Union

import numpy as np


RECORD_PREAMBLE = bytes([0x53, 0x57, 0x41, 0x54,  # "SWAT"
                         0xb4, 0x7e, 0x19, 0xc2])
RECORD_VERSION = 1

# Sidescan pixel value meaning "no data"
SIDESCAN_NULL = -1000000000.0


class RecordError(ValueError):
    """Malformed or truncated record in the swath stream."""


class RecordKind(IntEnum):
    PING = 1
    NAV = 2
    COMMENT = 3


class BeamFlag(IntFlag):
    """Per-beam validity bits. A beam is good only when no bit is set."""
    NONE = 0
    FLAG = 1
    NULL = 2
    MANUAL = 4
    FILTER = 8
    SONAR = 16


FLAG_MANUAL = int(BeamFlag.FLAG | BeamFlag.MANUAL)
FLAG_FILTER = int(BeamFlag.FLAG | BeamFlag.FILTER)
FLAG_SONAR = int(BeamFlag.FLAG | BeamFlag.SONAR)


def beam_ok(flag: int) -> bool:
    return flag == BeamFlag.NONE


def beam_null(flag: int) -> bool:
    return bool(flag & BeamFlag.NULL)


@dataclass
class RecordHeader:
    """16-byte header written before each record payload."""
    preamble: bytes      # uint8_t[8] - Should match RECORD_PREAMBLE
    kind: int            # uint16_t - RecordKind or a pass-through code
    version: int         # uint16_t - payload layout version
    data_count: int      # uint32_t - payload length in bytes

    SIZE = 16
    FORMAT = '<8sHHI'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'RecordHeader':
        """Parse RecordHeader from 16-byte buffer."""
        if len(data) < cls.SIZE:
            raise ValueError(f"Buffer too small: expected {cls.SIZE}, got {len(data)}")

        preamble, kind, version, data_count = struct.unpack(cls.FORMAT, data[:cls.SIZE])
        return cls(preamble=preamble, kind=kind, version=version, data_count=data_count)

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.preamble, self.kind, self.version, self.data_count)

    def is_valid(self) -> bool:
        """Check if preamble matches expected value."""
        return self.preamble == RECORD_PREAMBLE


@dataclass
class Kinematics:
    """Navigation and attitude of one ping or navigation record."""
    time_d: float        # seconds since 1970-01-01 UTC
    lon: float           # degrees
    lat: float           # degrees
    speed: float         # km/h
    heading: float       # degrees clockwise from north
    draft: float         # transducer depth below the surface, m
    roll: float          # degrees, starboard down positive
    pitch: float         # degrees, bow up positive
    heave: float         # m


@dataclass
class TravelTimes:
    """
    Raw travel-time observations needed to raytrace a ping.

    Angles are take-off angles in degrees: ``angles`` from vertical,
    ``angles_forward`` the azimuth of the beam plane (0 starboard,
    90 forward, 180 port) and ``angles_null`` the array null angle.
    """
    ttimes: np.ndarray            # two-way travel time, s
    angles: np.ndarray
    angles_forward: np.ndarray
    angles_null: np.ndarray
    bheave: np.ndarray            # heave at each beam's receive time, m
    alongtrack_offset: np.ndarray  # m

    FIELDS = ('ttimes', 'angles', 'angles_forward', 'angles_null', 'bheave', 'alongtrack_offset')

    @classmethod
    def empty(cls, nbeams: int) -> 'TravelTimes':
        return cls(*[np.zeros(nbeams) for _ in cls.FIELDS])


@dataclass
class Ping:
    """
    One survey ping: kinematics, per-beam soundings and sidescan pixels.

    Beams are stored column-wise; beam ``i`` is
    ``(beamflag[i], bath[i], acrosstrack[i], alongtrack[i], amp[i])``.
    Depths are meters below the sea surface, positive down. Across-track
    (starboard positive) and along-track (forward positive) distances
    are relative to the sonar.
    """
    kinematics: Kinematics
    ssv: float = 0.0
    beamflag: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint8))
    bath: np.ndarray = field(default_factory=lambda: np.zeros(0))
    acrosstrack: np.ndarray = field(default_factory=lambda: np.zeros(0))
    alongtrack: np.ndarray = field(default_factory=lambda: np.zeros(0))
    amp: np.ndarray = field(default_factory=lambda: np.zeros(0))
    traveltimes: Optional[TravelTimes] = None
    ss: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ss_acrosstrack: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ss_alongtrack: np.ndarray = field(default_factory=lambda: np.zeros(0))

    # time_d lon lat speed heading draft roll pitch heave ssv | nbeams npixels has_tt reserved
    HEADER_FORMAT = '<10d4I'
    HEADER_SIZE = 96

    @property
    def time_d(self) -> float:
        return self.kinematics.time_d

    @property
    def nbeams(self) -> int:
        return len(self.beamflag)

    @property
    def npixels(self) -> int:
        return len(self.ss)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Ping':
        """Parse a ping or navigation payload."""
        if len(data) < cls.HEADER_SIZE:
            raise ValueError(f"Buffer too small: expected >={cls.HEADER_SIZE}, got {len(data)}")

        values = struct.unpack(cls.HEADER_FORMAT, data[:cls.HEADER_SIZE])
        kinematics = Kinematics(*values[:9])
        ssv = values[9]
        nbeams, npixels, has_tt = values[10], values[11], values[12]

        narrays = 4 + (len(TravelTimes.FIELDS) if has_tt else 0)
        expected = cls.HEADER_SIZE + nbeams + 8 * (narrays * nbeams + 3 * npixels)
        if len(data) < expected:
            raise ValueError(f"Buffer too small: expected {expected}, got {len(data)}")

        offset = cls.HEADER_SIZE
        beamflag = np.frombuffer(data, dtype=np.uint8, count=nbeams, offset=offset).copy()
        offset += nbeams

        def take(count: int) -> np.ndarray:
            nonlocal offset
            array = np.frombuffer(data, dtype='<f8', count=count, offset=offset).astype(float)
            offset += 8 * count
            return array

        bath, acrosstrack, alongtrack, amp = (take(nbeams) for _ in range(4))
        traveltimes = None
        if has_tt:
            traveltimes = TravelTimes(*[take(nbeams) for _ in TravelTimes.FIELDS])
        ss, ss_acrosstrack, ss_alongtrack = (take(npixels) for _ in range(3))

        return cls(kinematics=kinematics, ssv=ssv, beamflag=beamflag, bath=bath,
                   acrosstrack=acrosstrack, alongtrack=alongtrack, amp=amp,
                   traveltimes=traveltimes, ss=ss, ss_acrosstrack=ss_acrosstrack,
                   ss_alongtrack=ss_alongtrack)

    def to_bytes(self) -> bytes:
        k = self.kinematics
        header = struct.pack(self.HEADER_FORMAT, k.time_d, k.lon, k.lat, k.speed, k.heading,
                             k.draft, k.roll, k.pitch, k.heave, self.ssv,
                             self.nbeams, self.npixels, 1 if self.traveltimes else 0, 0)
        arrays = [self.bath, self.acrosstrack, self.alongtrack, self.amp]
        if self.traveltimes is not None:
            arrays.extend(getattr(self.traveltimes, name) for name in TravelTimes.FIELDS)
        arrays.extend([self.ss, self.ss_acrosstrack, self.ss_alongtrack])

        parts = [header, np.asarray(self.beamflag, dtype=np.uint8).tobytes()]
        parts.extend(np.asarray(a, dtype='<f8').tobytes() for a in arrays)
        return b''.join(parts)


@dataclass
class Comment:
    text: str

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Comment':
        return cls(text=data.split(b'\x00')[0].decode('utf-8', errors='ignore'))

    def to_bytes(self) -> bytes:
        return self.text.encode('utf-8')


@dataclass
class OtherRecord:
    """Record the pipeline does not interpret; copied through unchanged."""
    kind: int
    payload: bytes


Payload = Union[Ping, Comment, OtherRecord]


def encode_record(kind: int, obj: Payload) -> bytes:
    """Frame one record (header + payload)."""
    if isinstance(obj, OtherRecord):
        payload = obj.payload
    else:
        payload = obj.to_bytes()
    header = RecordHeader(preamble=RECORD_PREAMBLE, kind=int(kind),
                          version=RECORD_VERSION, data_count=len(payload))
    return header.to_bytes() + payload


def decode_payload(kind: int, payload: bytes) -> Tuple[int, Payload]:
    """
    Decode a payload according to its record kind.

    Raises:
        RecordError: if the payload does not match the declared kind
    """
    try:
        if kind in (RecordKind.PING, RecordKind.NAV):
            return kind, Ping.from_bytes(payload)
        if kind == RecordKind.COMMENT:
            return kind, Comment.from_bytes(payload)
    except (ValueError, struct.error) as e:
        raise RecordError(f"Bad {RecordKind(kind).name} record: {e}")
    return kind, OtherRecord(kind=kind, payload=payload)
