#!/usr/bin/env python3
"""
Beam Geometry

Conversions between the angle frames used to describe a beam and the
vessel-relative position of a sounding, plus the lever-arm heave and
course-made-good helpers used by the ping pipeline.

Frames (all angles in degrees):
- take-off: ``theta`` from vertical, ``phi`` azimuth of the beam plane
  (0 starboard, 90 forward, 180 port)
- roll-pitch: ``alpha`` rotation towards the bow (pitch-like),
  ``beta`` angle from the starboard horizontal (roll-like, 90 is nadir)
- sounding: x across-track (starboard positive), y along-track
  (forward positive), z down
"""

import math
from typing import Tuple

from pyproj import Geod


# km/h per m/s
MS_TO_KMH = 3.6

_GEOD = Geod(ellps='WGS84')


def takeoff_to_rollpitch(theta: float, phi: float) -> Tuple[float, float]:
    """
    Convert take-off angles to roll-pitch angles.

    Args:
        theta: Angle from vertical in degrees
        phi: Azimuth of the beam plane in degrees

    Returns:
        (alpha, beta) in degrees
    """
    t = math.radians(theta)
    p = math.radians(phi)
    x = math.sin(t) * math.cos(p)
    y = math.sin(t) * math.sin(p)
    z = math.cos(t)

    alpha = math.asin(max(-1.0, min(1.0, y)))
    cos_alpha = math.cos(alpha)
    if cos_alpha > 0.0:
        beta = math.acos(max(-1.0, min(1.0, x / cos_alpha)))
    else:
        beta = 0.5 * math.pi
    if z < 0.0:
        beta = 2.0 * math.pi - beta
    return math.degrees(alpha), math.degrees(beta)


def rollpitch_to_takeoff(alpha: float, beta: float) -> Tuple[float, float]:
    """Inverse of takeoff_to_rollpitch; returns (theta, phi) in degrees."""
    a = math.radians(alpha)
    b = math.radians(beta)
    x = math.cos(a) * math.cos(b)
    y = math.sin(a)
    z = math.cos(a) * math.sin(b)

    theta = math.degrees(math.acos(max(-1.0, min(1.0, z))))
    if x == 0.0 and y == 0.0:
        phi = 0.0
    else:
        phi = math.degrees(math.atan2(y, x))
    return theta, phi


def xyz_to_takeoff(x: float, y: float, z: float) -> Tuple[float, float]:
    """
    Take-off angles pointing from the sonar to a sounding.

    A zero-length vector yields (0, 0).
    """
    r = math.sqrt(x * x + y * y + z * z)
    if r <= 0.0:
        return 0.0, 0.0
    theta = math.degrees(math.acos(max(-1.0, min(1.0, z / r))))
    if x == 0.0 and y == 0.0:
        phi = 0.0
    else:
        phi = math.degrees(math.atan2(y, x))
    return theta, phi


def takeoff_to_xyz(r: float, theta: float, phi: float) -> Tuple[float, float, float]:
    t = math.radians(theta)
    p = math.radians(phi)
    return (r * math.sin(t) * math.cos(p),
            r * math.sin(t) * math.sin(p),
            r * math.cos(t))


def lever_heave(vru_offset, sonar_offset, roll: float, pitch: float) -> float:
    """
    Vertical displacement of the sonar caused by vessel attitude.

    The sonar position relative to the attitude sensor is rotated by roll
    (starboard down positive) and pitch (bow up positive); the change of
    its vertical component is the extra heave seen at the sonar.

    Args:
        vru_offset: Attitude sensor position (x starboard, y forward, z down), m
        sonar_offset: Sonar position in the same frame, m
        roll: Roll in degrees
        pitch: Pitch in degrees

    Returns:
        Additional heave at the sonar in meters, positive down
    """
    dx = sonar_offset[0] - vru_offset[0]
    dy = sonar_offset[1] - vru_offset[1]
    dz = sonar_offset[2] - vru_offset[2]
    r = math.radians(roll)
    p = math.radians(pitch)

    z_roll = dz * math.cos(r) + dx * math.sin(r)
    z_rotated = z_roll * math.cos(p) - dy * math.sin(p)
    return z_rotated - dz


def course_made_good(lon1: float, lat1: float, lon2: float, lat2: float,
                     dt: float) -> Tuple[float, float, float]:
    """
    Heading and speed between two fixes on the WGS84 ellipsoid.

    Returns:
        (heading in [0, 360) degrees, speed in km/h, distance in m);
        speed is 0 when dt is not positive
    """
    azimuth, _, distance = _GEOD.inv(lon1, lat1, lon2, lat2)
    heading = azimuth % 360.0
    speed = MS_TO_KMH * distance / dt if dt > 0.0 else 0.0
    return heading, speed, distance


def normalize_heading(heading: float) -> float:
    heading = heading % 360.0
    # -0.0 % 360 and values a hair under 360 both land on 360.0
    return 0.0 if heading >= 360.0 else heading
