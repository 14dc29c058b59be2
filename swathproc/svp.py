#!/usr/bin/env python3
"""
Layered Sound Velocity Profile

Loads a ``depth velocity`` table, normalises it so depth starts at the
surface and increases strictly, extends it to full ocean depth and
precomputes the cumulative velocity integral used for sound speed
reference conversion.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np


logger = logging.getLogger(__name__)

# Profiles are extended with their last velocity down to this depth
FULL_OCEAN_DEPTH = 12000.0
REFERENCE_SOUND_SPEED = 1500.0


@dataclass(frozen=True, eq=False)
class VelocityProfile:
    """
    Immutable sound velocity profile.

    Attributes:
        depth: Node depths in meters, strictly increasing, depth[0] == 0
        velocity: Sound speed at each node in m/s
        velocity_sum: Cumulative trapezoid integral of velocity over depth,
            one entry per layer (velocity_sum[k] covers depth[0]..depth[k+1])
    """
    depth: np.ndarray
    velocity: np.ndarray
    velocity_sum: np.ndarray = field(repr=False, compare=False, default=None)

    def __post_init__(self):
        if len(self.depth) < 2 or len(self.depth) != len(self.velocity):
            raise ValueError("Velocity profile needs at least two depth/velocity nodes")
        if np.any(np.diff(self.depth) <= 0.0):
            raise ValueError("Velocity profile depths must increase strictly")
        if self.velocity_sum is None:
            layer_sums = 0.5 * (self.velocity[1:] + self.velocity[:-1]) * np.diff(self.depth)
            object.__setattr__(self, 'velocity_sum', np.cumsum(layer_sums))

    @property
    def surface_velocity(self) -> float:
        return float(self.velocity[0])

    @property
    def layer_count(self) -> int:
        return len(self.depth) - 1

    def velocity_at(self, z: float) -> float:
        """Linearly interpolated sound speed at depth z (clamped to the table)."""
        return float(np.interp(z, self.depth, self.velocity))

    def average_velocity(self, z: float) -> float:
        """
        Mean sound speed between the top of the profile and depth z.

        Returns the 1500 m/s reference when z is at or above the top of
        the profile or below the deepest node.
        """
        if z <= self.depth[0]:
            return REFERENCE_SOUND_SPEED
        k = int(np.searchsorted(self.depth, z, side='left')) - 1
        if k < 0 or k >= self.layer_count:
            return REFERENCE_SOUND_SPEED

        vsum = self.velocity_sum[k - 1] if k > 0 else 0.0
        dz = z - self.depth[k]
        slope = (self.velocity[k + 1] - self.velocity[k]) / (self.depth[k + 1] - self.depth[k])
        vsum += 0.5 * (2.0 * self.velocity[k] + dz * slope) * dz
        vavg = vsum / z
        return float(vavg) if vavg > 0.0 else REFERENCE_SOUND_SPEED

    def to_uncorrected(self, z: float) -> float:
        """Depth below the sonar expressed with the flat 1500 m/s reference."""
        return z * REFERENCE_SOUND_SPEED / self.average_velocity(z)

    def to_corrected(self, z: float) -> float:
        """Depth below the sonar expressed with the profile's mean sound speed."""
        return z * self.average_velocity(z) / REFERENCE_SOUND_SPEED

    @classmethod
    def from_samples(cls, samples: List[Tuple[float, float]],
                     source: str = '<samples>') -> 'VelocityProfile':
        """
        Build a profile from raw (depth, velocity) pairs.

        A negative first depth is moved to the surface, a first depth below
        the surface gets a surface node with the same velocity, depths that
        do not increase are dropped and the profile is extended to
        FULL_OCEAN_DEPTH with its last velocity.
        """
        depths: List[float] = []
        velocities: List[float] = []
        for d, v in samples:
            if not depths:
                if d < 0.0:
                    d = 0.0
                elif d > 0.0:
                    depths.append(0.0)
                    velocities.append(v)
                depths.append(d)
                velocities.append(v)
            elif d > depths[-1]:
                depths.append(d)
                velocities.append(v)
            else:
                logger.warning(f"{source}: velocity profile depth {d:.3f} m "
                               f"not below {depths[-1]:.3f} m, node ignored")

        if not depths:
            raise ValueError(f"{source}: velocity profile has no samples")
        if depths[-1] < FULL_OCEAN_DEPTH:
            depths.append(FULL_OCEAN_DEPTH)
            velocities.append(velocities[-1])
        return cls(depth=np.asarray(depths, dtype=float),
                   velocity=np.asarray(velocities, dtype=float))

    @classmethod
    def homogeneous(cls, velocity: float) -> 'VelocityProfile':
        return cls.from_samples([(0.0, velocity)])


def load_profile(path: str) -> VelocityProfile:
    """
    Read a sound velocity profile file.

    Lines starting with '#' are comments; every other line holds a depth
    and a velocity separated by whitespace or a comma. Lines that do not
    parse are skipped with a warning.

    Raises:
        OSError: if the file cannot be read
        ValueError: if no usable samples are found
    """
    samples = []
    with open(path, 'r') as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            parts = line.replace(',', ' ').split()
            try:
                samples.append((float(parts[0]), float(parts[1])))
            except (ValueError, IndexError):
                logger.warning(f"{path}:{lineno}: unparseable velocity profile line skipped")

    profile = VelocityProfile.from_samples(samples, source=path)
    logger.info(f"Loaded velocity profile {path}: {len(samples)} samples, "
                f"{profile.layer_count} layers, surface {profile.surface_velocity:.2f} m/s")
    return profile

