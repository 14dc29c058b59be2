#!/usr/bin/env python3
"""
Sidescan Mosaic

Rebuilds a ping's sidescan pixels from its beam amplitudes after the
bathymetry has been recalculated. Pixels are laid out symmetrically about
nadir at a fixed spacing; the spacing and swath width are either given
or derived from the ping's own geometry.
"""

import logging
import math
from typing import Optional

import numpy as np

from .records import SIDESCAN_NULL, Ping, beam_ok


DEFAULT_PIXEL_COUNT = 1024
MIN_SWATH_WIDTH = 60.0      # degrees
SWATH_WIDTH_MARGIN = 2.5    # degrees added to the widest good beam
PIXEL_SIZE_CHANGE = 0.05    # maximum relative change between pings


class SidescanMosaic:
    """
    Per-file sidescan regridding state.

    Args:
        pixel_size: Pixel spacing in meters, or 0 to derive it per ping
        swath_width: Full swath angle in degrees, or 0 to derive it per ping
        interpolate: Largest gap (in pixels) filled by linear interpolation
        npixels: Number of pixels per ping
    """

    def __init__(self, pixel_size: float = 0.0, swath_width: float = 0.0,
                 interpolate: int = 0, npixels: int = DEFAULT_PIXEL_COUNT):
        self.pixel_size_set = pixel_size > 0.0
        self.swath_width_set = swath_width > 0.0
        self.pixel_size = pixel_size
        self.swath_width = swath_width
        self.interpolate = interpolate
        self.npixels = npixels

        self.logger = logging.getLogger('SidescanMosaic')

    def derive_swath_width(self, ping: Ping, depth_offset: float) -> float:
        """Widest good-beam angle from vertical plus a margin, at least MIN_SWATH_WIDTH."""
        widest = 0.0
        for i in range(ping.nbeams):
            if not beam_ok(ping.beamflag[i]):
                continue
            height = ping.bath[i] - depth_offset
            if height > 0.0:
                widest = max(widest, math.degrees(math.atan(abs(ping.acrosstrack[i]) / height)))
        return max(MIN_SWATH_WIDTH, SWATH_WIDTH_MARGIN + widest)

    def derive_pixel_size(self, ping: Ping, depth_offset: float, swath_width: float) -> Optional[float]:
        good = np.array([beam_ok(f) for f in ping.beamflag], dtype=bool)
        if not good.any():
            return None
        median_depth = float(np.median(ping.bath[good])) - depth_offset
        if median_depth <= 0.0:
            return None

        # swath_width is the half angle either side of nadir
        size = 2.0 * math.tan(math.radians(swath_width)) * median_depth / self.npixels
        size = max(size, median_depth * math.sin(math.radians(0.1)))

        if self.pixel_size > 0.0:
            size = min(max(size, (1.0 - PIXEL_SIZE_CHANGE) * self.pixel_size),
                       (1.0 + PIXEL_SIZE_CHANGE) * self.pixel_size)
        return size

    def recalculate(self, ping: Ping, depth_offset: float = 0.0) -> bool:
        """
        Regrid the ping's sidescan in place.

        Args:
            ping: Ping whose beam amplitudes are binned
            depth_offset: Sonar depth below the surface, m

        Returns:
            False if no pixel size could be established for this ping
        """
        swath_width = self.swath_width if self.swath_width_set \
            else self.derive_swath_width(ping, depth_offset)
        if not self.pixel_size_set:
            size = self.derive_pixel_size(ping, depth_offset, swath_width)
            if size is not None:
                self.pixel_size = size
        if self.pixel_size <= 0.0:
            self.logger.debug(f"No pixel size for ping at {ping.time_d:.3f}, sidescan left unchanged")
            return False

        n = self.npixels
        centre = n // 2
        across = (np.arange(n) - centre) * self.pixel_size
        total = np.zeros(n)
        along = np.zeros(n)
        count = np.zeros(n, dtype=int)

        for i in range(ping.nbeams):
            if not beam_ok(ping.beamflag[i]):
                continue
            j = centre + int(round(ping.acrosstrack[i] / self.pixel_size))
            if 0 <= j < n:
                total[j] += ping.amp[i]
                along[j] += ping.alongtrack[i]
                count[j] += 1

        filled = count > 0
        ss = np.full(n, SIDESCAN_NULL)
        ss[filled] = total[filled] / count[filled]
        along[filled] = along[filled] / count[filled]

        if self.interpolate > 0:
            self._fill_gaps(ss, along, filled)

        ping.ss = ss
        ping.ss_acrosstrack = across
        ping.ss_alongtrack = along
        return True

    def _fill_gaps(self, ss: np.ndarray, along: np.ndarray, filled: np.ndarray):
        indices = np.flatnonzero(filled)
        for left, right in zip(indices[:-1], indices[1:]):
            gap = right - left - 1
            if 0 < gap <= self.interpolate:
                w = np.arange(1, gap + 1) / (gap + 1)
                ss[left + 1:right] = ss[left] + w * (ss[right] - ss[left])
                along[left + 1:right] = along[left] + w * (along[right] - along[left])
