#!/usr/bin/env python3
"""
Ping Transform Pipeline

Applies the configured chain of corrections to each ping of a swath file,
in record order:

1. resolve kinematics (navigation, adjusted navigation, attitude, sonar depth,
   course made good)
2. scalar biases (draft, heave, heading, surface sound speed)
3. lever-arm heave
4. bathymetry recalculation (ray trace, rigid rotation or depth offset)
5. sound speed reference conversion
6. tide and static corrections
7. saved edits and data cuts
8. sidescan regridding

Every component holds per-file state (interpolation cursors, edit cursor,
previous ping); a pipeline instance must not be shared between files.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import (ConfigurationError, CutKind, CutMode, DraftMode, HeadingMode,
                     HeaveMode, NavAdjMode, ProcessConfig, RecalcMode, RollBiasMode,
                     SsvMode, SvpMode)
from .edits import EditLedger, load_edits
from .geometry import (course_made_good, lever_heave, normalize_heading,
                       rollpitch_to_takeoff, takeoff_to_rollpitch, takeoff_to_xyz,
                       xyz_to_takeoff)
from .interpolation import TimeSeries
from .navfiles import (load_attitude, load_navadj, load_navigation, load_sonardepth,
                       load_static, load_tide)
from .raytrace import RayTracer
from .records import (FLAG_MANUAL, SIDESCAN_NULL, BeamFlag, Kinematics, Ping, RecordKind,
                      TravelTimes, beam_null)
from .sidescan import SidescanMosaic
from .svp import REFERENCE_SOUND_SPEED, VelocityProfile, load_profile


@dataclass
class AuxiliaryData:
    """Read-only correction tables loaded once per input file."""
    nav: Optional[TimeSeries] = None
    navadj: Optional[TimeSeries] = None
    attitude: Optional[TimeSeries] = None
    sonardepth: Optional[TimeSeries] = None
    tide: Optional[TimeSeries] = None
    profile: Optional[VelocityProfile] = None
    edits: Optional[EditLedger] = None
    static: Dict[int, float] = field(default_factory=dict)

    @classmethod
    def load(cls, config: ProcessConfig) -> 'AuxiliaryData':
        """
        Load every auxiliary file enabled in the configuration.

        Raises:
            ConfigurationError: if an enabled file is missing or unusable
        """
        config.check_files()
        loaders = {
            'nav': lambda: load_navigation(config.nav_file, config.nav_format,
                                           config.nav_timeshift),
            'navadj': lambda: load_navadj(config.navadj_file, config.navadj_mode),
            'attitude': lambda: load_attitude(config.attitude_file,
                                              config.attitude_format),
            'sonardepth': lambda: load_sonardepth(config.sonardepth_file,
                                                  config.sonardepth_format),
            'tide': lambda: load_tide(config.tide_file, config.tide_format),
            'svp': lambda: load_profile(config.svp_file),
            'edits': lambda: load_edits(config.edit_file),
            'static': lambda: load_static(config.static_file),
        }
        loaded = {}
        for role, path in config.auxiliary_files().items():
            try:
                loaded[role] = loaders[role]()
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Unable to load {role} file {path}: {e}")

        profile = loaded.pop('svp', None)
        return cls(profile=profile, static=loaded.pop('static', {}), **loaded)


@dataclass
class PingContext:
    """Per-ping values derived while the ping moves through the stages."""
    original: Kinematics
    traveltimes: Optional[TravelTimes] = None
    lever_heave: float = 0.0
    roll_change: float = 0.0
    pitch_change: float = 0.0
    brackets: Dict[str, int] = field(default_factory=dict)
    speed_merged: bool = False
    position_merged: bool = False

    def depth_offset(self, k: Kinematics) -> float:
        """Sonar depth below the surface after the corrections of this run."""
        return k.draft + k.heave + self.lever_heave

    @property
    def original_depth_offset(self) -> float:
        return self.original.draft + self.original.heave


class BiasModel:
    """Roll and pitch corrections applied when beams are re-pointed."""

    def __init__(self, config: ProcessConfig):
        self.config = config

    def roll_bias(self, port: bool) -> float:
        c = self.config
        if c.rollbias_mode == RollBiasMode.SINGLE:
            return c.rollbias
        if c.rollbias_mode == RollBiasMode.DOUBLE:
            return c.rollbias_port if port else c.rollbias_stbd
        return 0.0

    def mean_roll_bias(self) -> float:
        c = self.config
        if c.rollbias_mode == RollBiasMode.DOUBLE:
            return 0.5 * (c.rollbias_port + c.rollbias_stbd)
        return self.roll_bias(port=False)

    def pitch_bias(self) -> float:
        return self.config.pitchbias if self.config.pitchbias_mode else 0.0

    def corrections(self, ctx: PingContext, port: bool) -> Tuple[float, float]:
        """(roll, pitch) rotation in degrees for a beam on the given side."""
        return (self.roll_bias(port) + ctx.roll_change,
                self.pitch_bias() + ctx.pitch_change)

    def rotate(self, theta: float, phi: float, ctx: PingContext,
               port: bool) -> Tuple[float, float]:
        roll, pitch = self.corrections(ctx, port)
        if roll == 0.0 and pitch == 0.0:
            return theta, phi
        alpha, beta = takeoff_to_rollpitch(theta, phi)
        return rollpitch_to_takeoff(alpha + pitch, beta + roll)


# ---------------------------------------------------------------------------
# Bathymetry recalculation strategies
# ---------------------------------------------------------------------------

class RayTraceRecalc:
    """Recompute soundings by ray tracing travel times through the profile."""

    def __init__(self, config: ProcessConfig, tracer: RayTracer, biases: BiasModel):
        self.config = config
        self.tracer = tracer
        self.biases = biases

    def recalculate(self, ping: Ping, ctx: PingContext) -> int:
        """Returns the number of beams nulled because no ray could be traced."""
        tt = ctx.traveltimes
        if tt is None:
            return 0
        k = ping.kinematics
        multiply = self.config.tt_multiply if self.config.tt_mode else 1.0
        nulled = 0

        for i in range(ping.nbeams):
            if beam_null(ping.beamflag[i]):
                continue
            ttime = tt.ttimes[i] * multiply
            if ttime <= 0.0:
                ping.beamflag[i] = BeamFlag.NULL
                nulled += 1
                continue

            theta, phi = float(tt.angles[i]), float(tt.angles_forward[i])
            if theta < 0.0:
                theta, phi = -theta, phi + 180.0
            port = math.cos(math.radians(phi)) < 0.0
            theta, phi = self.biases.rotate(theta, phi, ctx, port)

            depth_offset = tt.bheave[i] + k.draft + ctx.lever_heave
            result = self.tracer.trace(depth_offset, theta, 0.5 * ttime,
                                       surface_velocity=ping.ssv,
                                       null_angle=float(tt.angles_null[i]),
                                       angle_mode=self.config.angle_mode)
            if not result.ok:
                ping.beamflag[i] = BeamFlag.NULL
                nulled += 1
                continue

            ping.bath[i] = result.depth
            ping.acrosstrack[i] = result.horizontal_range * math.cos(math.radians(phi))
            ping.alongtrack[i] = (result.horizontal_range * math.sin(math.radians(phi))
                                  + tt.alongtrack_offset[i])
        return nulled


class RigidRotationRecalc:
    """Rotate existing soundings about the sonar by the roll/pitch corrections."""

    def __init__(self, biases: BiasModel):
        self.biases = biases

    def recalculate(self, ping: Ping, ctx: PingContext) -> int:
        offset_org = ctx.original_depth_offset
        offset_new = ctx.depth_offset(ping.kinematics)

        for i in range(ping.nbeams):
            if beam_null(ping.beamflag[i]):
                continue
            x = float(ping.acrosstrack[i])
            y = float(ping.alongtrack[i])
            z = float(ping.bath[i]) - offset_org
            r = math.sqrt(x * x + y * y + z * z)

            theta, phi = xyz_to_takeoff(x, y, z)
            theta, phi = self.biases.rotate(theta, phi, ctx, port=x < 0.0)
            x, y, z = takeoff_to_xyz(r, theta, phi)

            ping.acrosstrack[i] = x
            ping.alongtrack[i] = y
            ping.bath[i] = z + offset_new
        return 0


class OffsetRecalc:
    """Shift every sounding by the change in sonar depth."""

    def recalculate(self, ping: Ping, ctx: PingContext) -> int:
        change = ctx.depth_offset(ping.kinematics) - ctx.original_depth_offset
        if change != 0.0:
            valid = (ping.beamflag & int(BeamFlag.NULL)) == 0
            ping.bath[valid] += change
        return 0


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class PingTransformPipeline:
    """
    Correction chain for one swath file.

    Args:
        config: Settings for this file
        aux: Auxiliary tables loaded for this file
    """

    def __init__(self, config: ProcessConfig, aux: Optional[AuxiliaryData] = None):
        self.config = config
        self.aux = aux or AuxiliaryData()
        self.biases = BiasModel(config)
        self.stats = Counter()

        self.recalc_mode = config.recalc_mode
        self.tracer: Optional[RayTracer] = None
        if self.recalc_mode == RecalcMode.RAYTRACE:
            if self.aux.profile is None:
                raise ConfigurationError("Ray tracing enabled but no velocity profile loaded")
            self.tracer = RayTracer(self.aux.profile)
        self.recalculator = {
            RecalcMode.RAYTRACE: lambda: RayTraceRecalc(config, self.tracer, self.biases),
            RecalcMode.ROTATE: lambda: RigidRotationRecalc(self.biases),
            RecalcMode.OFFSET: lambda: OffsetRecalc(),
            RecalcMode.OFF: lambda: None,
        }[self.recalc_mode]()

        self.sidescan: Optional[SidescanMosaic] = None
        if config.ss_recalc:
            self.sidescan = SidescanMosaic(config.ss_pixel_size, config.ss_swath_width,
                                           config.ss_interpolate)

        # previous record state for course made good and surface sound speed
        self.prev_time: Optional[float] = None
        self.prev_lon = 0.0
        self.prev_lat = 0.0
        self.prev_heading: Optional[float] = None
        self.prev_speed: Optional[float] = None
        self.prev_ssv = REFERENCE_SOUND_SPEED
        self.last_ping_time: Optional[float] = None
        self.multiplicity = 0

        self.logger = logging.getLogger('PingPipeline')
        self.logger.setLevel(logging.DEBUG if config.debug_level > 0 else logging.NOTSET)

    def process(self, kind: int, ping: Ping) -> Ping:
        """
        Transform one ping or navigation record in place.

        Navigation-only records stop after the bias stage.

        Returns:
            The same Ping object
        """
        ctx = self.resolve_kinematics(ping, ping_record=kind == RecordKind.PING)
        self.apply_biases(ping, ctx)
        self.remember(ping)

        if kind != RecordKind.PING:
            self.stats['nav_records'] += 1
            return ping

        self.stats['pings'] += 1
        self.apply_lever_arm(ping, ctx)
        if self.recalculator is not None:
            self.stats['beams_nulled'] += self.recalculator.recalculate(ping, ctx)
        self.convert_sound_speed_reference(ping, ctx)
        self.apply_tide(ping)
        self.apply_static(ping)
        self.apply_edits(ping)
        self.apply_cuts(ping, (CutKind.BATH, CutKind.AMP))
        if self.sidescan is not None:
            if self.sidescan.recalculate(ping, ctx.depth_offset(ping.kinematics)):
                self.stats['sidescan_recalculated'] += 1
        self.apply_cuts(ping, (CutKind.SS,))
        return ping

    # -- stage 1 ----------------------------------------------------------

    def _lookup(self, role: str, series: TimeSeries, t: float, mode,
                ctx: Optional[PingContext] = None) -> Dict[str, float]:
        if not series.start_time <= t <= series.end_time:
            self.stats[f'{role}_outside'] += 1
            self.logger.debug(f"Time {t:.3f} outside {role} table, using nearest sample")
        values, index = series.interpolate(t, mode)
        if ctx is not None:
            ctx.brackets[role] = index
        return values

    def resolve_kinematics(self, ping: Ping, ping_record: bool = True) -> PingContext:
        """Merge navigation, attitude and sonar depth onto the ping."""
        c = self.config
        k = ping.kinematics
        ctx = PingContext(original=replace(k))
        t = k.time_d

        if ping_record and self.recalc_mode == RecalcMode.RAYTRACE:
            if ping.traveltimes is not None:
                # heave biases are applied to this copy only
                ctx.traveltimes = replace(ping.traveltimes, bheave=ping.traveltimes.bheave.copy())
            else:
                ctx.traveltimes = self._traveltimes_from_soundings(ping)

        nav_values = {}
        if c.nav_mode and self.aux.nav is not None:
            nav_values = self._lookup('nav', self.aux.nav, t, c.nav_interp, ctx)
        navadj_values = {}
        if c.navadj_mode != NavAdjMode.OFF and self.aux.navadj is not None:
            navadj_values = self._lookup('navadj', self.aux.navadj, t, c.navadj_interp, ctx)

        for values in self._position_sources(nav_values, navadj_values):
            k.lon, k.lat = values['lon'], values['lat']
            ctx.position_merged = True

        if nav_values:
            if c.nav_heading and 'heading' in nav_values:
                k.heading = nav_values['heading']
            if c.nav_speed and 'speed' in nav_values:
                k.speed = nav_values['speed']
                ctx.speed_merged = True
            if c.nav_draft and 'draft' in nav_values:
                k.draft = nav_values['draft']
            if c.nav_attitude and all(a in nav_values for a in ('roll', 'pitch', 'heave')):
                k.roll, k.pitch, k.heave = (nav_values['roll'], nav_values['pitch'],
                                            nav_values['heave'])

        if c.attitude_mode and self.aux.attitude is not None:
            values = self._lookup('attitude', self.aux.attitude, t, c.nav_interp, ctx)
            k.roll, k.pitch, k.heave = values['roll'], values['pitch'], values['heave']
        if c.sonardepth_mode and self.aux.sonardepth is not None:
            k.draft = self._lookup('sonardepth', self.aux.sonardepth, t, c.nav_interp, ctx)['depth']

        if navadj_values and c.navadj_mode == NavAdjMode.LLZ:
            k.draft += navadj_values['z']

        ctx.roll_change = k.roll - ctx.original.roll
        ctx.pitch_change = k.pitch - ctx.original.pitch

        heading, speed = self._course_made_good(k, ctx)
        if c.heading_mode in (HeadingMode.CALC, HeadingMode.CALC_OFFSET) and heading is not None:
            k.heading = heading
        if ctx.position_merged and not ctx.speed_merged and speed is not None:
            k.speed = speed
        return ctx

    def _position_sources(self, nav_values: Dict[str, float],
                          navadj_values: Dict[str, float]) -> List[Dict[str, float]]:
        """Position tables in the order they are applied; the last one wins."""
        sources = [v for v in (nav_values, navadj_values) if v]
        if not self.config.navadj_precedence:
            sources.reverse()
        return sources

    def _track_tables(self) -> List[Tuple[str, TimeSeries]]:
        """Tables course made good may be taken from, preferred first."""
        tables = []
        if self.config.nav_mode and self.aux.nav is not None:
            tables.append(('nav', self.aux.nav))
        if self.config.navadj_mode != NavAdjMode.OFF and self.aux.navadj is not None:
            tables.append(('navadj', self.aux.navadj))
        if self.config.navadj_precedence:
            tables.reverse()
        return tables

    def _course_made_good(self, k: Kinematics,
                          ctx: PingContext) -> Tuple[Optional[float], Optional[float]]:
        """
        Heading and speed from the bracketing table segment, or from the
        previous record when no table is merged. Falls back to the previous
        values when the two positions coincide or are not separated in time.
        """
        for role, series in self._track_tables():
            i = ctx.brackets.get(role)
            if i is None or len(series) < 2:
                continue
            lon, lat = series.column('lon'), series.column('lat')
            segment = (lon[i - 1], lat[i - 1], lon[i], lat[i],
                       series.times[i] - series.times[i - 1])
            break
        else:
            if self.prev_time is None:
                return self.prev_heading, self.prev_speed
            segment = (self.prev_lon, self.prev_lat, k.lon, k.lat, k.time_d - self.prev_time)

        lon1, lat1, lon2, lat2, dt = segment
        if dt <= 0.0:
            return self.prev_heading, self.prev_speed
        heading, speed, distance = course_made_good(lon1, lat1, lon2, lat2, dt)
        if distance <= 0.0:
            return self.prev_heading, self.prev_speed
        return heading, speed

    def _traveltimes_from_soundings(self, ping: Ping) -> TravelTimes:
        """Synthesize travel times and take-off angles from pre-formed soundings."""
        k = ping.kinematics
        tt = TravelTimes.empty(ping.nbeams)
        # sonar depth = draft + heave, so soundings are measured below it
        sonar_depth = k.draft + k.heave
        for i in range(ping.nbeams):
            tt.bheave[i] = k.heave
            if beam_null(ping.beamflag[i]):
                continue
            x, y = float(ping.acrosstrack[i]), float(ping.alongtrack[i])
            z = float(ping.bath[i]) - sonar_depth
            r = math.sqrt(x * x + y * y + z * z)
            tt.ttimes[i] = r / 750.0
            tt.angles[i], tt.angles_forward[i] = xyz_to_takeoff(x, y, z)
        return tt

    # -- stage 2 ----------------------------------------------------------

    def apply_biases(self, ping: Ping, ctx: PingContext):
        c = self.config
        k = ping.kinematics

        if c.draft_mode == DraftMode.OFFSET:
            k.draft += c.draft_offset
        elif c.draft_mode == DraftMode.MULTIPLY:
            k.draft *= c.draft_multiply
        elif c.draft_mode == DraftMode.MULTIPLY_OFFSET:
            k.draft = k.draft * c.draft_multiply + c.draft_offset
        elif c.draft_mode == DraftMode.SET:
            k.draft = c.draft

        if c.heave_mode != HeaveMode.OFF:
            k.heave = self._bias_heave(k.heave)
            if ctx.traveltimes is not None:
                ctx.traveltimes.bheave[:] = self._bias_heave(ctx.traveltimes.bheave)

        if c.heading_mode in (HeadingMode.OFFSET, HeadingMode.CALC_OFFSET):
            k.heading += c.heading_offset
        k.heading = normalize_heading(k.heading)

        ssv = ping.ssv if ping.ssv > 0.0 else self.prev_ssv
        self.prev_ssv = ssv
        if c.ssv_mode == SsvMode.OFFSET:
            ssv += c.ssv
        elif c.ssv_mode == SsvMode.SET:
            ssv = c.ssv
        ping.ssv = ssv

    def _bias_heave(self, heave):
        c = self.config
        if c.heave_mode == HeaveMode.OFFSET:
            return heave + c.heave_offset
        if c.heave_mode == HeaveMode.MULTIPLY:
            return heave * c.heave_multiply
        return heave * c.heave_multiply + c.heave_offset

    def remember(self, ping: Ping):
        k = ping.kinematics
        self.prev_time = k.time_d
        self.prev_lon = k.lon
        self.prev_lat = k.lat
        self.prev_heading = k.heading
        self.prev_speed = k.speed

    # -- stage 3 ----------------------------------------------------------

    def apply_lever_arm(self, ping: Ping, ctx: PingContext):
        if not self.config.lever_mode:
            return
        k = ping.kinematics
        ctx.lever_heave = lever_heave(self.config.vru_offset, self.config.sonar_offset,
                                      k.roll + self.biases.mean_roll_bias(),
                                      k.pitch + self.biases.pitch_bias())

    # -- stage 5 ----------------------------------------------------------

    def convert_sound_speed_reference(self, ping: Ping, ctx: PingContext):
        """
        Switch depths between corrected and uncorrected sound speed reference.

        Ray traced depths are corrected; they are converted only when
        uncorrected output is requested. Without ray tracing the depths are
        converted to whichever reference is configured.
        """
        c = self.config
        profile = self.aux.profile
        if profile is None:
            return
        if c.svp_mode == SvpMode.RAYTRACE and not c.corrected:
            convert = profile.to_uncorrected
        elif c.svp_mode == SvpMode.SOUNDSPEEDREF:
            convert = profile.to_corrected if c.corrected else profile.to_uncorrected
        else:
            return

        k = ping.kinematics
        tt = ctx.traveltimes
        for i in range(ping.nbeams):
            if beam_null(ping.beamflag[i]):
                continue
            heave = tt.bheave[i] if tt is not None else k.heave
            offset = heave + k.draft + ctx.lever_heave
            ping.bath[i] = convert(ping.bath[i] - offset) + offset

    # -- stage 6 ----------------------------------------------------------

    def apply_tide(self, ping: Ping):
        if not self.config.tide_mode or self.aux.tide is None:
            return
        tide = self._lookup('tide', self.aux.tide, ping.time_d, self.config.nav_interp)['tide']
        valid = (ping.beamflag & int(BeamFlag.NULL)) == 0
        ping.bath[valid] -= tide

    def apply_static(self, ping: Ping):
        if not self.config.static_mode:
            return
        for beam, offset in self.aux.static.items():
            if 0 <= beam < ping.nbeams and not beam_null(ping.beamflag[beam]):
                ping.bath[beam] -= offset

    # -- stage 7 ----------------------------------------------------------

    def apply_edits(self, ping: Ping):
        if self.last_ping_time is not None and ping.time_d == self.last_ping_time:
            self.multiplicity += 1
        else:
            self.multiplicity = 0
        self.last_ping_time = ping.time_d

        if self.config.edit_mode and self.aux.edits is not None:
            self.stats['beams_edited'] += self.aux.edits.apply(ping.time_d, ping.beamflag,
                                                               self.multiplicity)

    def apply_cuts(self, ping: Ping, kinds):
        """Flag beams or null sidescan pixels selected by the cut rules of the given kinds."""
        speed = ping.kinematics.speed
        for cut in self.config.cuts:
            if cut.kind not in kinds:
                continue

            if cut.kind == CutKind.SS:
                if cut.mode == CutMode.NUMBER:
                    lo, hi = max(int(cut.minimum), 0), min(int(cut.maximum), ping.npixels - 1)
                    if lo <= hi:
                        ping.ss[lo:hi + 1] = SIDESCAN_NULL
                elif cut.mode == CutMode.DISTANCE:
                    selected = ((ping.ss_acrosstrack >= cut.minimum)
                                & (ping.ss_acrosstrack <= cut.maximum))
                    ping.ss[selected] = SIDESCAN_NULL
                elif not cut.minimum <= speed <= cut.maximum:
                    ping.ss[:] = SIDESCAN_NULL
                continue

            if cut.mode == CutMode.SPEED and cut.kind == CutKind.AMP:
                if not cut.minimum <= speed <= cut.maximum:
                    ping.amp[:] = 0.0
                continue

            selected = np.zeros(ping.nbeams, dtype=bool)
            if cut.mode == CutMode.NUMBER:
                lo, hi = max(int(cut.minimum), 0), min(int(cut.maximum), ping.nbeams - 1)
                if lo <= hi:
                    selected[lo:hi + 1] = True
            elif cut.mode == CutMode.DISTANCE:
                selected = (ping.acrosstrack >= cut.minimum) & (ping.acrosstrack <= cut.maximum)
            elif not cut.minimum <= speed <= cut.maximum:
                selected[:] = True

            selected &= ping.beamflag == BeamFlag.NONE
            ping.beamflag[selected] = FLAG_MANUAL
            self.stats['beams_cut'] += int(np.count_nonzero(selected))

    def log_statistics(self):
        s = self.stats
        self.logger.info(f"Processed {s['pings']} pings and {s['nav_records']} navigation records")
        self.logger.info(f"  beams nulled by recalculation: {s['beams_nulled']}")
        self.logger.info(f"  beam flags changed by edits:   {s['beams_edited']}")
        self.logger.info(f"  beams flagged by cuts:         {s['beams_cut']}")
        for role in ('nav', 'navadj', 'attitude', 'sonardepth', 'tide'):
            if s[f'{role}_outside']:
                self.logger.info(f"  records outside {role} table:  {s[f'{role}_outside']}")
        if self.aux.edits is not None:
            self.aux.edits.log_statistics()
