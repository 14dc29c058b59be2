#!/usr/bin/env python3
"""
Correction Configuration

Immutable per-input settings for the swath reprocessing pipeline. Every
correction mode and auxiliary file path is enumerated here and read once
before a file is processed.

Two on-disk forms are accepted:
- the legacy parameter file ("<input>.par", one ``KEY value`` per line)
- a YAML mapping with the same keys in lower case
"""

import os
import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

import yaml


logger = logging.getLogger(__name__)

PARAMETER_SUFFIX = '.par'


class ConfigurationError(ValueError):
    """Bad parameter value or missing auxiliary file for an enabled mode."""


class InterpMode(IntEnum):
    LINEAR = 0
    SPLINE = 1


class NavAdjMode(IntEnum):
    OFF = 0
    LL = 1      # longitude / latitude only
    LLZ = 2     # longitude / latitude / depth offset


class SvpMode(IntEnum):
    OFF = 0
    RAYTRACE = 1
    SOUNDSPEEDREF = 2


class SsvMode(IntEnum):
    OFF = 0
    OFFSET = 1
    SET = 2


class AngleMode(IntEnum):
    IGNORE_SSV = 0
    SNELL = 1
    SNELL_NULL = 2


class DraftMode(IntEnum):
    OFF = 0
    OFFSET = 1
    MULTIPLY = 2
    MULTIPLY_OFFSET = 3
    SET = 4


class HeaveMode(IntEnum):
    OFF = 0
    OFFSET = 1
    MULTIPLY = 2
    MULTIPLY_OFFSET = 3


class RollBiasMode(IntEnum):
    OFF = 0
    SINGLE = 1
    DOUBLE = 2


class HeadingMode(IntEnum):
    OFF = 0
    CALC = 1
    OFFSET = 2
    CALC_OFFSET = 3


class CutKind(IntEnum):
    BATH = 0
    AMP = 1
    SS = 2


class CutMode(IntEnum):
    NUMBER = 0
    DISTANCE = 1
    SPEED = 2


class RecalcMode(IntEnum):
    """Bathymetry recalculation strategy derived from the other settings."""
    OFF = 0
    RAYTRACE = 1
    ROTATE = 2
    OFFSET = 3


@dataclass(frozen=True)
class DataCut:
    """One cut rule: flag or zero data selected by index, distance or speed."""
    kind: CutKind
    mode: CutMode
    minimum: float
    maximum: float


Vector3 = Tuple[float, float, float]


@dataclass(frozen=True)
class ProcessConfig:
    """
    Settings for reprocessing one swath file.

    Angles are in degrees, distances in meters, speeds in km/h and
    sound speeds in m/s. File paths are absolute once loaded through
    ``load_config``.
    """
    output_path: Optional[str] = None
    debug_level: int = 0

    # navigation merge
    nav_mode: bool = False
    nav_file: Optional[str] = None
    nav_format: int = 9
    nav_heading: bool = False
    nav_speed: bool = False
    nav_draft: bool = False
    nav_attitude: bool = False
    nav_interp: InterpMode = InterpMode.LINEAR
    nav_timeshift: float = 0.0

    # adjusted navigation merge
    navadj_mode: NavAdjMode = NavAdjMode.OFF
    navadj_file: Optional[str] = None
    navadj_interp: InterpMode = InterpMode.LINEAR
    navadj_precedence: bool = True

    # attitude and sonar depth merge
    attitude_mode: bool = False
    attitude_file: Optional[str] = None
    attitude_format: int = 1
    sonardepth_mode: bool = False
    sonardepth_file: Optional[str] = None
    sonardepth_format: int = 1

    # data cutting and saved edits
    cuts: Tuple[DataCut, ...] = ()
    edit_mode: bool = False
    edit_file: Optional[str] = None

    # bathymetry recalculation
    svp_mode: SvpMode = SvpMode.OFF
    svp_file: Optional[str] = None
    ssv_mode: SsvMode = SsvMode.OFF
    ssv: float = 0.0
    tt_mode: bool = False
    tt_multiply: float = 1.0
    angle_mode: AngleMode = AngleMode.IGNORE_SSV
    corrected: bool = True
    static_mode: bool = False
    static_file: Optional[str] = None

    # draft / heave
    draft_mode: DraftMode = DraftMode.OFF
    draft: float = 0.0
    draft_offset: float = 0.0
    draft_multiply: float = 1.0
    heave_mode: HeaveMode = HeaveMode.OFF
    heave_offset: float = 0.0
    heave_multiply: float = 1.0

    # lever arm between attitude sensor and sonar
    lever_mode: bool = False
    vru_offset: Vector3 = (0.0, 0.0, 0.0)
    sonar_offset: Vector3 = (0.0, 0.0, 0.0)

    # roll / pitch / heading
    rollbias_mode: RollBiasMode = RollBiasMode.OFF
    rollbias: float = 0.0
    rollbias_port: float = 0.0
    rollbias_stbd: float = 0.0
    pitchbias_mode: bool = False
    pitchbias: float = 0.0
    heading_mode: HeadingMode = HeadingMode.OFF
    heading_offset: float = 0.0

    # tide
    tide_mode: bool = False
    tide_file: Optional[str] = None
    tide_format: int = 1

    # sidescan recalculation
    ss_recalc: bool = False
    ss_pixel_size: float = 0.0
    ss_swath_width: float = 0.0
    ss_interpolate: int = 0

    # driver behaviour
    check_uptodate: bool = True
    strip_comments: bool = False

    @property
    def attitude_merged(self) -> bool:
        return self.attitude_mode or (self.nav_mode and self.nav_attitude)

    @property
    def recalc_mode(self) -> RecalcMode:
        """Pick the bathymetry recalculation strategy for these settings."""
        if self.svp_mode == SvpMode.RAYTRACE:
            return RecalcMode.RAYTRACE
        if (self.rollbias_mode != RollBiasMode.OFF or self.pitchbias_mode
                or self.attitude_merged):
            return RecalcMode.ROTATE
        if (self.draft_mode != DraftMode.OFF or self.heave_mode != HeaveMode.OFF
                or self.lever_mode or self.sonardepth_mode
                or self.navadj_mode == NavAdjMode.LLZ
                or (self.nav_mode and self.nav_draft)):
            return RecalcMode.OFFSET
        return RecalcMode.OFF

    def auxiliary_files(self) -> Dict[str, str]:
        """Return the auxiliary files whose modes are enabled, keyed by role."""
        files = {}
        if self.nav_mode:
            files['nav'] = self.nav_file
        if self.navadj_mode != NavAdjMode.OFF:
            files['navadj'] = self.navadj_file
        if self.attitude_mode:
            files['attitude'] = self.attitude_file
        if self.sonardepth_mode:
            files['sonardepth'] = self.sonardepth_file
        if self.edit_mode:
            files['edits'] = self.edit_file
        if self.svp_mode != SvpMode.OFF:
            files['svp'] = self.svp_file
        if self.tide_mode:
            files['tide'] = self.tide_file
        if self.static_mode:
            files['static'] = self.static_file
        return files

    def check_files(self):
        """
        Verify every enabled auxiliary file exists.

        Raises:
            ConfigurationError: naming the first missing path
        """
        for role, path in self.auxiliary_files().items():
            if not path:
                raise ConfigurationError(f"{role} mode enabled but no {role} file given")
            if not os.path.isfile(path):
                raise ConfigurationError(f"Unable to open {role} file: {path}")


def default_output_name(input_path: str) -> str:
    """Insert a 'p' before the suffix: line.mb -> linep.mb."""
    root, suffix = os.path.splitext(input_path)
    return f"{root}p{suffix}"


def parameter_path(input_path: str) -> str:
    return input_path + PARAMETER_SUFFIX


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _flag(tokens: List[str]) -> bool:
    return int(float(tokens[0])) != 0


def _int(tokens: List[str]) -> int:
    return int(float(tokens[0]))


def _float(tokens: List[str]) -> float:
    return float(tokens[0])


def _path(tokens: List[str]) -> str:
    return ' '.join(tokens)


def _enum(enum_type):
    return lambda tokens: enum_type(int(float(tokens[0])))


def _pair(tokens: List[str]) -> Tuple[float, float]:
    return float(tokens[0]), float(tokens[1])


# KEY -> (field name, converter)
_SCALAR_KEYS = {
    'OUTFILE': ('output_path', _path),
    'DEBUGLEVEL': ('debug_level', _int),
    'NAVMODE': ('nav_mode', _flag),
    'NAVFILE': ('nav_file', _path),
    'NAVFORMAT': ('nav_format', _int),
    'NAVHEADING': ('nav_heading', _flag),
    'NAVSPEED': ('nav_speed', _flag),
    'NAVDRAFT': ('nav_draft', _flag),
    'NAVATTITUDE': ('nav_attitude', _flag),
    'NAVINTERP': ('nav_interp', _enum(InterpMode)),
    'NAVTIMESHIFT': ('nav_timeshift', _float),
    'NAVADJMODE': ('navadj_mode', _enum(NavAdjMode)),
    'NAVADJFILE': ('navadj_file', _path),
    'NAVADJINTERP': ('navadj_interp', _enum(InterpMode)),
    'NAVADJPRECEDENCE': ('navadj_precedence', _flag),
    'ATTITUDEMODE': ('attitude_mode', _flag),
    'ATTITUDEFILE': ('attitude_file', _path),
    'ATTITUDEFORMAT': ('attitude_format', _int),
    'SONARDEPTHMODE': ('sonardepth_mode', _flag),
    'SONARDEPTHFILE': ('sonardepth_file', _path),
    'SONARDEPTHFORMAT': ('sonardepth_format', _int),
    'EDITSAVEMODE': ('edit_mode', _flag),
    'EDITSAVEFILE': ('edit_file', _path),
    'SVPMODE': ('svp_mode', _enum(SvpMode)),
    'SVPFILE': ('svp_file', _path),
    'SSVMODE': ('ssv_mode', _enum(SsvMode)),
    'SSV': ('ssv', _float),
    'TTMODE': ('tt_mode', _flag),
    'TTMULTIPLY': ('tt_multiply', _float),
    'ANGLEMODE': ('angle_mode', _enum(AngleMode)),
    'CORRECTED': ('corrected', _flag),
    'STATICMODE': ('static_mode', _flag),
    'STATICFILE': ('static_file', _path),
    'DRAFTMODE': ('draft_mode', _enum(DraftMode)),
    'DRAFT': ('draft', _float),
    'DRAFTOFFSET': ('draft_offset', _float),
    'DRAFTMULTIPLY': ('draft_multiply', _float),
    'HEAVEMODE': ('heave_mode', _enum(HeaveMode)),
    'HEAVEOFFSET': ('heave_offset', _float),
    'HEAVEMULTIPLY': ('heave_multiply', _float),
    'LEVERMODE': ('lever_mode', _flag),
    'ROLLBIASMODE': ('rollbias_mode', _enum(RollBiasMode)),
    'ROLLBIAS': ('rollbias', _float),
    'ROLLBIASPORT': ('rollbias_port', _float),
    'ROLLBIASSTBD': ('rollbias_stbd', _float),
    'PITCHBIASMODE': ('pitchbias_mode', _flag),
    'PITCHBIAS': ('pitchbias', _float),
    'HEADINGMODE': ('heading_mode', _enum(HeadingMode)),
    'HEADINGOFFSET': ('heading_offset', _float),
    'TIDEMODE': ('tide_mode', _flag),
    'TIDEFILE': ('tide_file', _path),
    'TIDEFORMAT': ('tide_format', _int),
    'SSRECALCMODE': ('ss_recalc', _flag),
    'SSPIXELSIZE': ('ss_pixel_size', _float),
    'SSSWATHWIDTH': ('ss_swath_width', _float),
    'SSINTERPOLATE': ('ss_interpolate', _int),
    'CHECKUPTODATE': ('check_uptodate', _flag),
    'STRIPCOMMENTS': ('strip_comments', _flag),
}

_VECTOR_KEYS = {
    'VRUOFFSETX': ('vru_offset', 0),
    'VRUOFFSETY': ('vru_offset', 1),
    'VRUOFFSETZ': ('vru_offset', 2),
    'SONAROFFSETX': ('sonar_offset', 0),
    'SONAROFFSETY': ('sonar_offset', 1),
    'SONAROFFSETZ': ('sonar_offset', 2),
}

_CUT_SHORTCUTS = {
    f"{kind.name}CUT{mode.name}": (kind, mode)
    for kind in CutKind for mode in CutMode
}

_PATH_FIELDS = ('output_path', 'nav_file', 'navadj_file', 'attitude_file',
                'sonardepth_file', 'edit_file', 'svp_file', 'static_file',
                'tide_file')

# Keys written by other tools that carry no meaning here.
_IGNORED_KEYS = {'FORMAT', 'EXPLICIT', 'NAVADJSPLINE', 'KLUGE001', 'KLUGE002'}


class _ConfigBuilder:
    """Accumulates parsed settings before the frozen config is built."""

    def __init__(self, source: str):
        self.source = source
        self.values = {}
        self.vectors = {'vru_offset': [0.0, 0.0, 0.0],
                        'sonar_offset': [0.0, 0.0, 0.0]}
        self.cuts = []

    def apply(self, key: str, tokens: List[str], lineno: int):
        key = key.upper()
        try:
            if key in _SCALAR_KEYS:
                name, convert = _SCALAR_KEYS[key]
                self.values[name] = convert(tokens)
            elif key in _VECTOR_KEYS:
                name, axis = _VECTOR_KEYS[key]
                self.vectors[name][axis] = float(tokens[0])
            elif key == 'RAYTRACE':
                if _flag(tokens):
                    self.values['svp_mode'] = SvpMode.RAYTRACE
            elif key == 'SOUNDSPEEDREF':
                if _flag(tokens) and self.values.get('svp_mode') != SvpMode.RAYTRACE:
                    self.values['svp_mode'] = SvpMode.SOUNDSPEEDREF
            elif key == 'DATACUT':
                self.cuts.append(DataCut(CutKind(int(tokens[0])), CutMode(int(tokens[1])),
                                         float(tokens[2]), float(tokens[3])))
            elif key in _CUT_SHORTCUTS:
                kind, mode = _CUT_SHORTCUTS[key]
                minimum, maximum = _pair(tokens)
                self.cuts.append(DataCut(kind, mode, minimum, maximum))
            elif key in _IGNORED_KEYS:
                pass
            else:
                logger.warning(f"{self.source}:{lineno}: unknown parameter {key} ignored")
        except (ValueError, IndexError) as e:
            raise ConfigurationError(
                f"{self.source}:{lineno}: bad value for {key}: {' '.join(tokens)!r} ({e})")

    def build(self, base_dir: str) -> ProcessConfig:
        values = dict(self.values)
        for name, vector in self.vectors.items():
            values[name] = tuple(vector)
        values['cuts'] = tuple(self.cuts)
        for name in _PATH_FIELDS:
            path = values.get(name)
            if path and not os.path.isabs(path):
                values[name] = os.path.normpath(os.path.join(base_dir, path))
        return ProcessConfig(**values)


def parse_parameter_text(text: str, source: str = '<string>',
                         base_dir: str = '.') -> ProcessConfig:
    """
    Parse the legacy ``KEY value`` parameter format.

    Args:
        text: Parameter file contents
        source: Name used in diagnostics
        base_dir: Directory relative auxiliary paths are resolved against

    Returns:
        ProcessConfig with every key applied
    """
    builder = _ConfigBuilder(source)
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        parts = line.split()
        if len(parts) < 2:
            logger.warning(f"{source}:{lineno}: parameter {parts[0]} has no value")
            continue
        builder.apply(parts[0], parts[1:], lineno)
    return builder.build(base_dir)


def parse_yaml_text(text: str, source: str = '<string>',
                    base_dir: str = '.') -> ProcessConfig:
    """Parse a YAML mapping of lower-case parameter keys."""
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{source}: invalid YAML: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: expected a mapping of parameters")

    builder = _ConfigBuilder(source)
    for key, value in data.items():
        if key.upper() == 'DATACUT' and isinstance(value, list) \
                and value and isinstance(value[0], (list, tuple)):
            for cut in value:
                builder.apply(key, [str(v) for v in cut], 0)
            continue
        if isinstance(value, bool):
            tokens = ['1' if value else '0']
        elif isinstance(value, (list, tuple)):
            tokens = [str(v) for v in value]
        else:
            tokens = str(value).split()
        builder.apply(key, tokens, 0)
    return builder.build(base_dir)


def load_config(path: str, input_path: Optional[str] = None) -> ProcessConfig:
    """
    Load the configuration for one input file.

    A missing parameter file is not an error: defaults are returned with
    the output name derived from the input.

    Args:
        path: Parameter file (.par) or YAML file (.yaml/.yml)
        input_path: Swath file the parameters belong to

    Returns:
        ProcessConfig with ``output_path`` always set when input_path is given
    """
    base_dir = os.path.dirname(os.path.abspath(path))
    if not os.path.isfile(path):
        logger.info(f"No parameter file {path}, using default settings")
        config = ProcessConfig()
    else:
        try:
            with open(path, 'r') as f:
                text = f.read()
        except OSError as e:
            raise ConfigurationError(f"Unable to read parameter file {path}: {e}")
        if path.endswith(('.yaml', '.yml')):
            config = parse_yaml_text(text, path, base_dir)
        else:
            config = parse_parameter_text(text, path, base_dir)

    if input_path is not None and not config.output_path:
        config = replace(config, output_path=default_output_name(input_path))
    return config
