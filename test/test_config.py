import logging
import os

import pytest

from swathproc.config import (AngleMode, ConfigurationError, CutKind, CutMode, DataCut,
                              DraftMode, InterpMode, NavAdjMode, ProcessConfig, RecalcMode,
                              RollBiasMode, SvpMode, default_output_name, load_config,
                              parameter_path, parse_parameter_text, parse_yaml_text)


PARAMETERS = """
## swath reprocessing parameters
OUTFILE line001p.sw
NAVMODE 1
NAVFILE nav/line001.nav
NAVFORMAT 9
NAVHEADING 1
NAVINTERP 1
NAVTIMESHIFT -0.5
RAYTRACE 1
SVPFILE cast1.svp
ANGLEMODE 1
DRAFTMODE 3
DRAFTOFFSET 0.25
DRAFTMULTIPLY 1.1
ROLLBIASMODE 2
ROLLBIASPORT -0.3
ROLLBIASSTBD 0.4
VRUOFFSETY 1.5
SONAROFFSETZ 0.75
DATACUT 0 0 0 4
BATHCUTDISTANCE -100 -80
SSCUTSPEED 2 12
CHECKUPTODATE 0
"""


def test_parse_parameter_file():
    config = parse_parameter_text(PARAMETERS, base_dir='/data/survey')

    assert config.output_path == '/data/survey/line001p.sw'
    assert config.nav_mode
    assert config.nav_file == '/data/survey/nav/line001.nav'
    assert config.nav_heading
    assert config.nav_interp == InterpMode.SPLINE
    assert config.nav_timeshift == -0.5
    assert config.svp_mode == SvpMode.RAYTRACE
    assert config.svp_file == '/data/survey/cast1.svp'
    assert config.angle_mode == AngleMode.SNELL
    assert config.draft_mode == DraftMode.MULTIPLY_OFFSET
    assert config.draft_multiply == pytest.approx(1.1)
    assert config.rollbias_mode == RollBiasMode.DOUBLE
    assert config.rollbias_port == -0.3
    assert config.vru_offset == (0.0, 1.5, 0.0)
    assert config.sonar_offset == (0.0, 0.0, 0.75)
    assert not config.check_uptodate
    assert config.cuts == (
        DataCut(CutKind.BATH, CutMode.NUMBER, 0.0, 4.0),
        DataCut(CutKind.BATH, CutMode.DISTANCE, -100.0, -80.0),
        DataCut(CutKind.SS, CutMode.SPEED, 2.0, 12.0),
    )
    assert config.recalc_mode == RecalcMode.RAYTRACE


def test_absolute_paths_are_kept():
    config = parse_parameter_text("TIDEMODE 1\nTIDEFILE /tides/station.txt\n", base_dir='/data')
    assert config.tide_file == '/tides/station.txt'


def test_soundspeedref_does_not_override_raytrace():
    config = parse_parameter_text("RAYTRACE 1\nSOUNDSPEEDREF 1\n")
    assert config.svp_mode == SvpMode.RAYTRACE

    config = parse_parameter_text("SOUNDSPEEDREF 1\n")
    assert config.svp_mode == SvpMode.SOUNDSPEEDREF


def test_unknown_key_is_logged_and_ignored(caplog):
    with caplog.at_level(logging.WARNING):
        config = parse_parameter_text("FROBNICATE 3\nDRAFT 2.5\n", source='line.par')

    assert config.draft == 2.5
    assert 'FROBNICATE' in caplog.text


def test_attitude_and_sonardepth_formats_are_parameters(caplog):
    with caplog.at_level(logging.WARNING):
        config = parse_parameter_text("ATTITUDEFORMAT 2\nSONARDEPTHFORMAT 3\n", source='line.par')

    assert config.attitude_format == 2
    assert config.sonardepth_format == 3
    assert 'unknown parameter' not in caplog.text


def test_bad_value_names_key_and_line():
    with pytest.raises(ConfigurationError, match=r'line.par:2: bad value for NAVFORMAT'):
        parse_parameter_text("NAVMODE 1\nNAVFORMAT nine\n", source='line.par')


def test_bad_mode_value_is_rejected():
    with pytest.raises(ConfigurationError):
        parse_parameter_text("SVPMODE 7\n")


def test_yaml_configuration():
    text = """
navadjmode: 2
navadjfile: adjusted.nav
navadjprecedence: false
heavemode: 1
heaveoffset: 0.1
datacut:
  - [1, 1, -5, 5]
  - [2, 0, 0, 10]
stripcomments: true
"""
    config = parse_yaml_text(text, base_dir='/data')

    assert config.navadj_mode == NavAdjMode.LLZ
    assert config.navadj_file == '/data/adjusted.nav'
    assert not config.navadj_precedence
    assert config.heave_offset == pytest.approx(0.1)
    assert config.strip_comments
    assert [c.kind for c in config.cuts] == [CutKind.AMP, CutKind.SS]
    assert config.recalc_mode == RecalcMode.OFFSET


def test_yaml_must_be_mapping():
    with pytest.raises(ConfigurationError):
        parse_yaml_text("- just\n- a list\n")


def test_missing_parameter_file_gives_defaults(tmp_path):
    input_path = str(tmp_path / 'line001.sw')

    config = load_config(parameter_path(input_path), input_path=input_path)

    assert config.output_path == str(tmp_path / 'line001p.sw')
    assert config.recalc_mode == RecalcMode.OFF
    assert config.auxiliary_files() == {}


def test_load_config_resolves_relative_to_parameter_file(tmp_path):
    par = tmp_path / 'line001.sw.par'
    par.write_text("EDITSAVEMODE 1\nEDITSAVEFILE line001.sw.esf\n")

    config = load_config(str(par), input_path=str(tmp_path / 'line001.sw'))

    assert config.edit_file == os.path.join(str(tmp_path), 'line001.sw.esf')
    assert config.auxiliary_files() == {'edits': config.edit_file}


def test_check_files_reports_missing_path(tmp_path):
    missing = str(tmp_path / 'nowhere.nav')
    config = ProcessConfig(nav_mode=True, nav_file=missing)

    with pytest.raises(ConfigurationError, match='nowhere.nav'):
        config.check_files()


def test_enabled_mode_without_file():
    with pytest.raises(ConfigurationError):
        ProcessConfig(tide_mode=True).check_files()


@pytest.mark.parametrize('config, mode', [
    (ProcessConfig(), RecalcMode.OFF),
    (ProcessConfig(svp_mode=SvpMode.RAYTRACE, pitchbias_mode=True), RecalcMode.RAYTRACE),
    (ProcessConfig(pitchbias_mode=True), RecalcMode.ROTATE),
    (ProcessConfig(attitude_mode=True), RecalcMode.ROTATE),
    (ProcessConfig(nav_mode=True, nav_attitude=True), RecalcMode.ROTATE),
    (ProcessConfig(lever_mode=True), RecalcMode.OFFSET),
    (ProcessConfig(nav_mode=True, nav_draft=True), RecalcMode.OFFSET),
    (ProcessConfig(nav_mode=True), RecalcMode.OFF),
])
def test_recalc_mode_selection(config, mode):
    assert config.recalc_mode == mode


@pytest.mark.parametrize('name, expected', [
    ('line001.sw', 'line001p.sw'),
    ('/data/line001', '/data/line001p'),
    ('a.b/line.mb57', 'a.b/linep.mb57'),
])
def test_default_output_name(name, expected):
    assert default_output_name(name) == expected
