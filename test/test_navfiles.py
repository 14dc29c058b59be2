import pytest

from swathproc.config import NavAdjMode
from swathproc.navfiles import (calendar_to_epoch, fix_y2k, julian_to_epoch, load_attitude,
                                load_navadj, load_navigation, load_sonardepth, load_static,
                                load_tide)


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_time_conversions():
    assert calendar_to_epoch(1970, 1, 2) == 86400.0
    assert calendar_to_epoch(2020, 6, 15, 12, 0, 1.5) == pytest.approx(1592222401.5)
    assert julian_to_epoch(2020, 167, 12, 0, 1.5) == pytest.approx(1592222401.5)
    assert fix_y2k(99) == 1999
    assert fix_y2k(5) == 2005
    assert fix_y2k(2005) == 2005


def test_epoch_navigation(tmp_path):
    path = write(tmp_path, 'a.nav', "0 0 0\n10 1 1\n")

    nav = load_navigation(path, fmt=1)

    assert nav.columns == ('lon', 'lat')
    values, _ = nav.interpolate(5.0)
    assert values == pytest.approx({'lon': 0.5, 'lat': 0.5})


def test_calendar_navigation_with_timeshift(tmp_path):
    path = write(tmp_path, 'a.nav', "2020 06 15 12 00 00.0 11.0 58.5\n"
                                    "2020 06 15 12 00 10.0 11.1 58.6\n")

    nav = load_navigation(path, fmt=2, timeshift=2.0)

    assert nav.start_time == pytest.approx(calendar_to_epoch(2020, 6, 15, 12) + 2.0)


def test_julian_day_minute_navigation(tmp_path):
    path = write(tmp_path, 'a.nav', "2020 167 720 1.5 11.0 58.5\n")

    nav = load_navigation(path, fmt=4)

    assert nav.start_time == pytest.approx(1592222401.5)


def test_full_navigation_columns(tmp_path):
    path = write(tmp_path, 'a.nav',
                 "2020 06 15 12 00 00.0 100.0 11.0 58.5 90.0 8.0 2.5 1.0 -0.5 0.1\n"
                 "2020 06 15 12 00 01.0 101.0 11.1 58.6 92.0 8.5 2.6 1.2 -0.4 0.2\n")

    nav = load_navigation(path, fmt=9)

    assert nav.columns == ('lon', 'lat', 'heading', 'speed', 'draft', 'roll', 'pitch', 'heave')
    values, _ = nav.interpolate(100.5)
    assert values['heading'] == pytest.approx(91.0)
    assert values['draft'] == pytest.approx(2.55)


def test_short_lines_drop_optional_columns(tmp_path, caplog):
    path = write(tmp_path, 'a.nav',
                 "2020 06 15 12 00 00.0 100.0 11.0 58.5 90.0 8.0\n"
                 "2020 06 15 12 00 01.0 101.0 11.1 58.6\n")

    nav = load_navigation(path, fmt=9)

    assert nav.columns == ('lon', 'lat')
    assert 'heading, speed missing on some lines' in caplog.text


def test_complete_short_lines_do_not_warn(tmp_path, caplog):
    path = write(tmp_path, 'a.nav', "0 11.0 58.5\n1 11.1 58.6\n")

    load_navigation(path, fmt=1)

    assert 'missing on some lines' not in caplog.text


def test_malformed_and_out_of_order_lines_are_skipped(tmp_path, caplog):
    path = write(tmp_path, 'a.nav', "# header\n0 0 0\ngarbage line\n5 0.5 0.5\n4 9 9\n"
                                    "5 0.6 0.6\n10 1 1\n")

    nav = load_navigation(path, fmt=1)

    assert list(nav.times) == [0.0, 5.0, 10.0]
    assert 'malformed' in caplog.text
    assert 'out of time order' in caplog.text


def test_empty_navigation_is_an_error(tmp_path):
    path = write(tmp_path, 'a.nav', "# nothing\n")
    with pytest.raises(ValueError):
        load_navigation(path, fmt=1)


def test_nmea_gga_timed_by_zda(tmp_path):
    path = write(tmp_path, 'a.nmea',
                 "$GPGGA,115959.00,5830.0000,N,01100.0000,E,1,08,0.9,0.0,M,,M,,*47\n"
                 "$GPZDA,120000.00,15,06,2020,00,00*6A\n"
                 "$GPGGA,120001.00,5830.0000,N,01100.0000,E,1,08,0.9,0.0,M,,M,,*47\n"
                 "$GPGLL,5830.6000,N,01101.2000,E,120002.00,A*2C\n"
                 "$GPGGA,120003.00,5830.6000,S,01101.2000,W,1,08,0.9,0.0,M,,M,,*47\n")

    nav = load_navigation(path, fmt=7)

    day = calendar_to_epoch(2020, 6, 15)
    assert list(nav.times) == pytest.approx([day + 43201.0, day + 43203.0])
    assert nav.column('lat')[0] == pytest.approx(58.5)
    assert nav.column('lon')[0] == pytest.approx(11.0)
    assert nav.column('lat')[1] == pytest.approx(-58.51)
    assert nav.column('lon')[1] == pytest.approx(-11.02)


def test_nmea_gll(tmp_path):
    path = write(tmp_path, 'a.nmea',
                 "$GPZDA,120000.00,15,06,2020,00,00*6A\n"
                 "$GPGLL,5830.6000,N,01101.2000,E,120002.00,A*2C\n")

    nav = load_navigation(path, fmt=6)

    assert len(nav) == 1
    assert nav.column('lon')[0] == pytest.approx(11.02)


def test_simrad90_fixed_columns(tmp_path):
    line = "  150620 12000150 5830.0000N 01100.0000E"
    path = write(tmp_path, 'a.nav', line + "\n")

    nav = load_navigation(path, fmt=8)

    assert nav.start_time == pytest.approx(calendar_to_epoch(2020, 6, 15, 12, 0, 1.5))
    assert nav.column('lat')[0] == pytest.approx(58.5)
    assert nav.column('lon')[0] == pytest.approx(11.0)


def test_navadj_lon_lat_depth(tmp_path):
    path = write(tmp_path, 'a.nav.adj',
                 "2020 06 15 12 00 00.0 100.0 11.0 58.5 90 8 2.5 1 -0.5 0.1 0.3\n"
                 "2020 06 15 12 00 01.0 101.0 11.1 58.6 90 8 2.5 1 -0.5 0.1 0.5\n")

    navadj = load_navadj(path, NavAdjMode.LLZ)

    values, _ = navadj.interpolate(100.5)
    assert values['z'] == pytest.approx(0.4)
    assert values['lon'] == pytest.approx(11.05)


def test_navadj_depth_mode_requires_depth_column(tmp_path):
    path = write(tmp_path, 'a.nav.adj', "2020 06 15 12 00 00.0 100.0 11.0 58.5\n")

    assert len(load_navadj(path, NavAdjMode.LL)) == 1
    with pytest.raises(ValueError):
        load_navadj(path, NavAdjMode.LLZ)


@pytest.mark.parametrize('fmt, line', [
    (1, "1592222401.5 0.42"),
    (2, "2020 06 15 12 00 01.5 0.42"),
    (3, "2020 167 12 00 01.5 0.42"),
    (4, "2020 167 720 1.5 0.42"),
])
def test_tide_formats(tmp_path, fmt, line):
    path = write(tmp_path, 'a.tide', line + "\n")

    tide = load_tide(path, fmt)

    assert tide.start_time == pytest.approx(1592222401.5)
    assert tide.column('tide')[0] == pytest.approx(0.42)


def test_attitude_and_sonardepth(tmp_path):
    attitude = load_attitude(write(tmp_path, 'a.att', "0 1.0 2.0 0.1\n1 3.0 4.0 0.3\n"))
    depth = load_sonardepth(write(tmp_path, 'a.dep', "0 5.0\n1 7.0\n"))

    assert attitude.interpolate(0.5)[0] == pytest.approx({'roll': 2.0, 'pitch': 3.0,
                                                          'heave': 0.2})
    assert depth.interpolate(0.5)[0] == pytest.approx({'depth': 6.0})


def test_attitude_and_sonardepth_calendar_times(tmp_path):
    attitude = load_attitude(write(tmp_path, 'a.att', "2020 06 15 12 00 01.5 1.0 2.0 0.1\n"), 2)
    depth = load_sonardepth(write(tmp_path, 'a.dep', "2020 167 720 1.5 5.0\n"), 4)

    assert attitude.start_time == pytest.approx(1592222401.5)
    assert attitude.column('heave')[0] == pytest.approx(0.1)
    assert depth.start_time == pytest.approx(1592222401.5)
    assert depth.column('depth')[0] == pytest.approx(5.0)


def test_unsupported_attitude_format(tmp_path):
    with pytest.raises(ValueError, match='attitude format 5'):
        load_attitude(write(tmp_path, 'a.att', "0 1.0 2.0 0.1\n"), 5)


def test_static_corrections(tmp_path):
    path = write(tmp_path, 'a.static', "# beam offset\n0 0.1\n5 -0.2\nbad\n")
    assert load_static(path) == {0: 0.1, 5: -0.2}
