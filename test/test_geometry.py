import pytest

from swathproc.geometry import (course_made_good, lever_heave, normalize_heading,
                                rollpitch_to_takeoff, takeoff_to_rollpitch, takeoff_to_xyz,
                                xyz_to_takeoff)


@pytest.mark.parametrize('theta, phi', [(0.0, 0.0), (30.0, 0.0), (30.0, 180.0),
                                         (45.0, 90.0), (60.0, -20.0), (75.0, 160.0)])
def test_rollpitch_round_trip(theta, phi):
    alpha, beta = takeoff_to_rollpitch(theta, phi)
    theta2, phi2 = rollpitch_to_takeoff(alpha, beta)

    x1, y1, z1 = takeoff_to_xyz(1.0, theta, phi)
    x2, y2, z2 = takeoff_to_xyz(1.0, theta2, phi2)
    assert (x2, y2, z2) == pytest.approx((x1, y1, z1), abs=1e-12)


def test_nadir_beam_has_beta_of_ninety():
    alpha, beta = takeoff_to_rollpitch(0.0, 0.0)
    assert alpha == pytest.approx(0.0)
    assert beta == pytest.approx(90.0)


def test_roll_moves_nadir_beam_across_track():
    alpha, beta = takeoff_to_rollpitch(0.0, 0.0)
    theta, phi = rollpitch_to_takeoff(alpha, beta - 10.0)

    assert theta == pytest.approx(10.0)
    assert phi == pytest.approx(0.0)


def test_xyz_to_takeoff():
    theta, phi = xyz_to_takeoff(-100.0, 0.0, 100.0)
    assert theta == pytest.approx(45.0)
    assert phi == pytest.approx(180.0)


def test_xyz_to_takeoff_zero_vector():
    assert xyz_to_takeoff(0.0, 0.0, 0.0) == (0.0, 0.0)


def test_lever_heave_is_zero_when_level():
    assert lever_heave((0.0, 0.0, 0.0), (1.0, 2.0, 3.0), 0.0, 0.0) == pytest.approx(0.0)


def test_lever_heave_from_roll():
    # sonar 2 m to starboard of the attitude sensor, starboard down 30 degrees
    heave = lever_heave((0.0, 0.0, 0.0), (2.0, 0.0, 0.0), 30.0, 0.0)
    assert heave == pytest.approx(1.0)


def test_lever_heave_from_pitch():
    # sonar 4 m forward, bow up 30 degrees lifts it 2 m
    heave = lever_heave((0.0, 0.0, 0.0), (0.0, 4.0, 0.0), 0.0, 30.0)
    assert heave == pytest.approx(-2.0)


def test_course_made_good_east():
    heading, speed, distance = course_made_good(10.0, 0.0, 10.001, 0.0, 10.0)

    assert heading == pytest.approx(90.0, abs=1e-6)
    assert distance == pytest.approx(111.32, rel=1e-3)
    assert speed == pytest.approx(3.6 * distance / 10.0)


def test_course_made_good_south_west():
    heading, _, _ = course_made_good(0.0, 0.0, -0.001, -0.001, 1.0)
    assert heading == pytest.approx(225.0, abs=0.5)


def test_course_made_good_without_elapsed_time():
    _, speed, _ = course_made_good(0.0, 0.0, 0.001, 0.0, 0.0)
    assert speed == 0.0


@pytest.mark.parametrize('heading, expected', [(370.0, 10.0), (-10.0, 350.0), (360.0, 0.0)])
def test_normalize_heading(heading, expected):
    assert normalize_heading(heading) == pytest.approx(expected)
