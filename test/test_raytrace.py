import math

import pytest

from swathproc.config import AngleMode
from swathproc.raytrace import RayStatus, RayTracer, trace_ray
from swathproc.svp import VelocityProfile


@pytest.fixture
def gradient_profile():
    # +0.02 1/s down to 1000 m, then constant
    return VelocityProfile.from_samples([(0.0, 1500.0), (1000.0, 1520.0)])


def test_vertical_ray_homogeneous_water():
    profile = VelocityProfile.homogeneous(1500.0)
    result = trace_ray(profile, 0.0, 0.0, 1.0, surface_sound_speed=1500.0)

    assert result.ok
    assert result.depth == pytest.approx(1500.0)
    assert result.horizontal_range == pytest.approx(0.0, abs=1e-9)
    assert result.travel_time == pytest.approx(1.0)


def test_oblique_ray_homogeneous_water():
    profile = VelocityProfile.homogeneous(1500.0)
    result = trace_ray(profile, 5.0, 45.0, 0.5)

    assert result.horizontal_range == pytest.approx(750.0 * math.sin(math.radians(45.0)))
    assert result.depth == pytest.approx(5.0 + 750.0 * math.cos(math.radians(45.0)))


def test_vertical_ray_in_gradient_matches_exponential_solution(gradient_profile):
    result = trace_ray(gradient_profile, 0.0, 0.0, 0.5)

    g = 0.02
    expected = 1500.0 / g * (math.exp(g * 0.5) - 1.0)
    assert result.depth == pytest.approx(expected, rel=1e-9)
    assert result.horizontal_range == pytest.approx(0.0, abs=1e-9)


def test_arc_travel_time_recomputed_from_endpoint(gradient_profile):
    theta0 = math.radians(30.0)
    result = trace_ray(gradient_profile, 0.0, 30.0, 0.4)
    assert result.status == RayStatus.DOWN

    # Snell parameter is conserved; the end angle follows from the end depth
    g = 0.02
    p = math.sin(theta0) / 1500.0
    theta1 = math.asin(p * (1500.0 + g * result.depth))
    travel_time = math.log(math.tan(0.5 * theta1) / math.tan(0.5 * theta0)) / g
    x = (math.cos(theta0) - math.cos(theta1)) / (p * g)

    assert travel_time == pytest.approx(0.4, rel=1e-6)
    assert result.horizontal_range == pytest.approx(x, rel=1e-6)
    assert result.travel_time == pytest.approx(0.4)


def test_ray_crosses_layers_and_keeps_travel_time(gradient_profile):
    # long enough to leave the gradient layer and continue in constant water
    result = trace_ray(gradient_profile, 0.0, 20.0, 1.2)

    assert result.ok
    assert result.depth > 1000.0
    assert result.travel_time == pytest.approx(1.2)


def test_depth_increases_with_travel_time(gradient_profile):
    tracer = RayTracer(gradient_profile)
    depths = [tracer.trace(0.0, 40.0, t).depth for t in (0.1, 0.3, 0.6, 0.9)]
    assert depths == sorted(depths)


def test_negative_depth_offset_applies_static_shift():
    profile = VelocityProfile.homogeneous(1500.0)
    shifted = trace_ray(profile, -2.0, 0.0, 0.1)
    reference = trace_ray(profile, 0.0, 0.0, 0.1)

    assert shifted.ok
    assert shifted.depth == pytest.approx(reference.depth - 2.0)


def test_travel_time_beyond_profile_is_out_of_bottom():
    profile = VelocityProfile.homogeneous(1500.0)
    result = trace_ray(profile, 0.0, 0.0, 10.0)

    assert not result.ok
    assert result.status == RayStatus.OUT_BOTTOM


def test_upgoing_ray_leaves_through_top():
    profile = VelocityProfile.homogeneous(1500.0)
    result = trace_ray(profile, 10.0, 150.0, 1.0)

    assert result.status == RayStatus.OUT_TOP


def test_snell_correction_uses_recorded_surface_sound_speed():
    profile = VelocityProfile.homogeneous(1500.0)
    ignored = trace_ray(profile, 0.0, 30.0, 0.5, surface_sound_speed=1450.0,
                        angle_mode=AngleMode.IGNORE_SSV)
    corrected = trace_ray(profile, 0.0, 30.0, 0.5, surface_sound_speed=1450.0,
                          angle_mode=AngleMode.SNELL)

    angle = math.asin(math.sin(math.radians(30.0)) * 1500.0 / 1450.0)
    assert corrected.horizontal_range == pytest.approx(750.0 * math.sin(angle))
    assert ignored.horizontal_range == pytest.approx(750.0 * 0.5)


def test_find_layer(gradient_profile):
    tracer = RayTracer(gradient_profile)
    assert tracer.find_layer(0.0) == 0
    assert tracer.find_layer(500.0) == 0
    assert tracer.find_layer(2000.0) == 1
    assert tracer.find_layer(-1.0) == -1
