#!/usr/bin/env python3
"""
Ray Tracer

Traces an acoustic ray through a layered sound velocity profile. Each
layer between two profile nodes has either a constant velocity gradient
(ray path is a circular arc) or a constant velocity (straight line).

Angles passed in are take-off angles in degrees from vertical. Internally
the ray direction is carried as theta in radians, 0 pointing straight
down and pi straight up, with the Snell ray parameter p = sin(theta) / v
conserved through the whole profile.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np

from .config import AngleMode
from .svp import VelocityProfile


GRADIENT_TOLERANCE = 0.00001


class RayStatus(IntEnum):
    DOWN = 1
    UP = 2
    DOWN_TURN = 3
    UP_TURN = 4
    OUT_TOP = 5
    OUT_BOTTOM = 6


@dataclass
class RayResult:
    """Result of tracing one ray.

    ``horizontal_range`` is unsigned; the forward angle decides where the
    sounding lies. ``depth`` already includes any static shift.
    """
    horizontal_range: float
    depth: float
    travel_time: float
    status: RayStatus

    @property
    def ok(self) -> bool:
        return self.status not in (RayStatus.OUT_TOP, RayStatus.OUT_BOTTOM)


@dataclass
class _Ray:
    layer: int
    x: float
    z: float
    theta: float
    p: float
    down: bool
    time_left: float
    status: RayStatus


class RayTracer:
    """
    Ray tracer bound to one velocity profile.

    Layer geometry is computed once so that tracing every beam of every
    ping only walks the precomputed arrays.
    """

    def __init__(self, profile: VelocityProfile):
        self.profile = profile
        self.depth_top = profile.depth[:-1]
        self.depth_bottom = profile.depth[1:]
        self.vel_top = profile.velocity[:-1]
        self.vel_bottom = profile.velocity[1:]
        self.gradient = (self.vel_bottom - self.vel_top) / (self.depth_bottom - self.depth_top)
        self.homogeneous = np.abs(self.gradient) <= GRADIENT_TOLERANCE
        self.layer_count = len(self.gradient)
        # a ray can cross each boundary only a bounded number of times without
        # spending time; beyond that it is trapped on a boundary
        self.max_idle_steps = 2 * self.layer_count + 2

    @property
    def surface_depth(self) -> float:
        return float(self.profile.depth[0])

    def find_layer(self, z: float) -> int:
        """Index of the layer containing depth z, or -1 if outside the profile."""
        if z < self.depth_top[0] or z > self.depth_bottom[-1]:
            return -1
        k = int(np.searchsorted(self.depth_bottom, z, side='left'))
        return min(k, self.layer_count - 1)

    def trace(self, depth_offset: float, takeoff_angle: float, travel_time: float,
              surface_velocity: float = 0.0, null_angle: float = 0.0,
              angle_mode: AngleMode = AngleMode.IGNORE_SSV) -> RayResult:
        """
        Trace a ray for a given one-way travel time.

        A depth offset above the top of the profile (sonar above the
        surface after heave and draft) is traced from the top of the
        profile and the difference is added back to the final depth as a
        static shift.

        Args:
            depth_offset: Sonar depth below the surface (heave + draft + lever heave)
            takeoff_angle: Take-off angle from vertical in degrees
            travel_time: One-way travel time in seconds
            surface_velocity: Sound speed the take-off angle was computed with
            null_angle: Array null angle in degrees (SNELL_NULL mode)
            angle_mode: How the surface sound speed adjusts the take-off angle

        Returns:
            RayResult; OUT_TOP / OUT_BOTTOM statuses mean the travel time
            could not be matched inside the profile
        """
        static_shift = 0.0
        source_depth = depth_offset
        if depth_offset < self.surface_depth:
            static_shift = depth_offset - self.surface_depth
            source_depth = self.surface_depth

        layer = self.find_layer(source_depth)
        if layer < 0:
            return RayResult(0.0, source_depth + static_shift, 0.0, RayStatus.OUT_BOTTOM)
        v_source = self.vel_top[layer] + self.gradient[layer] * (source_depth - self.depth_top[layer])

        angle = self._adjust_angle(takeoff_angle, surface_velocity, v_source, null_angle, angle_mode)
        theta = math.radians(abs(angle))
        down = theta < 0.5 * math.pi
        ray = _Ray(layer=layer, x=0.0, z=source_depth, theta=theta,
                   p=math.sin(theta) / v_source, down=down, time_left=travel_time,
                   status=RayStatus.DOWN if down else RayStatus.UP)

        idle_steps = 0
        while ray.time_left > 0.0:
            if ray.layer < 0:
                ray.status = RayStatus.OUT_TOP
                break
            if ray.layer >= self.layer_count:
                ray.status = RayStatus.OUT_BOTTOM
                break
            if idle_steps > self.max_idle_steps:
                # ray trapped horizontally on a layer boundary
                ray.x += self.profile.velocity_at(ray.z) * ray.time_left
                ray.time_left = 0.0
                break

            if self.homogeneous[ray.layer]:
                dt = self._trace_line(ray)
            elif ray.p > 0.0:
                dt = self._trace_arc(ray)
            else:
                dt = self._trace_vertical(ray)
            idle_steps = idle_steps + 1 if dt <= 0.0 else 0

        return RayResult(horizontal_range=ray.x,
                         depth=ray.z + static_shift,
                         travel_time=travel_time - ray.time_left,
                         status=ray.status)

    @staticmethod
    def _adjust_angle(angle: float, surface_velocity: float, v_source: float,
                      null_angle: float, angle_mode: AngleMode) -> float:
        if surface_velocity <= 0.0 or angle_mode == AngleMode.IGNORE_SSV:
            return angle
        if angle_mode == AngleMode.SNELL:
            ratio = math.sin(math.radians(angle)) / surface_velocity * v_source
            return math.degrees(math.asin(max(-1.0, min(1.0, ratio))))
        diff = angle - null_angle
        ratio = math.sin(math.radians(diff)) / surface_velocity * v_source
        return null_angle + math.degrees(math.asin(max(-1.0, min(1.0, ratio))))

    def _leave_layer(self, ray: _Ray, dt: float, down: bool):
        ray.time_left -= dt
        ray.layer += 1 if down else -1
        if down != ray.down:
            ray.status = RayStatus.DOWN_TURN if down else RayStatus.UP_TURN
        ray.down = down

    def _trace_line(self, ray: _Ray) -> float:
        k = ray.layer
        v = self.vel_top[k]
        sin_theta = min(ray.p * v, 1.0)
        cos_theta = math.sqrt(max(0.0, 1.0 - sin_theta * sin_theta))
        vx = v * sin_theta
        vz = v * cos_theta if ray.down else -v * cos_theta
        z_exit = self.depth_bottom[k] if ray.down else self.depth_top[k]

        ray.theta = math.asin(sin_theta) if ray.down else math.pi - math.asin(sin_theta)

        dt = (z_exit - ray.z) / vz if vz != 0.0 else math.inf
        if dt >= ray.time_left:
            dt = ray.time_left
            ray.x += vx * dt
            ray.z += vz * dt
            ray.time_left = 0.0
            return dt
        ray.x += vx * dt
        ray.z = z_exit
        self._leave_layer(ray, dt, ray.down)
        return dt

    def _trace_vertical(self, ray: _Ray) -> float:
        k = ray.layer
        g = self.gradient[k]
        v = self.vel_top[k] + g * (ray.z - self.depth_top[k])
        sign = 1.0 if ray.down else -1.0
        v_exit = self.vel_bottom[k] if ray.down else self.vel_top[k]

        dt = math.log(v_exit / v) / (sign * g)
        if dt >= ray.time_left:
            dt = ray.time_left
            v_final = v * math.exp(sign * g * dt)
            ray.z = self.depth_top[k] + (v_final - self.vel_top[k]) / g
            ray.time_left = 0.0
            return dt
        ray.z = self.depth_bottom[k] if ray.down else self.depth_top[k]
        self._leave_layer(ray, max(dt, 0.0), ray.down)
        return dt

    def _trace_arc(self, ray: _Ray) -> float:
        k = ray.layer
        g = self.gradient[k]
        p = ray.p
        sin_bottom = p * self.vel_bottom[k]
        sin_top = p * self.vel_top[k]

        # angle at which the ray leaves the layer and the direction it leaves in
        if ray.down:
            if sin_bottom < 1.0:
                theta_exit, exit_down = math.asin(sin_bottom), True
            else:
                theta_exit, exit_down = math.pi - math.asin(min(sin_top, 1.0)), False
        else:
            if sin_top < 1.0:
                theta_exit, exit_down = math.pi - math.asin(sin_top), False
            else:
                theta_exit, exit_down = math.asin(min(sin_bottom, 1.0)), True

        half_tan = math.tan(0.5 * ray.theta)
        dt = math.log(math.tan(0.5 * theta_exit) / half_tan) / g
        if dt >= ray.time_left:
            dt = ray.time_left
            theta_final = 2.0 * math.atan(half_tan * math.exp(g * dt))
            ray.time_left = 0.0
            final_down = math.cos(theta_final) > 0.0
            self._arc_to(ray, theta_final)
            if final_down != ray.down:
                ray.status = RayStatus.DOWN_TURN if final_down else RayStatus.UP_TURN
                ray.down = final_down
            return dt

        self._arc_to(ray, theta_exit)
        ray.z = self.depth_bottom[k] if exit_down else self.depth_top[k]
        self._leave_layer(ray, max(dt, 0.0), exit_down)
        return dt

    def _arc_to(self, ray: _Ray, theta: float):
        k = ray.layer
        g = self.gradient[k]
        # cos(a) - cos(b) written as a product to keep precision for steep rays
        dcos = 2.0 * math.sin(0.5 * (theta + ray.theta)) * math.sin(0.5 * (theta - ray.theta))
        ray.x += dcos / (ray.p * g)
        ray.z = self.depth_top[k] + (math.sin(theta) / ray.p - self.vel_top[k]) / g
        ray.theta = theta


def trace_ray(profile: VelocityProfile, depth_offset: float, takeoff_angle: float,
              half_travel_time: float, surface_sound_speed: float = 0.0,
              null_angle: float = 0.0, angle_mode: AngleMode = AngleMode.IGNORE_SSV,
              tracer: Optional[RayTracer] = None) -> RayResult:
    """Trace a single ray; builds a RayTracer unless one is supplied."""
    tracer = tracer or RayTracer(profile)
    return tracer.trace(depth_offset, takeoff_angle, half_travel_time,
                        surface_velocity=surface_sound_speed, null_angle=null_angle,
                        angle_mode=angle_mode)
