"""
Geometry helpers for lane-point tracking.
Bearings are compass-style degrees in the horizontal x/y plane.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Point3D:
    """Immutable 3-D coordinate (vehicle position or lane waypoint)."""

    x: float
    y: float
    z: float = 0.0


def direction_from(origin: Point3D, target: Point3D) -> float:
    """
    Bearing of target as seen from origin.

    0 deg points along +y and the angle grows toward +x, so the result
    is directly comparable with the simulator heading. Returns a value
    in [0, 360); coincident points give 0.
    """
    dx = target.x - origin.x
    dy = target.y - origin.y
    if dx == 0.0 and dy == 0.0:
        return 0.0
    bearing = math.degrees(math.atan2(dx, dy))
    return bearing % 360.0


def fold_angle(angle_deg: float) -> float:
    """Fold an angle in [0, 360) into [0, 180]."""
    return 360.0 - angle_deg if angle_deg > 180.0 else angle_deg


def angle_between(bearing_deg: float, heading_deg: float) -> float:
    """Unsigned angular difference in [0, 180] between a bearing and a heading."""
    return fold_angle(abs(bearing_deg - heading_deg) % 360.0)


def heading_delta(bearing_deg: float, heading_deg: float) -> float:
    """
    Signed lookahead correction angle.

    Truncated remainder (sign follows the dividend), range (-360, 360).
    Not folded into [-180, 180]: a point just across the 0/360 seam
    produces a correction close to +/-360 instead of close to 0.
    """
    return math.fmod(bearing_deg - heading_deg, 360.0)


def is_behind(origin: Point3D, heading_deg: float, target: Point3D,
              max_angle_deg: float = 90.0) -> bool:
    """True when target lies outside the forward hemisphere of origin."""
    return angle_between(direction_from(origin, target), heading_deg) > max_angle_deg
