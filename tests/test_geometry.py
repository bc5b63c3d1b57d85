"""
Tests for bearing and angle helpers.
"""

import pytest

from control.geometry import (
    Point3D, angle_between, direction_from, fold_angle, heading_delta, is_behind,
)


ORIGIN = Point3D(0.0, 0.0, 0.0)


@pytest.mark.parametrize("target,expected", [
    (Point3D(0.0, 10.0), 0.0),
    (Point3D(10.0, 0.0), 90.0),
    (Point3D(0.0, -10.0), 180.0),
    (Point3D(-10.0, 0.0), 270.0),
    (Point3D(5.0, 5.0), 45.0),
])
def test_direction_from_compass_bearing(target, expected):
    assert direction_from(ORIGIN, target) == pytest.approx(expected)


def test_direction_from_ignores_height_and_coincident_points():
    assert direction_from(ORIGIN, Point3D(0.0, 10.0, 50.0)) == pytest.approx(0.0)
    assert direction_from(Point3D(1.0, 2.0, 3.0), Point3D(1.0, 2.0, 9.0)) == 0.0


def test_direction_from_is_relative_to_origin():
    origin = Point3D(100.0, 100.0)
    assert direction_from(origin, Point3D(110.0, 100.0)) == pytest.approx(90.0)


def test_fold_angle():
    assert fold_angle(0.0) == 0.0
    assert fold_angle(180.0) == 180.0
    assert fold_angle(270.0) == 90.0
    assert fold_angle(359.0) == pytest.approx(1.0)


def test_angle_between_wraps_across_north():
    assert angle_between(350.0, 10.0) == pytest.approx(20.0)
    assert angle_between(10.0, 350.0) == pytest.approx(20.0)
    assert angle_between(90.0, 270.0) == pytest.approx(180.0)


def test_heading_delta_keeps_sign_and_does_not_fold():
    assert heading_delta(0.0, 10.0) == pytest.approx(-10.0)
    assert heading_delta(20.0, 10.0) == pytest.approx(10.0)
    # Bearing just across the seam: correction near 360, not near 0
    assert heading_delta(355.0, 5.0) == pytest.approx(350.0)
    assert heading_delta(5.0, 355.0) == pytest.approx(-350.0)


def test_is_behind_uses_forward_hemisphere():
    assert not is_behind(ORIGIN, 0.0, Point3D(0.0, 5.0))
    assert not is_behind(ORIGIN, 0.0, Point3D(5.0, 0.0))  # exactly 90 deg is kept
    assert is_behind(ORIGIN, 0.0, Point3D(5.0, -5.0))
    assert is_behind(ORIGIN, 0.0, Point3D(0.0, -5.0))
    assert not is_behind(ORIGIN, 0.0, Point3D(-5.0, 5.0))
