"""
Tests for the lateral and longitudinal controllers.
"""

import itertools

import numpy as np
import pytest

from control.geometry import Point3D
from control.pid_controller import (
    LateralController, LongitudinalController,
    build_lateral_controller, build_longitudinal_controller,
)
from data.formats.data_format import HoldCommand, LongitudinalBand


def test_lateral_controller_example():
    """offset 0.02 m moving from center at 30 mph steers -10 deg."""
    controller = LateralController()
    steering = controller.compute_steering(0.02, 0.0, 30.0)
    assert steering == pytest.approx(-10.0)


@pytest.mark.parametrize("offset,previous,speed", [
    (0.0, 0.0, 10.0),
    (0.3, 0.1, 25.0),
    (-0.5, -0.2, 45.0),
    (1.2, 1.3, 5.0),
    (4.0, 0.0, 60.0),
    (-4.0, 0.0, 60.0),
])
def test_lateral_without_lookahead_is_clamped_pd(offset, previous, speed):
    controller = LateralController()
    expected = float(np.clip(-50 * offset - 15 * (offset - previous) * speed, -188, 188))
    assert controller.compute_steering(offset, previous, speed) == pytest.approx(expected)


def test_lateral_speed_gate():
    controller = LateralController()
    assert controller.compute_steering(0.5, 0.0, 1.0) is None
    assert controller.compute_steering(0.5, 0.0, 0.0) is None
    assert controller.compute_steering(0.5, 0.0, 1.01) is not None


def test_lateral_clamps_to_wheel_limit():
    controller = LateralController()
    assert controller.compute_steering(10.0, 0.0, 30.0) == -188.0
    assert controller.compute_steering(-10.0, 0.0, 30.0) == 188.0


def test_lookahead_term_uses_signed_bearing_error():
    controller = LateralController()
    meta = controller.compute_steering(
        0.0, 0.0, 20.0,
        vehicle_position=Point3D(0.0, 0.0),
        heading_deg=10.0,
        nearest_waypoint=Point3D(0.0, 10.0),
        return_metadata=True,
    )
    assert meta['bearing_to_waypoint'] == pytest.approx(0.0)
    assert meta['lookahead_term'] == pytest.approx(0.38 * -10.0)
    assert meta['steering'] == pytest.approx(-3.8)


def test_lookahead_across_north_is_not_folded():
    """A point just left of straight ahead adds a near-360 correction."""
    controller = LateralController()
    waypoint = Point3D(-1.0, 10.0)
    steering = controller.compute_steering(
        0.0, 0.0, 20.0,
        vehicle_position=Point3D(0.0, 0.0),
        heading_deg=0.0,
        nearest_waypoint=waypoint,
    )
    bearing = np.degrees(np.arctan2(-1.0, 10.0)) % 360.0
    assert steering == pytest.approx(min(0.38 * bearing, 188.0))
    assert steering > 100.0


def test_lookahead_omitted_without_waypoint():
    controller = LateralController()
    meta = controller.compute_steering(
        0.1, 0.0, 20.0, vehicle_position=Point3D(0.0, 0.0), heading_deg=45.0,
        nearest_waypoint=None, return_metadata=True,
    )
    assert meta['lookahead_term'] == 0.0
    assert meta['bearing_to_waypoint'] is None


def test_lateral_metadata_reports_gate_and_clamp():
    controller = LateralController()
    assert controller.compute_steering(0.1, 0.0, 0.5, return_metadata=True) == {
        'steering': None, 'gated': True,
    }
    meta = controller.compute_steering(10.0, 0.0, 30.0, return_metadata=True)
    assert meta['clamped'] is True
    assert meta['raw_steering'] < -188.0


class TestLongitudinalController:
    @pytest.mark.parametrize("desired,current,band,throttle,brake", [
        (50.0, 49.5, LongitudinalBand.COAST, 0.0, 0.0),
        (50.0, 47.0, LongitudinalBand.THROTTLE_LOW, 0.3, 0.0),
        (50.0, 45.5, LongitudinalBand.THROTTLE_LOW, 0.3, 0.0),
        (50.0, 45.0, LongitudinalBand.THROTTLE_HIGH, 0.5, 0.0),
        (50.0, 20.0, LongitudinalBand.THROTTLE_HIGH, 0.5, 0.0),
        (50.0, 50.0, LongitudinalBand.HOLD, None, None),
        (50.0, 50.9, LongitudinalBand.HOLD, None, None),
        (50.0, 51.0, LongitudinalBand.BRAKE_LOW, 0.0, 0.3),
        (50.0, 52.5, LongitudinalBand.BRAKE_LOW, 0.0, 0.3),
        (50.0, 53.0, LongitudinalBand.BRAKE_MEDIUM, 0.0, 0.5),
        (50.0, 55.0, LongitudinalBand.BRAKE_HIGH, 0.0, 0.7),
        (25.0, 70.0, LongitudinalBand.BRAKE_HIGH, 0.0, 0.7),
    ])
    def test_band_table(self, desired, current, band, throttle, brake):
        command = LongitudinalController().compute_control(desired, current)
        assert command.band is band
        assert command.throttle == throttle
        assert command.brake == brake

    def test_bands_exclusive_and_exhaustive(self):
        controller = LongitudinalController()
        speeds = np.arange(0.0, 80.0, 0.25)
        seen = set()
        for desired, current in itertools.product(speeds[::8], speeds):
            command = controller.compute_control(float(desired), float(current))
            seen.add(command.band)
            assert not (command.throttle and command.brake)
            assert command.band is controller.select_band(float(desired), float(current))
        assert seen == set(LongitudinalBand)

    def test_hold_band_is_an_explicit_command(self):
        command = LongitudinalController().compute_control(50.0, 50.5)
        assert command.commands() == [HoldCommand()]


def test_build_controllers_from_config():
    control_cfg = {
        'lateral': {'proportional_gain': 40.0, 'max_steering_deg': 90.0},
        'longitudinal': {'throttle_low': 0.2, 'brake_high': 0.9},
    }
    lateral = build_lateral_controller(control_cfg)
    longitudinal = build_longitudinal_controller(control_cfg)

    assert lateral.proportional_gain == 40.0
    assert lateral.differential_gain == 15.0
    assert lateral.max_steering_deg == 90.0
    assert longitudinal.throttle_low == 0.2
    assert longitudinal.brake_high == 0.9
    assert longitudinal.brake_medium == 0.5


def test_build_controllers_defaults_from_empty_config():
    lateral = build_lateral_controller({})
    assert lateral.compute_steering(0.02, 0.0, 30.0) == pytest.approx(-10.0)
    assert build_longitudinal_controller({}).compute_control(50.0, 47.0).throttle == 0.3
