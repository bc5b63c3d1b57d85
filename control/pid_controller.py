"""
Proportional-differential controllers for the autopilot.
Handles both lateral (steering) and longitudinal (throttle/brake) control.
"""

import numpy as np
from typing import Optional, Union

from control.geometry import Point3D, direction_from, heading_delta
from data.formats.data_format import LongitudinalBand, LongitudinalCommand


class LateralController:
    """
    Lateral control (steering) from lane offset, offset rate and a lookahead point.

    Holds gains only; the previous offset is owned by the caller.
    """

    def __init__(self, proportional_gain: float = 50.0, differential_gain: float = 15.0,
                 lookahead_gain: float = 0.38, max_steering_deg: float = 188.0,
                 min_speed_mph: float = 1.0):
        """
        Initialize lateral controller.

        Args:
            proportional_gain: Degrees of steering per meter of lane offset
            differential_gain: Gain on offset change per cycle, scaled by speed (mph)
            lookahead_gain: Fraction of the bearing error to the nearest waypoint
            max_steering_deg: Steering wheel limit (degrees, symmetric)
            min_speed_mph: Steering is only commanded above this speed
        """
        self.proportional_gain = proportional_gain
        self.differential_gain = differential_gain
        self.lookahead_gain = lookahead_gain
        self.max_steering_deg = max_steering_deg
        self.min_speed_mph = min_speed_mph

    def speed_gate(self, speed_mph: float) -> bool:
        return speed_mph > self.min_speed_mph

    def compute_steering(self, lateral_offset_m: float, previous_offset_m: float,
                         speed_mph: float, vehicle_position: Optional[Point3D] = None,
                         heading_deg: float = 0.0, nearest_waypoint: Optional[Point3D] = None,
                         return_metadata: bool = False) -> Union[Optional[float], dict]:
        """
        Compute steering command.

        Args:
            lateral_offset_m: Signed offset from lane center (meters)
            previous_offset_m: Offset used on the last steered cycle
            speed_mph: Current speed
            vehicle_position: Vehicle position (needed for the lookahead term)
            heading_deg: Vehicle heading (degrees)
            nearest_waypoint: Nearest waypoint still ahead, or None
            return_metadata: If True, return dict with steering and term breakdown

        Returns:
            Steering angle in degrees, or None when the speed gate is not met.
            Dict with steering and terms if return_metadata=True.
        """
        if not self.speed_gate(speed_mph):
            if return_metadata:
                return {'steering': None, 'gated': True}
            return None

        # Proportional term
        p_term = -self.proportional_gain * lateral_offset_m

        # Differential term (per cycle, scaled by speed)
        d_term = -self.differential_gain * (lateral_offset_m - previous_offset_m) * speed_mph

        # Lookahead term, omitted when no waypoint is left
        lookahead_term = 0.0
        bearing = None
        if nearest_waypoint is not None and vehicle_position is not None:
            bearing = direction_from(vehicle_position, nearest_waypoint)
            lookahead_term = self.lookahead_gain * heading_delta(bearing, heading_deg)

        raw_steering = p_term + d_term + lookahead_term
        steering = float(np.clip(raw_steering, -self.max_steering_deg, self.max_steering_deg))

        if return_metadata:
            return {
                'steering': steering,
                'gated': False,
                'raw_steering': float(raw_steering),
                'proportional_term': float(p_term),
                'differential_term': float(d_term),
                'lookahead_term': float(lookahead_term),
                'bearing_to_waypoint': bearing,
                'clamped': steering != raw_steering,
            }
        return steering


class LongitudinalController:
    """
    Longitudinal control (throttle/brake) as a band controller on the speed gap.
    Throttle and brake are never both nonzero in one cycle.
    """

    def __init__(self, coast_gap_mph: float = 1.0, throttle_high_gap_mph: float = 5.0,
                 throttle_low: float = 0.3, throttle_high: float = 0.5,
                 hold_gap_mph: float = 1.0, brake_medium_gap_mph: float = 3.0,
                 brake_high_gap_mph: float = 5.0, brake_low: float = 0.3,
                 brake_medium: float = 0.5, brake_high: float = 0.7):
        self.coast_gap_mph = coast_gap_mph
        self.throttle_high_gap_mph = throttle_high_gap_mph
        self.throttle_low = throttle_low
        self.throttle_high = throttle_high
        self.hold_gap_mph = hold_gap_mph
        self.brake_medium_gap_mph = brake_medium_gap_mph
        self.brake_high_gap_mph = brake_high_gap_mph
        self.brake_low = brake_low
        self.brake_medium = brake_medium
        self.brake_high = brake_high

    def select_band(self, desired_speed_mph: float, current_speed_mph: float) -> LongitudinalBand:
        """Pick exactly one band for a (desired, current) pair."""
        if desired_speed_mph > current_speed_mph:
            gap = desired_speed_mph - current_speed_mph
            if gap < self.coast_gap_mph:
                return LongitudinalBand.COAST
            if gap < self.throttle_high_gap_mph:
                return LongitudinalBand.THROTTLE_LOW
            return LongitudinalBand.THROTTLE_HIGH

        # At or above the desired speed
        gap = current_speed_mph - desired_speed_mph
        if gap < self.hold_gap_mph:
            return LongitudinalBand.HOLD
        if gap < self.brake_medium_gap_mph:
            return LongitudinalBand.BRAKE_LOW
        if gap < self.brake_high_gap_mph:
            return LongitudinalBand.BRAKE_MEDIUM
        return LongitudinalBand.BRAKE_HIGH

    def compute_control(self, desired_speed_mph: float, current_speed_mph: float) -> LongitudinalCommand:
        """
        Compute throttle and brake commands.

        Args:
            desired_speed_mph: Legal speed limit
            current_speed_mph: Current vehicle speed

        Returns:
            LongitudinalCommand; pedals left as None are not written this cycle
        """
        band = self.select_band(desired_speed_mph, current_speed_mph)
        if band is LongitudinalBand.COAST:
            return LongitudinalCommand(band, throttle=0.0, brake=0.0)
        if band is LongitudinalBand.THROTTLE_LOW:
            return LongitudinalCommand(band, throttle=self.throttle_low, brake=0.0)
        if band is LongitudinalBand.THROTTLE_HIGH:
            return LongitudinalCommand(band, throttle=self.throttle_high, brake=0.0)
        if band is LongitudinalBand.HOLD:
            return LongitudinalCommand(band)
        if band is LongitudinalBand.BRAKE_LOW:
            return LongitudinalCommand(band, throttle=0.0, brake=self.brake_low)
        if band is LongitudinalBand.BRAKE_MEDIUM:
            return LongitudinalCommand(band, throttle=0.0, brake=self.brake_medium)
        return LongitudinalCommand(band, throttle=0.0, brake=self.brake_high)


def build_lateral_controller(control_cfg: dict) -> LateralController:
    """Build a LateralController from the `control` config section."""
    lateral_cfg = control_cfg.get("lateral", {})
    return LateralController(
        proportional_gain=float(lateral_cfg.get("proportional_gain", 50.0)),
        differential_gain=float(lateral_cfg.get("differential_gain", 15.0)),
        lookahead_gain=float(lateral_cfg.get("lookahead_gain", 0.38)),
        max_steering_deg=float(lateral_cfg.get("max_steering_deg", 188.0)),
        min_speed_mph=float(lateral_cfg.get("min_speed_mph", 1.0)),
    )


def build_longitudinal_controller(control_cfg: dict) -> LongitudinalController:
    """Build a LongitudinalController from the `control` config section."""
    long_cfg = control_cfg.get("longitudinal", {})
    return LongitudinalController(
        coast_gap_mph=float(long_cfg.get("coast_gap_mph", 1.0)),
        throttle_high_gap_mph=float(long_cfg.get("throttle_high_gap_mph", 5.0)),
        throttle_low=float(long_cfg.get("throttle_low", 0.3)),
        throttle_high=float(long_cfg.get("throttle_high", 0.5)),
        hold_gap_mph=float(long_cfg.get("hold_gap_mph", 1.0)),
        brake_medium_gap_mph=float(long_cfg.get("brake_medium_gap_mph", 3.0)),
        brake_high_gap_mph=float(long_cfg.get("brake_high_gap_mph", 5.0)),
        brake_low=float(long_cfg.get("brake_low", 0.3)),
        brake_medium=float(long_cfg.get("brake_medium", 0.5)),
        brake_high=float(long_cfg.get("brake_high", 0.7)),
    )
