"""
Autopilot supervisor.
Runs one feedback -> lane update -> lateral/longitudinal -> actuate cycle
per tick and engages or disengages autonomous control from the lane flag.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from control.display import DisplayFrame, format_display
from control.lane_tracker import LaneGeometryTracker
from control.pid_controller import LateralController, LongitudinalController
from data.formats.data_format import (
    AutopilotMode, CycleResult, LongitudinalCommand, ReleaseAllCommand,
    SteerCommand, TelemetryFrame, VehicleState,
)

logger = logging.getLogger(__name__)


class AutopilotError(RuntimeError):
    """Base class for recoverable control-loop errors."""


class FeedbackUnavailable(AutopilotError):
    """A telemetry read failed or timed out."""


class ActuatorRejected(AutopilotError):
    """The actuator collaborator refused a command."""


class Actuator(ABC):
    """A single actuator channel (steering wheel, gas pedal, brake pedal)."""

    @abstractmethod
    def set(self, value: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def release(self) -> None:
        """Hand the channel back to the default driver."""
        raise NotImplementedError


class FeedbackSource(ABC):
    """Blocking telemetry source, polled once per cycle."""

    @abstractmethod
    def read_feedback(self, known_lane_name: str) -> TelemetryFrame:
        """
        Read one telemetry frame.

        The raw lane-point batch is only included when the reported lane
        name differs from known_lane_name. Raises FeedbackUnavailable.
        """
        raise NotImplementedError


class AutopilotSupervisor:
    """
    Owns the per-cycle vehicle and lane state and drives the actuators.

    Only previous_lateral_offset_m and mode carry over between cycles.
    """

    def __init__(self, steering: Actuator, throttle: Actuator, brake: Actuator,
                 lateral_controller: Optional[LateralController] = None,
                 longitudinal_controller: Optional[LongitudinalController] = None,
                 lane_tracker: Optional[LaneGeometryTracker] = None,
                 feedback_source: Optional[FeedbackSource] = None):
        self.steering = steering
        self.throttle = throttle
        self.brake = brake
        self.lateral_controller = lateral_controller or LateralController()
        self.longitudinal_controller = longitudinal_controller or LongitudinalController()
        self.lane_tracker = lane_tracker or LaneGeometryTracker()
        self.feedback_source = feedback_source

        self.mode = AutopilotMode.ENGAGED
        self.previous_lateral_offset_m = 0.0
        self.vehicle_state: Optional[VehicleState] = None
        self.last_result: Optional[CycleResult] = None

        # Display-only carry-over, never read by the controllers
        self.steering_angle_deg = 0.0
        self.brake_level = 0.0
        self.lane_point_count = 0

    @property
    def engaged(self) -> bool:
        return self.mode is AutopilotMode.ENGAGED

    def step(self) -> CycleResult:
        """Pull one frame from the feedback source and run a cycle on it."""
        if self.feedback_source is None:
            raise RuntimeError("AutopilotSupervisor.step() needs a feedback_source")
        try:
            frame = self.feedback_source.read_feedback(self.lane_tracker.current_name)
        except FeedbackUnavailable as e:
            logger.warning(f"[FEEDBACK_UNAVAILABLE] skipping actuation this cycle: {e}")
            result = CycleResult(
                timestamp=time.time(),
                mode=self.mode,
                waypoint_count=len(self.lane_tracker.waypoints),
                skipped=True,
                errors=[f"feedback unavailable: {e}"],
            )
            self.last_result = result
            return result
        return self.run_cycle(frame)

    def run_cycle(self, frame: TelemetryFrame) -> CycleResult:
        """Run one control cycle on an already-read telemetry frame."""
        state = frame.vehicle_state()
        self.vehicle_state = state
        self.brake_level = state.brake_pedal
        self.lane_point_count = frame.lane_point_count
        result = CycleResult(timestamp=frame.timestamp, mode=self.mode)

        # 1. Lane geometry refresh
        if self.lane_tracker.needs_refresh(frame.lane_name):
            self.lane_tracker.mark_dirty()
            if frame.raw_lane_points is not None:
                parsed = self.lane_tracker.on_lane_changed(frame.lane_name, frame.raw_lane_points)
                if not parsed.ok:
                    result.errors.append(f"malformed lane-point batch: {parsed.error}")
            else:
                logger.debug(f"[LANE_POINTS_PENDING] lane={frame.lane_name!r} batch not sent yet")

        # 2. Prune passed waypoints before lateral control reads them
        self.lane_tracker.prune(state.position, state.heading_deg)

        if state.in_lane:
            self._control_in_lane(state, result)
        elif self.mode is AutopilotMode.ENGAGED:
            self._release_all(result)
        result.mode = self.mode
        result.waypoint_count = len(self.lane_tracker.waypoints)
        self.last_result = result
        return result

    def _control_in_lane(self, state: VehicleState, result: CycleResult):
        if self.mode is AutopilotMode.DISENGAGED:
            logger.info("[AUTOPILOT_ENGAGE] back in lane, resuming control")
        self.mode = AutopilotMode.ENGAGED

        steering = self.lateral_controller.compute_steering(
            lateral_offset_m=state.lateral_offset_m,
            previous_offset_m=self.previous_lateral_offset_m,
            speed_mph=state.speed_mph,
            vehicle_position=state.position,
            heading_deg=state.heading_deg,
            nearest_waypoint=self.lane_tracker.nearest(),
        )
        if steering is not None:
            self.previous_lateral_offset_m = state.lateral_offset_m
            self.steering_angle_deg = steering
            result.steering_angle_deg = steering
            command = SteerCommand(steering)
            result.commands.append(command)
            self._apply(self.steering.set, steering, "steering", result)

        pedals = self.longitudinal_controller.compute_control(
            state.speed_limit_mph, state.speed_mph
        )
        result.longitudinal = pedals
        self._apply_pedals(pedals, result)

    def _apply_pedals(self, pedals: LongitudinalCommand, result: CycleResult):
        result.commands.extend(pedals.commands())
        if pedals.throttle is not None:
            self._apply(self.throttle.set, pedals.throttle, f"throttle ({pedals.band.value})", result)
        if pedals.brake is not None:
            self.brake_level = pedals.brake
            self._apply(self.brake.set, pedals.brake, f"brake ({pedals.band.value})", result)

    def _release_all(self, result: CycleResult):
        logger.info("[AUTOPILOT_RELEASE] vehicle left the lane, releasing actuators")
        result.commands.append(ReleaseAllCommand())
        for actuator in (self.steering, self.brake, self.throttle):
            self._apply(actuator.release, None, "release", result)
        self.mode = AutopilotMode.DISENGAGED

    def _apply(self, call, value, label, result: CycleResult):
        try:
            if value is None:
                call()
            else:
                call(value)
        except ActuatorRejected as e:
            logger.warning(f"[ACTUATOR_REJECTED] {label}: {e}")
            result.errors.append(f"actuator rejected {label}: {e}")

    def release(self):
        """Release every actuator, e.g. when the host stops the loop."""
        result = CycleResult(timestamp=time.time(), mode=self.mode)
        self._release_all(result)
        result.mode = self.mode
        return result

    def display_frame(self) -> DisplayFrame:
        return format_display(
            self.vehicle_state,
            engaged=self.engaged,
            steering_angle_deg=self.steering_angle_deg,
            brake_level=self.brake_level,
            lane_point_count=self.lane_point_count,
        )
