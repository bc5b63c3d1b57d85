"""
Data format definitions for the autopilot control loop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple, Union

from control.geometry import Point3D


class AutopilotMode(Enum):
    """Whether the autopilot currently owns the actuators."""
    ENGAGED = "engaged"
    DISENGAGED = "disengaged"


class LongitudinalBand(Enum):
    """Speed-gap band selected by the longitudinal controller."""
    COAST = "coast"                  # under desired, gap < 1
    THROTTLE_LOW = "throttle_low"    # under desired, gap < 5
    THROTTLE_HIGH = "throttle_high"  # under desired, gap >= 5
    HOLD = "hold"                    # over desired, gap < 1 (pedals untouched)
    BRAKE_LOW = "brake_low"          # over desired, gap < 3
    BRAKE_MEDIUM = "brake_medium"    # over desired, gap < 5
    BRAKE_HIGH = "brake_high"        # over desired, gap >= 5


@dataclass(frozen=True)
class SteerCommand:
    angle_deg: float


@dataclass(frozen=True)
class ThrottleCommand:
    fraction: float


@dataclass(frozen=True)
class BrakeCommand:
    fraction: float


@dataclass(frozen=True)
class HoldCommand:
    """Explicitly leave both pedals where they are."""


@dataclass(frozen=True)
class ReleaseAllCommand:
    """Hand steering, throttle and brake back to the default driver."""


ControlCommand = Union[SteerCommand, ThrottleCommand, BrakeCommand, HoldCommand, ReleaseAllCommand]


@dataclass(frozen=True)
class LongitudinalCommand:
    """Pedal output for one cycle. None means the pedal is not written."""
    band: LongitudinalBand
    throttle: Optional[float] = None
    brake: Optional[float] = None

    def commands(self) -> List[ControlCommand]:
        if self.throttle is None and self.brake is None:
            return [HoldCommand()]
        commands: List[ControlCommand] = []
        if self.throttle is not None:
            commands.append(ThrottleCommand(self.throttle))
        if self.brake is not None:
            commands.append(BrakeCommand(self.brake))
        return commands


@dataclass(frozen=True)
class VehicleState:
    """Vehicle snapshot for one control cycle."""
    position: Point3D
    heading_deg: float
    speed_mph: float
    lateral_offset_m: float
    in_lane: bool
    speed_limit_mph: float = 0.0
    brake_pedal: float = 0.0
    timestamp: float = 0.0


@dataclass
class LaneState:
    """Tracked lane geometry. waypoints are ordered nearest first."""
    name: str = ""
    waypoints: Tuple[Point3D, ...] = ()
    is_dirty: bool = False


@dataclass(frozen=True)
class TelemetryFrame:
    """One feedback pull from the telemetry source."""
    timestamp: float
    heading_deg: float
    speed_mph: float
    in_lane: bool
    lateral_offset_m: float
    brake_pedal: float
    speed_limit_mph: float
    position: Point3D
    lane_point_count: int
    lane_name: str
    raw_lane_points: Optional[Union[str, List[str]]] = None  # Only sent when the lane name changed

    def vehicle_state(self) -> VehicleState:
        return VehicleState(
            position=self.position,
            heading_deg=self.heading_deg,
            speed_mph=self.speed_mph,
            lateral_offset_m=self.lateral_offset_m,
            in_lane=self.in_lane,
            speed_limit_mph=self.speed_limit_mph,
            brake_pedal=self.brake_pedal,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TelemetryFrame":
        """Build a frame from the JSON payload served by the bridge."""
        position = data.get("position") or {}
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),
            heading_deg=float(data["heading"]),
            speed_mph=float(data["speed_mph"]),
            in_lane=bool(data["in_lane"]),
            lateral_offset_m=float(data["lane_offset_m"]),
            brake_pedal=float(data.get("brake_pedal", 0.0)),
            speed_limit_mph=float(data["speed_limit_mph"]),
            position=Point3D(
                float(position.get("x", 0.0)),
                float(position.get("y", 0.0)),
                float(position.get("z", 0.0)),
            ),
            lane_point_count=int(data.get("lane_point_count", 0)),
            lane_name=str(data.get("lane_name", "")),
            raw_lane_points=data.get("lane_points"),
        )


@dataclass
class CycleResult:
    """Everything one control cycle decided."""
    timestamp: float
    mode: AutopilotMode
    commands: List[ControlCommand] = field(default_factory=list)
    steering_angle_deg: Optional[float] = None
    longitudinal: Optional[LongitudinalCommand] = None
    waypoint_count: int = 0
    skipped: bool = False  # Feedback unavailable, nothing actuated
    errors: List[str] = field(default_factory=list)

    @property
    def released(self) -> bool:
        return any(isinstance(c, ReleaseAllCommand) for c in self.commands)


@dataclass
class RecordingFrame:
    """Complete cycle of recorded data."""
    timestamp: float
    cycle_id: int
    vehicle_state: Optional[VehicleState] = None
    result: Optional[CycleResult] = None
