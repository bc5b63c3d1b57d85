"""
On-screen text for the simulator display channel.
Formatting only; nothing here is read back by the controllers.
"""

from dataclasses import dataclass, asdict
from abc import ABC, abstractmethod
from typing import Dict, Optional

from data.formats.data_format import VehicleState

PLACEHOLDER = "---"


@dataclass(frozen=True)
class DisplayFrame:
    """Text shown for one cycle, one field per display slot."""
    velocity: str
    lane_position: str
    steering: str
    brake: str
    x: str
    y: str
    z: str
    lane_points: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class DisplaySink(ABC):
    """Receives formatted display text once per cycle."""

    @abstractmethod
    def show(self, frame: DisplayFrame) -> None:
        raise NotImplementedError


def _decimal_text(value: float) -> str:
    text = repr(float(value))
    if "e" in text or "E" in text:
        # Keep a plain decimal point so truncation below has something to cut at
        text = format(float(value), "f")
    if "." not in text:
        text += ".0"
    return text


def integer_text(value: float) -> str:
    """Integer part of the decimal text (truncated toward zero, keeps '-0')."""
    text = _decimal_text(value)
    return text[:text.index(".")]


def one_decimal_text(value: float) -> str:
    """Decimal text cut after the first digit past the point."""
    text = _decimal_text(value)
    return text[:text.index(".") + 2]


def format_display(state: Optional[VehicleState], engaged: bool,
                   steering_angle_deg: float = 0.0, brake_level: float = 0.0,
                   lane_point_count: int = 0) -> DisplayFrame:
    """
    Build the display text for a cycle.

    Lane position shows the placeholder when out of lane; every field
    except velocity shows it while the autopilot is disengaged.
    """
    if state is None:
        return DisplayFrame(*([PLACEHOLDER] * 8))

    def when_engaged(text: str) -> str:
        return text if engaged else PLACEHOLDER

    return DisplayFrame(
        velocity=integer_text(state.speed_mph),
        lane_position=one_decimal_text(state.lateral_offset_m) if state.in_lane else PLACEHOLDER,
        steering=when_engaged(integer_text(steering_angle_deg)),
        brake=when_engaged(repr(float(brake_level))),
        x=when_engaged(integer_text(state.position.x)),
        y=when_engaged(integer_text(state.position.y)),
        z=when_engaged(integer_text(state.position.z)),
        lane_points=when_engaged(integer_text(lane_point_count)),
    )
