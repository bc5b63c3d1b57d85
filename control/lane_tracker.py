"""
Lane geometry tracking.
Decodes raw lane-point batches and keeps the ordered list of upcoming
waypoints, dropping the ones the vehicle has already passed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from control.geometry import Point3D, is_behind
from data.formats.data_format import LaneState

logger = logging.getLogger(__name__)

# Batch framing: every 31 tokens hold one header token followed by ten
# (x, y, z) triples, so the token at each multiple of 31 is skipped.
FRAME_TOKENS = 31
_STRIP_CHARS = "{}[],"

RawLanePoints = Union[str, Sequence[str]]


@dataclass(frozen=True)
class LanePointParseResult:
    """Outcome of decoding a raw lane-point batch."""
    points: Tuple[Point3D, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _tokenize(raw: RawLanePoints) -> List[str]:
    text = raw if isinstance(raw, str) else " ".join(str(item) for item in raw)
    for ch in _STRIP_CHARS:
        text = text.replace(ch, " ")
    return text.split()


def parse_lane_points(raw: RawLanePoints) -> LanePointParseResult:
    """
    Decode a lane-point batch into waypoints, nearest first.

    Never raises: a triple that runs off the end of the batch or holds a
    non-numeric (or non-finite) token makes the whole batch malformed.
    """
    if raw is None:
        return LanePointParseResult(error="no lane-point batch")
    tokens = _tokenize(raw)

    points: List[Point3D] = []
    i = 1
    while i < len(tokens):
        if i + 2 >= len(tokens):
            return LanePointParseResult(
                error=f"truncated triple at token {i} of {len(tokens)}"
            )
        try:
            x, y, z = (float(tokens[i + k]) for k in range(3))
        except ValueError:
            return LanePointParseResult(
                error=f"non-numeric token in triple at token {i}: {tokens[i:i + 3]}"
            )
        if not all(math.isfinite(v) for v in (x, y, z)):
            return LanePointParseResult(
                error=f"non-numeric token in triple at token {i}: {tokens[i:i + 3]}"
            )
        points.append(Point3D(x, y, z))
        i += 3
        if i % FRAME_TOKENS == 0:
            i += 1
    return LanePointParseResult(points=tuple(points))


def encode_lane_points(points: Iterable[Point3D], header: str = "0", filler: str = "0") -> str:
    """Inverse of parse_lane_points: lay points out in 31-token frames."""
    tokens = [header]
    points = list(points)
    for n, point in enumerate(points):
        tokens.extend(repr(float(v)) for v in (point.x, point.y, point.z))
        if len(tokens) % FRAME_TOKENS == 0 and n < len(points) - 1:
            tokens.append(filler)
    return " ".join(tokens)


class LaneGeometryTracker:
    """
    Holds the waypoints of the lane the vehicle is currently on.

    The waypoint tuple is only ever replaced, never edited in place.
    """

    def __init__(self, behind_angle_deg: float = 90.0):
        self.behind_angle_deg = behind_angle_deg
        self.state = LaneState()
        self.last_error: Optional[str] = None

    @property
    def current_name(self) -> str:
        return self.state.name

    @property
    def waypoints(self) -> Tuple[Point3D, ...]:
        return self.state.waypoints

    def needs_refresh(self, lane_name: str) -> bool:
        return lane_name != self.state.name

    def mark_dirty(self):
        """Flag the held waypoints as stale until the next batch parses."""
        self.state.is_dirty = True

    def on_lane_changed(self, new_name: str, raw_batch: Optional[RawLanePoints]) -> LanePointParseResult:
        """
        Replace the tracked waypoints when the lane name changes.

        On a malformed batch the previous waypoints and lane name are
        kept, so the next cycle asks for the batch again.
        """
        if new_name == self.state.name:
            return LanePointParseResult(points=self.state.waypoints)

        self.mark_dirty()
        result = parse_lane_points(raw_batch)
        if not result.ok:
            self.last_error = result.error
            logger.warning(
                "[LANE_POINTS_MALFORMED] lane=%r error=%s (keeping %d waypoints of lane %r)",
                new_name, result.error, len(self.state.waypoints), self.state.name,
            )
            return result

        self.state = LaneState(name=new_name, waypoints=result.points, is_dirty=False)
        self.last_error = None
        logger.info("[LANE_CHANGED] lane=%r waypoints=%d", new_name, len(result.points))
        return result

    def prune(self, vehicle_position: Point3D, vehicle_heading_deg: float) -> int:
        """Drop waypoints behind the vehicle. Returns how many were removed."""
        kept = tuple(
            p for p in self.state.waypoints
            if not is_behind(vehicle_position, vehicle_heading_deg, p, self.behind_angle_deg)
        )
        removed = len(self.state.waypoints) - len(kept)
        if removed:
            self.state.waypoints = kept
        return removed

    def nearest(self) -> Optional[Point3D]:
        return self.state.waypoints[0] if self.state.waypoints else None
