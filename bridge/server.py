"""
FastAPI server for the simulator-autopilot communication bridge.
Holds the latest telemetry, lane-point batches, actuator state and display text.
"""

import time
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

app = FastAPI(title="Autopilot Bridge Server")

TELEMETRY_GAP_SECONDS = 0.2

# Accepted command range per actuator channel
ACTUATOR_LIMITS = {
    "steering": (-188.0, 188.0),
    "throttle": (0.0, 1.0),
    "brake": (0.0, 1.0),
}


def _get_bridge_logger() -> logging.Logger:
    log_path = Path(__file__).resolve().parents[1] / "tmp" / "logs" / "autopilot_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    bridge_logger = logging.getLogger("autopilot_bridge")
    bridge_logger.setLevel(logging.INFO)

    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path)
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)
        bridge_logger.propagate = False

    return bridge_logger


logger = _get_bridge_logger()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _neutral_actuators() -> Dict[str, dict]:
    return {name: {"value": 0.0, "released": True, "timestamp": None} for name in ACTUATOR_LIMITS}


# Global state
latest_telemetry: Optional[dict] = None
lane_point_batches: Dict[str, Union[str, List[str]]] = {}
actuator_state: Dict[str, dict] = _neutral_actuators()
latest_display: Optional[dict] = None
shutdown_requested: bool = False
last_telemetry_arrival_time: Optional[float] = None


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Telemetry(BaseModel):
    """One feedback sample posted by the simulator."""
    timestamp: float = 0.0
    heading: float  # degrees
    speed_mph: float
    in_lane: bool
    lane_offset_m: float
    brake_pedal: float = 0.0
    speed_limit_mph: float
    position: Position = Position()
    lane_point_count: int = 0
    lane_name: str = ""
    # Raw batch for lane_name; may be omitted when the lane did not change
    lane_points: Optional[Union[str, List[str]]] = None


class ActuatorCommand(BaseModel):
    value: float


class DisplayText(BaseModel):
    velocity: str = ""
    lane_position: str = ""
    steering: str = ""
    brake: str = ""
    x: str = ""
    y: str = ""
    z: str = ""
    lane_points: str = ""


def reset_state():
    """Drop everything the bridge holds (used between runs and in tests)."""
    global latest_telemetry, lane_point_batches, actuator_state, latest_display
    global shutdown_requested, last_telemetry_arrival_time
    latest_telemetry = None
    lane_point_batches = {}
    actuator_state = _neutral_actuators()
    latest_display = None
    shutdown_requested = False
    last_telemetry_arrival_time = None


@app.post("/api/telemetry")
async def receive_telemetry(telemetry: Telemetry):
    """
    Receive telemetry from the simulator.

    Args:
        telemetry: Feedback sample
    """
    global latest_telemetry, last_telemetry_arrival_time

    now = time.time()
    if last_telemetry_arrival_time is not None:
        gap = now - last_telemetry_arrival_time
        if gap > TELEMETRY_GAP_SECONDS:
            logger.warning("[ARRIVAL_GAP] /api/telemetry gap=%.3fs lane=%s", gap, telemetry.lane_name)
    last_telemetry_arrival_time = now

    data = telemetry.model_dump()
    lane_points = data.pop("lane_points")
    if lane_points is not None:
        # Only the current lane's batch is ever served
        lane_point_batches.clear()
        lane_point_batches[telemetry.lane_name] = lane_points
        logger.info("[LANE_POINTS] lane=%s count=%d", telemetry.lane_name, telemetry.lane_point_count)
    elif telemetry.lane_name not in lane_point_batches:
        lane_point_batches.clear()
    latest_telemetry = data
    return {"status": "received"}


@app.get("/api/telemetry/latest")
async def get_latest_telemetry(known_lane: str = ""):
    """
    Get latest telemetry (for the control loop).

    The lane-point batch is attached only when the current lane differs
    from known_lane, i.e. when the caller's geometry is stale.
    """
    if latest_telemetry is None:
        raise HTTPException(status_code=404, detail="No telemetry available")

    result = dict(latest_telemetry)
    result["lane_points"] = None
    if result["lane_name"] != known_lane:
        result["lane_points"] = lane_point_batches.get(result["lane_name"])
    return result


@app.post("/api/actuators/{channel}")
async def set_actuator(channel: str, command: ActuatorCommand):
    """
    Set one actuator channel (called by the control loop).

    Args:
        channel: steering, throttle or brake
        command: Value in the channel's accepted range
    """
    if channel not in ACTUATOR_LIMITS:
        raise HTTPException(status_code=404, detail=f"Unknown actuator channel: {channel}")
    low, high = ACTUATOR_LIMITS[channel]
    if not low <= command.value <= high:
        logger.warning("[ACTUATOR_REJECTED] channel=%s value=%.3f", channel, command.value)
        raise HTTPException(
            status_code=422,
            detail=f"{channel} value {command.value} outside [{low}, {high}]",
        )
    actuator_state[channel] = {"value": command.value, "released": False, "timestamp": time.time()}
    return {"status": "set"}


@app.post("/api/actuators/{channel}/release")
async def release_actuator(channel: str):
    """Hand one actuator channel back to the default driver."""
    if channel not in ACTUATOR_LIMITS:
        raise HTTPException(status_code=404, detail=f"Unknown actuator channel: {channel}")
    actuator_state[channel] = {"value": 0.0, "released": True, "timestamp": time.time()}
    logger.info("[ACTUATOR_RELEASE] channel=%s", channel)
    return {"status": "released"}


@app.get("/api/actuators")
async def get_actuators():
    """
    Get actuator state (polled by the simulator).

    Released channels are driven by the default driver.
    """
    return actuator_state


@app.post("/api/display")
async def set_display(text: DisplayText):
    global latest_display
    latest_display = text.model_dump()
    return {"status": "set"}


@app.get("/api/display")
async def get_display():
    if latest_display is None:
        raise HTTPException(status_code=404, detail="No display text available")
    return latest_display


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "has_telemetry": latest_telemetry is not None,
        "lane_batches": len(lane_point_batches),
    }


@app.post("/api/shutdown")
async def shutdown_signal():
    """
    Signal that the autopilot is shutting down.
    The simulator can poll this to hand control back.
    """
    global shutdown_requested
    shutdown_requested = True
    return {
        "status": "shutdown",
        "message": "Autopilot is shutting down",
        "timestamp": time.time()
    }


@app.get("/api/shutdown")
async def check_shutdown():
    """Check if the autopilot is shutting down."""
    if shutdown_requested:
        return {
            "status": "shutdown",
            "message": "Autopilot is shutting down",
            "timestamp": time.time()
        }
    return {
        "status": "running",
        "message": "Autopilot is running",
        "timestamp": time.time()
    }


def run_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the bridge server."""
    print(f"Starting Autopilot Bridge Server on {host}:{port}")
    print("Endpoints:")
    print("  POST /api/telemetry - Receive telemetry (and lane points) from the simulator")
    print("  GET  /api/telemetry/latest - Get latest telemetry for the control loop")
    print("  POST /api/actuators/{channel} - Set steering/throttle/brake")
    print("  POST /api/actuators/{channel}/release - Release an actuator")
    print("  GET  /api/actuators - Get actuator state for the simulator")
    print("  POST /api/display - Set display text")
    print("  GET  /api/health - Health check")

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
