"""
Python client helper for the autopilot bridge.
Pulls telemetry for the control loop and pushes actuator and display commands.
"""

import logging
from typing import Optional, Dict

import requests

from control.autopilot import Actuator, ActuatorRejected, FeedbackSource, FeedbackUnavailable
from control.display import DisplayFrame, DisplaySink
from data.formats.data_format import TelemetryFrame

logger = logging.getLogger(__name__)

ACTUATOR_CHANNELS = ("steering", "throttle", "brake")


class AutopilotBridgeClient(FeedbackSource, DisplaySink):
    """Client for communicating with the autopilot bridge server."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 0.5):
        """
        Initialize bridge client.

        Args:
            base_url: Base URL of the bridge server
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def get_latest_telemetry(self, known_lane_name: str = "") -> Dict:
        """
        Get latest telemetry from the simulator side.

        The lane-point batch is only included by the server when the
        current lane name differs from known_lane_name.

        Raises:
            FeedbackUnavailable: on timeout, missing telemetry or connection errors
        """
        try:
            response = self.session.get(
                f"{self.base_url}/api/telemetry/latest",
                params={"known_lane": known_lane_name},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            raise FeedbackUnavailable(f"telemetry read timed out: {e}") from e
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                raise FeedbackUnavailable("no telemetry received yet") from e
            raise FeedbackUnavailable(f"telemetry read failed: {e}") from e
        except requests.RequestException as e:
            raise FeedbackUnavailable(f"bridge unreachable: {e}") from e

    def read_feedback(self, known_lane_name: str) -> TelemetryFrame:
        data = self.get_latest_telemetry(known_lane_name)
        try:
            return TelemetryFrame.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise FeedbackUnavailable(f"incomplete telemetry payload: {e}") from e

    def set_actuator(self, channel: str, value: float) -> None:
        """
        Set one actuator channel.

        Raises:
            ActuatorRejected: if the server refuses the command or is unreachable
        """
        self._post_actuator(f"/api/actuators/{channel}", {"value": float(value)}, channel)

    def release_actuator(self, channel: str) -> None:
        """Hand one actuator channel back to the default driver."""
        self._post_actuator(f"/api/actuators/{channel}/release", None, channel)

    def _post_actuator(self, path: str, payload: Optional[dict], channel: str) -> None:
        try:
            response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            detail = ""
            if e.response is not None:
                detail = e.response.text
            raise ActuatorRejected(f"{channel} rejected: {detail or e}") from e
        except requests.RequestException as e:
            raise ActuatorRejected(f"{channel} not delivered: {e}") from e

    def actuator(self, channel: str) -> "BridgeActuator":
        if channel not in ACTUATOR_CHANNELS:
            raise ValueError(f"Unknown actuator channel: {channel}")
        return BridgeActuator(self, channel)

    def show(self, frame: DisplayFrame) -> None:
        try:
            response = self.session.post(
                f"{self.base_url}/api/display",
                json=frame.to_dict(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            # Display is presentation only, a dropped update is not an error for the loop
            logger.debug(f"[DISPLAY_DROPPED] {e}")

    def health_check(self) -> bool:
        """
        Check if bridge server is healthy.

        Returns:
            True if healthy, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/api/health", timeout=1.0)
            response.raise_for_status()
            return True
        except requests.RequestException:
            return False

    def signal_shutdown(self) -> bool:
        """
        Signal to the simulator side that the autopilot is shutting down.

        Returns:
            True if signal was sent successfully, False otherwise
        """
        try:
            response = self.session.post(f"{self.base_url}/api/shutdown", timeout=2.0)
            response.raise_for_status()
            return response.json().get("status") == "shutdown"
        except requests.RequestException as e:
            logger.warning(f"Error signaling shutdown: {e}")
            return False


class BridgeActuator(Actuator):
    """One actuator channel routed through the bridge."""

    def __init__(self, client: AutopilotBridgeClient, channel: str):
        self.client = client
        self.channel = channel

    def set(self, value: float) -> None:
        self.client.set_actuator(self.channel, value)

    def release(self) -> None:
        self.client.release_actuator(self.channel)

    def __repr__(self):
        return f"BridgeActuator({self.channel!r})"


if __name__ == "__main__":
    client = AutopilotBridgeClient()

    if client.health_check():
        print("Bridge server is healthy")
        try:
            frame = client.read_feedback("")
            print(f"Got telemetry: speed={frame.speed_mph:.1f} mph lane={frame.lane_name!r}")
        except FeedbackUnavailable as e:
            print(f"No telemetry: {e}")
    else:
        print("Bridge server is not available")
