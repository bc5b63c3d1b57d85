"""
Main autopilot integration script.
Connects the bridge, the lane tracker, the controllers and the recorder,
and runs the control loop at a fixed cadence.
"""

import time
import sys
from pathlib import Path
import logging
from dataclasses import dataclass
from typing import Optional

import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from bridge.client import AutopilotBridgeClient
from control.autopilot import AutopilotSupervisor
from control.lane_tracker import LaneGeometryTracker
from control.pid_controller import build_lateral_controller, build_longitudinal_controller
from data.recorder import DataRecorder
from data.formats.data_format import CycleResult, RecordingFrame

# Configure logging
# Ensure tmp/logs directory exists
log_dir = Path(__file__).parent / 'tmp' / 'logs'
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / 'autopilot.log'

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(str(log_file))
    ]
)
logger = logging.getLogger(__name__)

# Installed alongside this module as package data of `config`
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "autopilot_config.yaml"


@dataclass
class StackConfig:
    """Loop-level settings from the `stack` config section."""
    cycle_hz: float = 20.0
    bridge_url: str = "http://localhost:8000"
    request_timeout_s: float = 0.5
    record_data: bool = True
    recording_dir: str = "data/recordings"
    recorder_flush_every: int = 30
    display_enabled: bool = True


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def build_stack_config(config: dict) -> StackConfig:
    stack_cfg = config.get("stack", {}) if isinstance(config, dict) else {}
    defaults = StackConfig()
    return StackConfig(
        cycle_hz=float(stack_cfg.get("cycle_hz", defaults.cycle_hz)),
        bridge_url=str(stack_cfg.get("bridge_url", defaults.bridge_url)),
        request_timeout_s=float(stack_cfg.get("request_timeout_s", defaults.request_timeout_s)),
        record_data=bool(stack_cfg.get("record_data", defaults.record_data)),
        recording_dir=str(stack_cfg.get("recording_dir", defaults.recording_dir)),
        recorder_flush_every=int(stack_cfg.get("recorder_flush_every", defaults.recorder_flush_every)),
        display_enabled=bool(stack_cfg.get("display_enabled", defaults.display_enabled)),
    )


class AutopilotStack:
    """Fixed-cadence feedback -> control -> actuate loop against the bridge."""

    def __init__(self, bridge_url: Optional[str] = None,
                 record_data: Optional[bool] = None,
                 recording_dir: Optional[str] = None,
                 config_path: Optional[str] = None,
                 bridge: Optional[AutopilotBridgeClient] = None):
        """
        Initialize the autopilot stack.

        Args:
            bridge_url: URL of the bridge server (overrides config)
            record_data: Whether to record cycles (overrides config)
            recording_dir: Directory for recordings (overrides config)
            config_path: Path to configuration YAML file
            bridge: Pre-built bridge client (tests)
        """
        config = load_config(config_path)
        control_cfg = config.get('control', {})
        lane_cfg = config.get('lane', {})
        self.stack_config = build_stack_config(config)
        if bridge_url is not None:
            self.stack_config.bridge_url = bridge_url
        if record_data is not None:
            self.stack_config.record_data = record_data
        if recording_dir is not None:
            self.stack_config.recording_dir = recording_dir

        self.bridge = bridge or AutopilotBridgeClient(
            self.stack_config.bridge_url, timeout=self.stack_config.request_timeout_s
        )
        self.supervisor = AutopilotSupervisor(
            steering=self.bridge.actuator("steering"),
            throttle=self.bridge.actuator("throttle"),
            brake=self.bridge.actuator("brake"),
            lateral_controller=build_lateral_controller(control_cfg),
            longitudinal_controller=build_longitudinal_controller(control_cfg),
            lane_tracker=LaneGeometryTracker(
                behind_angle_deg=float(lane_cfg.get('behind_angle_deg', 90.0))
            ),
            feedback_source=self.bridge,
        )

        self.recorder: Optional[DataRecorder] = None
        if self.stack_config.record_data:
            self.recorder = DataRecorder(
                self.stack_config.recording_dir,
                flush_every=self.stack_config.recorder_flush_every,
            )
            logger.info(f"Recording to {self.recorder.output_file}")

        self.cycle_interval = 1.0 / max(self.stack_config.cycle_hz, 1e-3)
        self.cycle_count = 0
        self.skipped_count = 0
        self.running = False

    def run_once(self) -> CycleResult:
        """Run one cycle: pull feedback, control, actuate, display, record."""
        result = self.supervisor.step()
        if result.skipped:
            self.skipped_count += 1
        else:
            if self.stack_config.display_enabled:
                self.bridge.show(self.supervisor.display_frame())
        if self.recorder:
            self.recorder.record_frame(RecordingFrame(
                timestamp=result.timestamp,
                cycle_id=self.cycle_count,
                vehicle_state=None if result.skipped else self.supervisor.vehicle_state,
                result=result,
            ))
        self.cycle_count += 1
        return result

    def run(self, max_cycles: Optional[int] = None, duration: Optional[float] = None):
        """
        Run the control loop.

        Args:
            max_cycles: Maximum number of cycles to run (None for infinite)
            duration: Maximum duration in seconds (None for infinite)
        """
        logger.info("Starting autopilot...")

        if not self._wait_for_bridge(max_retries=10, initial_delay=1.0):
            logger.error("Bridge server is not available after retries!")
            logger.error("Please start the bridge server: python -m bridge.server")
            return

        logger.info("Bridge server connected")
        self.running = True
        start_time = time.time()
        last_cycle_time = 0.0

        try:
            while self.running:
                if max_cycles and self.cycle_count >= max_cycles:
                    logger.info(f"Reached cycle limit: {max_cycles}")
                    break
                if duration is not None and time.time() - start_time >= duration:
                    logger.info(f"Reached duration limit: {duration}s")
                    break

                # Rate limiting: hold the cycle cadence
                elapsed = time.time() - last_cycle_time
                if elapsed < self.cycle_interval:
                    time.sleep(self.cycle_interval - elapsed)
                last_cycle_time = time.time()

                self.run_once()

                loop_duration = time.time() - last_cycle_time
                if loop_duration > self.cycle_interval:
                    logger.warning(
                        "[LOOP_SLOW] duration=%.3fs cycle=%s",
                        loop_duration,
                        self.cycle_count,
                    )
        except KeyboardInterrupt:
            logger.info("\nStopping autopilot...")
        finally:
            self.stop()

    def _wait_for_bridge(self, max_retries: int = 10, initial_delay: float = 1.0) -> bool:
        """Wait for bridge server to be available with exponential backoff."""
        delay = initial_delay
        for attempt in range(max_retries):
            if self.bridge.health_check():
                return True
            logger.info(f"Waiting for bridge server... (attempt {attempt + 1}/{max_retries})")
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)  # Exponential backoff, max 5s
        return False

    def stop(self):
        """Stop the loop and hand the actuators back."""
        self.running = False

        if self.supervisor.engaged:
            self.supervisor.release()

        self.bridge.signal_shutdown()

        if self.recorder:
            logger.info(f"Closing data recorder: {self.recorder.output_file}")
            self.recorder.close()
            self.recorder = None

        logger.info(
            f"Autopilot stopped (ran {self.cycle_count} cycles, {self.skipped_count} skipped)"
        )


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run the autopilot control loop')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/autopilot_config.yaml)')
    parser.add_argument('--bridge-url', type=str, default=None,
                        help='Bridge server URL (overrides config)')
    parser.add_argument('--max-cycles', type=int, default=None,
                        help='Maximum number of control cycles')
    parser.add_argument('--duration', type=float, default=None,
                        help='Maximum duration in seconds')
    parser.add_argument('--no-record', dest='record', action='store_false', default=None,
                        help='Disable cycle recording')
    parser.add_argument('--recording-dir', type=str, default=None,
                        help='Directory for recordings (overrides config)')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])

    args = parser.parse_args()
    logging.getLogger().setLevel(args.log_level)

    stack = AutopilotStack(
        bridge_url=args.bridge_url,
        record_data=args.record,
        recording_dir=args.recording_dir,
        config_path=args.config,
    )
    stack.run(max_cycles=args.max_cycles, duration=args.duration)


if __name__ == "__main__":
    main()
