"""
Data recorder for the autopilot.
Records vehicle state, control commands and autopilot mode once per cycle.
"""

import h5py
import numpy as np
import json
import time
import threading
import queue
import logging
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from .formats.data_format import AutopilotMode, RecordingFrame

logger = logging.getLogger(__name__)

# Per-cycle float datasets; NaN marks "not written this cycle"
VEHICLE_FIELDS = ("heading", "speed", "lateral_offset", "speed_limit", "brake_pedal")
CONTROL_FIELDS = ("steering", "throttle", "brake")


class DataRecorder:
    """Records autopilot cycles to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 flush_every: int = 30):
        """
        Initialize data recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            flush_every: Buffered cycles per write to disk
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        self.frame_buffer: List[RecordingFrame] = []
        self.frame_buffer_lock = threading.Lock()
        self.flush_queue: "queue.Queue[List[RecordingFrame]]" = queue.Queue()
        self.flush_stop_event = threading.Event()
        self.frame_count = 0
        self.flush_every = flush_every
        self.flush_queue_warn_threshold = 5
        self.flush_thread = threading.Thread(
            target=self._flush_worker,
            name="DataRecorderFlushWorker",
            daemon=True,
        )
        self.flush_thread.start()

        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
        }

    def _create_datasets(self):
        """Create extensible HDF5 datasets for data storage."""
        max_shape = (None,)

        self.h5_file.create_dataset("cycle/timestamps", shape=(0,), maxshape=max_shape, dtype=np.float64)
        self.h5_file.create_dataset("cycle/ids", shape=(0,), maxshape=max_shape, dtype=np.int64)
        self.h5_file.create_dataset("cycle/skipped", shape=(0,), maxshape=max_shape, dtype=np.bool_)
        self.h5_file.create_dataset("cycle/error_count", shape=(0,), maxshape=max_shape, dtype=np.int32)

        self.h5_file.create_dataset("vehicle/position", shape=(0, 3), maxshape=(None, 3), dtype=np.float64)
        self.h5_file.create_dataset("vehicle/in_lane", shape=(0,), maxshape=max_shape, dtype=np.bool_)
        for name in VEHICLE_FIELDS:
            self.h5_file.create_dataset(f"vehicle/{name}", shape=(0,), maxshape=max_shape, dtype=np.float32)

        for name in CONTROL_FIELDS:
            self.h5_file.create_dataset(f"control/{name}", shape=(0,), maxshape=max_shape, dtype=np.float32)
        self.h5_file.create_dataset("control/engaged", shape=(0,), maxshape=max_shape, dtype=np.bool_)
        self.h5_file.create_dataset("control/released", shape=(0,), maxshape=max_shape, dtype=np.bool_)
        self.h5_file.create_dataset(
            "control/band", shape=(0,), maxshape=max_shape, dtype=h5py.string_dtype(encoding="utf-8")
        )

        self.h5_file.create_dataset("lane/waypoint_count", shape=(0,), maxshape=max_shape, dtype=np.int32)

    def record_frame(self, frame: RecordingFrame):
        """Buffer one cycle; buffered cycles are written every flush_every frames."""
        with self.frame_buffer_lock:
            self.frame_buffer.append(frame)
            self.frame_count += 1
            should_flush = len(self.frame_buffer) >= self.flush_every
        if should_flush:
            self.flush()

    def flush(self):
        """Flush buffered frames to disk."""
        with self.frame_buffer_lock:
            if not self.frame_buffer:
                return
            frames = self.frame_buffer
            self.frame_buffer = []
        self.flush_queue.put(frames)

    def _flush_worker(self):
        while not self.flush_stop_event.is_set() or not self.flush_queue.empty():
            try:
                frames = self.flush_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if self.flush_queue.qsize() > self.flush_queue_warn_threshold:
                logger.warning(
                    "[RECORDER_QUEUE_BACKLOG] size=%d threshold=%d",
                    self.flush_queue.qsize(),
                    self.flush_queue_warn_threshold,
                )
            try:
                self._flush_frames(frames)
            except Exception as e:
                logger.error(f"[RECORDER_FLUSH_FAILED] {len(frames)} frames: {e}", exc_info=True)
            finally:
                self.flush_queue.task_done()

    def _flush_frames(self, frames: List[RecordingFrame]):
        if not frames:
            return
        flush_start = time.time()
        self._write_cycles(frames)
        self._write_vehicle_states(frames)
        self._write_control_commands(frames)
        self.h5_file.flush()
        duration = time.time() - flush_start
        if duration > 0.1:
            logger.warning("[RECORDER_FLUSH_SLOW] duration=%.3fs frames=%d", duration, len(frames))

    def _append(self, name: str, values):
        dataset = self.h5_file[name]
        if dataset.dtype.kind == "O":
            values = np.array(values, dtype=object)
        else:
            values = np.asarray(values, dtype=dataset.dtype)
        start = dataset.shape[0]
        dataset.resize(start + len(values), axis=0)
        dataset[start:] = values

    def _write_cycles(self, frames: List[RecordingFrame]):
        """Write per-cycle bookkeeping to HDF5."""
        self._append("cycle/timestamps", [f.timestamp for f in frames])
        self._append("cycle/ids", [f.cycle_id for f in frames])
        self._append("cycle/skipped", [bool(f.result is not None and f.result.skipped) for f in frames])
        self._append("cycle/error_count", [len(f.result.errors) if f.result else 0 for f in frames])
        self._append("lane/waypoint_count", [f.result.waypoint_count if f.result else 0 for f in frames])

    def _write_vehicle_states(self, frames: List[RecordingFrame]):
        """Write vehicle states to HDF5 (NaN rows for skipped cycles)."""
        positions = []
        in_lane = []
        columns = {name: [] for name in VEHICLE_FIELDS}
        for frame in frames:
            state = frame.vehicle_state
            if state is None:
                positions.append([np.nan, np.nan, np.nan])
                in_lane.append(False)
                for name in VEHICLE_FIELDS:
                    columns[name].append(np.nan)
                continue
            positions.append([state.position.x, state.position.y, state.position.z])
            in_lane.append(state.in_lane)
            columns["heading"].append(state.heading_deg)
            columns["speed"].append(state.speed_mph)
            columns["lateral_offset"].append(state.lateral_offset_m)
            columns["speed_limit"].append(state.speed_limit_mph)
            columns["brake_pedal"].append(state.brake_pedal)

        self._append("vehicle/position", positions)
        self._append("vehicle/in_lane", in_lane)
        for name, values in columns.items():
            self._append(f"vehicle/{name}", values)

    def _write_control_commands(self, frames: List[RecordingFrame]):
        """Write control commands to HDF5. Pedals not written this cycle are NaN."""
        steering, throttle, brake = [], [], []
        engaged, released, bands = [], [], []
        for frame in frames:
            result = frame.result
            if result is None:
                steering.append(np.nan)
                throttle.append(np.nan)
                brake.append(np.nan)
                engaged.append(False)
                released.append(False)
                bands.append("")
                continue
            pedals = result.longitudinal
            steering.append(np.nan if result.steering_angle_deg is None else result.steering_angle_deg)
            throttle.append(np.nan if pedals is None or pedals.throttle is None else pedals.throttle)
            brake.append(np.nan if pedals is None or pedals.brake is None else pedals.brake)
            engaged.append(result.mode is AutopilotMode.ENGAGED)
            released.append(result.released)
            bands.append(pedals.band.value if pedals is not None else "")

        self._append("control/steering", steering)
        self._append("control/throttle", throttle)
        self._append("control/brake", brake)
        self._append("control/engaged", engaged)
        self._append("control/released", released)
        self._append("control/band", bands)

    def close(self):
        """Close the recording file."""
        try:
            with self.frame_buffer_lock:
                if self.frame_buffer:
                    frames = self.frame_buffer
                    self.frame_buffer = []
                    self.flush_queue.put(frames)
            self.flush_stop_event.set()
            self.flush_thread.join(timeout=5.0)
        except Exception as e:
            logger.error(f"Error during final flush: {e}", exc_info=True)
            # Continue to close the file even if flush fails

        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["total_frames"] = self.frame_count

        try:
            self.h5_file.attrs["metadata"] = json.dumps(self.metadata, indent=2)
        except Exception as e:
            logger.warning(f"Failed to save metadata: {e}")

        try:
            self.h5_file.close()
            logger.info(f"Recording saved to: {self.output_file}")
        except Exception as e:
            logger.error(f"Error closing HDF5 file: {e}", exc_info=True)
            raise

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
