"""
Data replay utility for autopilot recordings.
Iterates recorded cycles back for debugging and offline checks.
"""

import json
import h5py
import numpy as np
from pathlib import Path
from typing import Iterator, Optional


def _optional(value) -> Optional[float]:
    value = float(value)
    return None if np.isnan(value) else value


class DataReplay:
    """Replay recorded autopilot cycles."""

    def __init__(self, recording_file: str):
        """
        Initialize data replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        """Load recording metadata."""
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}

    def __len__(self) -> int:
        if "cycle/timestamps" not in self.h5_file:
            return 0
        return len(self.h5_file["cycle/timestamps"])

    def get_cycles(self) -> Iterator[dict]:
        """
        Get recorded cycles iterator.

        Yields:
            Dictionary with vehicle state and control data of one cycle.
            Commands that were not issued that cycle are None.
        """
        if "cycle/timestamps" not in self.h5_file:
            return

        f = self.h5_file
        bands = f["control/band"].asstr()
        for i in range(len(f["cycle/timestamps"])):
            yield {
                "timestamp": float(f["cycle/timestamps"][i]),
                "cycle_id": int(f["cycle/ids"][i]),
                "skipped": bool(f["cycle/skipped"][i]),
                "error_count": int(f["cycle/error_count"][i]),
                "position": f["vehicle/position"][i],
                "heading": float(f["vehicle/heading"][i]),
                "speed": float(f["vehicle/speed"][i]),
                "lateral_offset": float(f["vehicle/lateral_offset"][i]),
                "speed_limit": float(f["vehicle/speed_limit"][i]),
                "in_lane": bool(f["vehicle/in_lane"][i]),
                "steering": _optional(f["control/steering"][i]),
                "throttle": _optional(f["control/throttle"][i]),
                "brake": _optional(f["control/brake"][i]),
                "band": bands[i] or None,
                "engaged": bool(f["control/engaged"][i]),
                "released": bool(f["control/released"][i]),
                "waypoint_count": int(f["lane/waypoint_count"][i]),
            }

    def get_statistics(self) -> dict:
        """Get statistics about the recording."""
        stats = {
            "file": str(self.recording_file),
            "metadata": self.metadata,
            "cycles": len(self),
        }
        if len(self):
            f = self.h5_file
            stats["skipped_cycles"] = int(np.sum(f["cycle/skipped"][:]))
            stats["engaged_cycles"] = int(np.sum(f["control/engaged"][:]))
            stats["release_events"] = int(np.sum(f["control/released"][:]))
            steering = f["control/steering"][:]
            if np.any(~np.isnan(steering)):
                stats["max_abs_steering"] = float(np.nanmax(np.abs(steering)))
        return stats

    def close(self):
        """Close the replay file."""
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: python -m data.replay <recording_file.h5>")
        sys.exit(1)

    with DataReplay(sys.argv[1]) as replay:
        print("Recording Statistics:")
        for key, value in replay.get_statistics().items():
            print(f"  {key}: {value}")
