from pathlib import Path

import h5py
import numpy as np
import pytest

from control.geometry import Point3D
from control.pid_controller import LongitudinalController
from data.formats.data_format import (
    AutopilotMode, CycleResult, RecordingFrame, ReleaseAllCommand, VehicleState,
)
from data.recorder import DataRecorder
from data.replay import DataReplay


def _state(speed=30.0, in_lane=True):
    return VehicleState(
        position=Point3D(1.0, 2.0, 3.0),
        heading_deg=45.0,
        speed_mph=speed,
        lateral_offset_m=0.25,
        in_lane=in_lane,
        speed_limit_mph=35.0,
    )


def _frames():
    pedals = LongitudinalController().compute_control(35.0, 32.0)
    engaged = CycleResult(timestamp=1.0, mode=AutopilotMode.ENGAGED,
                          steering_angle_deg=-12.5, longitudinal=pedals, waypoint_count=4)
    released = CycleResult(timestamp=2.0, mode=AutopilotMode.DISENGAGED,
                           commands=[ReleaseAllCommand()], waypoint_count=3)
    skipped = CycleResult(timestamp=3.0, mode=AutopilotMode.DISENGAGED, skipped=True,
                          errors=["feedback unavailable: timeout"])
    return [
        RecordingFrame(timestamp=1.0, cycle_id=0, vehicle_state=_state(), result=engaged),
        RecordingFrame(timestamp=2.0, cycle_id=1, vehicle_state=_state(in_lane=False), result=released),
        RecordingFrame(timestamp=3.0, cycle_id=2, vehicle_state=None, result=skipped),
    ]


def test_recorder_writes_cycles(tmp_path: Path) -> None:
    with DataRecorder(str(tmp_path), recording_name="cycles", flush_every=2) as recorder:
        for frame in _frames():
            recorder.record_frame(frame)

    with h5py.File(tmp_path / "cycles.h5", "r") as h5_file:
        assert len(h5_file["cycle/timestamps"]) == 3
        assert h5_file["vehicle/position"][0].tolist() == [1.0, 2.0, 3.0]
        assert np.isnan(h5_file["vehicle/position"][2]).all()
        assert float(h5_file["control/steering"][0]) == pytest.approx(-12.5)
        assert np.isnan(h5_file["control/steering"][1])
        assert h5_file["control/released"][:].tolist() == [False, True, False]
        assert "total_frames" in h5_file.attrs["metadata"]


def test_replay_reads_cycles_back(tmp_path: Path) -> None:
    with DataRecorder(str(tmp_path), recording_name="replay") as recorder:
        for frame in _frames():
            recorder.record_frame(frame)

    with DataReplay(str(tmp_path / "replay.h5")) as replay:
        cycles = list(replay.get_cycles())
        stats = replay.get_statistics()

    assert len(cycles) == 3
    first, second, third = cycles
    assert first["steering"] == pytest.approx(-12.5)
    assert first["throttle"] == pytest.approx(0.3)
    assert first["brake"] == 0.0
    assert first["band"] == "throttle_low"
    assert first["engaged"] is True
    assert first["waypoint_count"] == 4
    assert second["released"] is True
    assert second["steering"] is None
    assert second["band"] is None
    assert third["skipped"] is True
    assert third["error_count"] == 1

    assert stats["cycles"] == 3
    assert stats["release_events"] == 1
    assert stats["skipped_cycles"] == 1
    assert stats["max_abs_steering"] == pytest.approx(12.5)
    assert stats["metadata"]["recording_name"] == "replay"


def test_replay_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        DataReplay(str(tmp_path / "missing.h5"))
