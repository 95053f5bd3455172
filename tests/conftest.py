from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np
import pytest

from lidarstream.core.frame import RAW_POINT_DTYPE
from lidarstream.replay.capture import CaptureWriter
from lidarstream.sensors.info import SensorEvent, SensorInfo

START_TIME_US = 1_700_000_000_000_000
DEFAULT_OFFSETS = tuple(0.5 * i for i in range(9))  # 0.0 .. 4.0 s


def raw_batch(timestamps: Sequence[int], distance: float = 10.0) -> np.ndarray:
    raw = np.zeros(len(timestamps), dtype=RAW_POINT_DTYPE)
    raw["timestamp"] = timestamps
    raw["image_x"] = np.linspace(-0.2, 0.2, len(timestamps))
    raw["distance"] = distance
    raw["intensity"] = 0.5
    raw["valid"] = 1
    return raw


def write_capture(
    path: Path,
    *,
    sensors: int = 1,
    offsets: Sequence[float] = DEFAULT_OFFSETS,
    points: int = 3,
) -> Path:
    """One attach per sensor at t=0, then one batch per sensor at every offset."""
    infos = [SensorInfo(handle=i + 1, serial_number=12345 + i) for i in range(sensors)]
    with CaptureWriter(path, start_time=START_TIME_US) as writer:
        for info in infos:
            writer.write_event(START_TIME_US, info, SensorEvent.ATTACH)
        for offset in offsets:
            ts = START_TIME_US + int(round(offset * 1e6))
            for info in infos:
                writer.write_points(ts, info.handle, raw_batch([ts - 2, ts, ts - 1][:points]))
    return path


@pytest.fixture
def capture_path(tmp_path) -> Path:
    return write_capture(tmp_path / "capture.lscap")


class RecordingListener:
    def __init__(self) -> None:
        self.points = []
        self.events = []

    def on_points(self, error_code, sensor_handle, raw_points) -> None:
        self.points.append((error_code, sensor_handle, raw_points.copy()))

    def on_sensor_event(self, error_code, handle, info, event) -> None:
        self.events.append((error_code, handle, info, event))

    @property
    def count(self) -> int:
        return len(self.points) + len(self.events)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
