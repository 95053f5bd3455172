from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from ..core.frame import RAW_POINT_DTYPE
from ..core.utils import sec_to_usec
from ..replay.capture import CaptureWriter
from ..sensors.info import SensorEvent, SensorInfo, SensorModel

DEFAULT_START_TIME_US = 1_600_000_000_000_000
DEFAULT_BASE_SERIAL = 12345


def _scan_image_coords(
    n_points: int,
    n_rows: int,
    fov_deg: float,
    phase: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Row-by-row sweep across the image plane; ``phase`` in [0, 1) shifts the columns."""
    half = np.tan(np.deg2rad(fov_deg) / 2.0)
    rows = max(1, min(n_rows, n_points))
    per_row = int(np.ceil(n_points / rows))
    cols = (np.arange(per_row, dtype=np.float64) + phase) / per_row
    ix_row = -half + 2.0 * half * (cols % 1.0)
    iz_rows = np.linspace(-0.5 * half, 0.5 * half, rows)
    ix = np.tile(ix_row, rows)[:n_points]
    iz = np.repeat(iz_rows, per_row)[:n_points]
    return ix, iz


def _scene_distance(ix: np.ndarray, iz: np.ndarray, wall_m: float, height_m: float) -> np.ndarray:
    """Range to the nearer of a wall ``wall_m`` ahead and the ground ``height_m`` below."""
    h = np.sqrt(ix * ix + iz * iz + 1.0)
    wall = wall_m * h
    # positive image_z looks down; the ground is only visible below the horizon
    with np.errstate(divide="ignore"):
        ground = np.where(iz > 0.0, height_m / np.maximum(iz, 1e-12) * h, np.inf)
    return np.minimum(wall, ground)


def make_sensor_info(index: int, *, base_serial: int = DEFAULT_BASE_SERIAL) -> SensorInfo:
    return SensorInfo(
        handle=index + 1,
        serial_number=base_serial + index,
        model_name="Vista-860",
        model=SensorModel.VISTA_860,
        firmware_version="1.0.0",
        last_reported_temperature=31.5,
        return_count=1,
        is_calibrated=True,
    )


def generate_capture(
    path: Union[str, Path],
    *,
    sensors: int = 2,
    frames: int = 10,
    points_per_frame: int = 256,
    rate_hz: float = 10.0,
    seed: Optional[int] = 0,
    start_time: int = DEFAULT_START_TIME_US,
    fov_deg: float = 60.0,
    rows: int = 16,
    wall_m: float = 20.0,
    height_m: float = 1.5,
    range_noise_m: float = 0.01,
    detach: bool = False,
) -> Path:
    """Write a deterministic multi-sensor capture.

    Each sensor attaches at ``start_time``, then emits one point batch per
    frame followed by a frame-boundary event. The capture length is
    ``frames / rate_hz`` seconds.
    """
    if sensors < 1:
        raise ValueError("Need at least one sensor.")
    if frames < 0 or points_per_frame < 0:
        raise ValueError("frames and points_per_frame must be non-negative.")
    if rate_hz <= 0.0:
        raise ValueError("rate_hz must be positive.")

    out = Path(path)
    rng = np.random.default_rng(seed)
    infos = [make_sensor_info(i) for i in range(sensors)]
    period_us = sec_to_usec(1.0 / rate_hz)

    with CaptureWriter(out, start_time=start_time) as writer:
        for info in infos:
            writer.write_event(start_time, info, SensorEvent.ATTACH)

        for f in range(frames):
            frame_start = start_time + f * period_us
            frame_end = frame_start + period_us
            for s, info in enumerate(infos):
                phase = (f / max(frames, 1) + s / sensors) % 1.0
                ix, iz = _scan_image_coords(points_per_frame, rows, fov_deg, phase)
                distance = _scene_distance(ix, iz, wall_m, height_m)
                if range_noise_m > 0.0:
                    distance = distance + rng.normal(0.0, range_noise_m, size=distance.shape)

                raw = np.zeros(points_per_frame, dtype=RAW_POINT_DTYPE)
                raw["timestamp"] = frame_start + np.linspace(0, period_us, points_per_frame, endpoint=False).astype(np.uint64)
                raw["image_x"] = ix
                raw["image_z"] = iz
                raw["distance"] = np.maximum(distance, 0.0)
                raw["intensity"] = rng.uniform(0.05, 1.0, size=points_per_frame)
                raw["return_number"] = 0
                raw["valid"] = 1
                writer.write_points(frame_end, info.handle, raw)
                writer.write_event(frame_end, info, SensorEvent.FRAME)

        if detach:
            end = start_time + frames * period_us
            for info in infos:
                writer.write_event(end, info.with_updates(is_connected=False), SensorEvent.DETACH)

    return out
