from __future__ import annotations

from pathlib import Path

import numpy as np
import yaml

from lidarstream.config import load_config
from lidarstream.examples.synthetic import generate_capture
from lidarstream.replay.capture import CaptureReader
from lidarstream.sdk import replay_capture


def _write_config(tmp_path: Path, **extra) -> Path:
    config = {
        "capture_path": "session.lscap",
        "output_namespace": "lidar",
        "output": {"directory": "out", "format": "memory"},
    }
    config.update(extra)
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def test_replay_capture_from_yaml(tmp_path: Path) -> None:
    generate_capture(tmp_path / "session.lscap", sensors=2, frames=4, points_per_frame=32, seed=3)
    result = replay_capture(_write_config(tmp_path))

    assert result.stats["frames"] == 8
    assert result.stats["points"] == 8 * 32
    assert set(result.channels) == {"lidar_points_12345", "lidar_points_12346"}
    frames = result.channels["lidar_points_12345"].items
    assert [f.width for f in frames] == [32] * 4
    assert result.config.replay.mode == "blocking"


def test_replay_capture_with_overrides(tmp_path: Path) -> None:
    other = generate_capture(tmp_path / "other.lscap", sensors=1, frames=10, rate_hz=10.0)
    cfg = load_config(_write_config(tmp_path, combine_sensors=True))
    result = replay_capture(cfg, capture=other, duration=0.45)

    # batches land at 0.1 s steps; 0.1 .. 0.4 fall inside the window
    assert result.stats["frames"] == 4
    assert list(result.channels) == ["lidar_points"]
    assert cfg.capture_path == (tmp_path / "session.lscap").resolve()


def test_synthetic_capture_is_deterministic(tmp_path: Path) -> None:
    a = generate_capture(tmp_path / "a.lscap", sensors=2, frames=3, points_per_frame=16, seed=11)
    b = generate_capture(tmp_path / "b.lscap", sensors=2, frames=3, points_per_frame=16, seed=11)
    assert a.read_bytes() == b.read_bytes()

    reader = CaptureReader(a)
    # 2 attaches + per frame and sensor: points and frame boundary
    assert len(reader) == 2 + 3 * 2 * 2
    assert abs(reader.length - 0.3) < 1e-9
    batch = reader.packets[2].points
    assert len(batch) == 16
    assert np.all(batch["distance"] > 0.0)
    assert np.all(np.diff(batch["timestamp"].astype(np.int64)) >= 0)
