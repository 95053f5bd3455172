from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from lidarstream.config import PipelineConfig, load_config


def test_defaults() -> None:
    cfg = PipelineConfig()
    assert cfg.capture_path is None
    assert cfg.combine_sensors is False
    assert cfg.output_namespace == "cepton"
    assert cfg.replay.speed == 1.0
    assert cfg.replay.mode == "blocking"
    assert cfg.output.format == "npz"
    assert cfg.mount is None


def test_load_resolves_relative_paths(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "pipeline.yaml"
    config_path.parent.mkdir()
    config_path.write_text(
        yaml.safe_dump(
            {
                "capture_path": "data/session.lscap",
                "combine_sensors": True,
                "output_namespace": "lidar",
                "replay": {"speed": 2.0, "loop": False, "duration_s": 1.5},
                "output": {"directory": "out", "format": "las"},
                "mount": {"translation": [0.0, 0.0, 1.2], "rotation_xyzw": [0.0, 0.0, 0.0, 1.0]},
                "log_level": "debug",
            }
        ),
        encoding="utf-8",
    )
    cfg = load_config(config_path)
    assert cfg.capture_path == (config_path.parent / "data" / "session.lscap").resolve()
    assert cfg.output.directory == (config_path.parent / "out").resolve()
    assert cfg.combine_sensors is True
    assert cfg.replay.duration_s == 1.5
    assert cfg.mount.translation == (0.0, 0.0, 1.2)
    assert cfg.log_level == "DEBUG"


def test_empty_capture_path_means_live(tmp_path: Path) -> None:
    path = tmp_path / "live.yaml"
    path.write_text("capture_path: ''\n", encoding="utf-8")
    assert load_config(path).capture_path is None


@pytest.mark.parametrize(
    "data",
    [
        {"output_namespace": ""},
        {"output_namespace": "has space"},
        {"replay": {"speed": 0}},
        {"replay": {"mode": "realtime"}},
        {"output": {"format": "csv"}},
        {"mount": {"rotation_xyzw": [0, 0, 0, 0]}},
        {"replay": {"loop": True, "mode": "blocking"}},
    ],
)
def test_invalid_values_rejected(data) -> None:
    with pytest.raises(ValidationError):
        PipelineConfig.model_validate(data)


def test_non_mapping_root_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
