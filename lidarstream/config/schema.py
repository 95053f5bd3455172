from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

_NAMESPACE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ReplayConfig(BaseModel):
    speed: float = Field(default=1.0, gt=0.0)
    loop: bool = False
    mode: Literal["async", "blocking"] = "blocking"
    duration_s: Optional[float] = Field(default=None, ge=0.0)

    @model_validator(mode="after")
    def _validate_loop(self) -> "ReplayConfig":
        if self.loop and self.mode == "blocking" and self.duration_s is None:
            raise ValueError("Looping blocking replay requires duration_s")
        return self


class OutputConfig(BaseModel):
    directory: Path = Path("output")
    format: Literal["npz", "las", "laz", "memory"] = "npz"
    write_sensor_information: bool = True
    point_format: int = 6


class MountConfig(BaseModel):
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation_xyzw: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    @field_validator("rotation_xyzw")
    @classmethod
    def _non_degenerate(cls, value: tuple[float, float, float, float]) -> tuple[float, float, float, float]:
        if sum(c * c for c in value) == 0.0:
            raise ValueError("rotation_xyzw must not be the zero quaternion")
        return value


class PipelineConfig(BaseModel):
    capture_path: Optional[Path] = None
    combine_sensors: bool = False
    output_namespace: str = "cepton"
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    mount: Optional[MountConfig] = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("capture_path", mode="before")
    @classmethod
    def _empty_is_live(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("output_namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        if not _NAMESPACE_RE.match(value):
            raise ValueError(f"output_namespace must be a non-empty identifier, got {value!r}")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value):
        return value.upper() if isinstance(value, str) else value


def load_config(path: str | Path) -> PipelineConfig:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping.")
    cfg = PipelineConfig.model_validate(data)
    if not cfg.output.directory.is_absolute():
        cfg.output.directory = (path.parent / cfg.output.directory).resolve()
    if cfg.capture_path is not None and not cfg.capture_path.is_absolute():
        cfg.capture_path = (path.parent / cfg.capture_path).resolve()
    return cfg
