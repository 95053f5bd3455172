from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import IntEnum
from typing import Any, Dict

NULL_HANDLE = 0
# Set on handles generated by capture replay.
SENSOR_HANDLE_FLAG_MOCK = 0x100000000

MODEL_NAME_MAX_LEN = 27
FIRMWARE_VERSION_MAX_LEN = 31


class SensorModel(IntEnum):
    UNKNOWN = 0
    HR80T = 1
    HR80M = 2
    HR80W = 3
    SORA_200 = 4
    VISTA_860 = 5


class SensorEvent(IntEnum):
    ATTACH = 1
    DETACH = 2
    FRAME = 3


@dataclass(frozen=True)
class SensorInfo:
    """Identity and health snapshot of one sensor."""

    handle: int
    serial_number: int
    model_name: str = ""
    model: SensorModel = SensorModel.UNKNOWN
    firmware_version: str = ""

    last_reported_temperature: float = 0.0  # [celsius]
    last_reported_humidity: float = 0.0     # [%]
    last_reported_age: float = 0.0          # [hours]

    # GPS timestamp, GMT
    gps_ts_year: int = 0    # 0-99 (2017 -> 17)
    gps_ts_month: int = 0
    gps_ts_day: int = 0
    gps_ts_hour: int = 0
    gps_ts_min: int = 0
    gps_ts_sec: int = 0

    return_count: int = 1

    is_mocked: bool = False
    is_pps_connected: bool = False
    is_nmea_connected: bool = False
    is_calibrated: bool = False
    is_connected: bool = True

    def __post_init__(self) -> None:
        if len(self.model_name) > MODEL_NAME_MAX_LEN:
            raise ValueError(f"model_name longer than {MODEL_NAME_MAX_LEN} characters: {self.model_name!r}")
        if len(self.firmware_version) > FIRMWARE_VERSION_MAX_LEN:
            raise ValueError(
                f"firmware_version longer than {FIRMWARE_VERSION_MAX_LEN} characters: {self.firmware_version!r}"
            )
        if self.serial_number < 0:
            raise ValueError("serial_number must be non-negative.")
        if not isinstance(self.model, SensorModel):
            object.__setattr__(self, "model", _coerce_model(self.model))

    @property
    def name(self) -> str:
        """Human-readable identity used for channel naming: the serial number."""
        return str(self.serial_number)

    def with_updates(self, **changes: Any) -> "SensorInfo":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["model"] = int(self.model)
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SensorInfo":
        known = {f.name for f in fields(SensorInfo)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "model" in kwargs:
            kwargs["model"] = _coerce_model(kwargs["model"])
        return SensorInfo(**kwargs)


def _coerce_model(value: Any) -> SensorModel:
    try:
        return SensorModel(int(value))
    except (TypeError, ValueError):
        return SensorModel.UNKNOWN
