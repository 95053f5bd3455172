from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional, Type


class ErrorCode(IntEnum):
    """Status codes reported by a sensor feed. Negative values are failures."""

    SUCCESS = 0
    GENERIC = -1
    OUT_OF_MEMORY = -2
    SENSOR_NOT_FOUND = -4
    SDK_VERSION_MISMATCH = -5
    COMMUNICATION = -6
    TOO_MANY_CALLBACKS = -7
    INVALID_ARGUMENTS = -8
    ALREADY_INITIALIZED = -9
    NOT_INITIALIZED = -10
    INVALID_FILE_TYPE = -11
    FILE_IO = -12
    CORRUPT_FILE = -13
    NOT_OPEN = -14
    EOF = -15

    FAULT_INTERNAL = -1000
    FAULT_EXTREME_TEMPERATURE = -1001
    FAULT_EXTREME_HUMIDITY = -1002
    FAULT_EXTREME_ACCELERATION = -1003
    FAULT_ABNORMAL_FOV = -1004
    FAULT_ABNORMAL_FRAME_RATE = -1005
    FAULT_MOTOR_MALFUNCTION = -1006
    FAULT_LASER_MALFUNCTION = -1007
    FAULT_DETECTOR_MALFUNCTION = -1008


def is_failure(code: int) -> bool:
    return int(code) < 0


def error_code_name(code: int) -> str:
    """Return the symbolic name of ``code`` or an empty string if unknown."""
    try:
        return ErrorCode(int(code)).name
    except ValueError:
        return ""


class LidarStreamError(Exception):
    """Base class for all errors raised by lidarstream."""


class SensorError(LidarStreamError):
    """Error carrying a feed status code."""

    code: ErrorCode = ErrorCode.GENERIC

    def __init__(self, message: str = "", code: Optional[int] = None) -> None:
        if code is not None:
            self.code = ErrorCode(code)
        super().__init__(message or self.code.name)


class SensorNotFoundError(SensorError):
    code = ErrorCode.SENSOR_NOT_FOUND


class InvalidArgumentError(SensorError, ValueError):
    code = ErrorCode.INVALID_ARGUMENTS


class AlreadyOpenError(SensorError):
    code = ErrorCode.ALREADY_INITIALIZED


class NotInitializedError(SensorError):
    code = ErrorCode.NOT_INITIALIZED


class InvalidFormatError(SensorError):
    code = ErrorCode.INVALID_FILE_TYPE


class FileIOError(SensorError):
    code = ErrorCode.FILE_IO


class CorruptFileError(SensorError):
    code = ErrorCode.CORRUPT_FILE


class NotOpenError(SensorError):
    code = ErrorCode.NOT_OPEN


class EndOfFileError(SensorError):
    code = ErrorCode.EOF


class FrameFinishedError(LidarStreamError, RuntimeError):
    """Raised when a frame builder is used after ``finish()``."""


class PipelineInitError(LidarStreamError, RuntimeError):
    """The pipeline could not be started and stays inert."""


_ERROR_BY_CODE: Dict[ErrorCode, Type[SensorError]] = {
    cls.code: cls
    for cls in (
        SensorNotFoundError,
        InvalidArgumentError,
        AlreadyOpenError,
        NotInitializedError,
        InvalidFormatError,
        FileIOError,
        CorruptFileError,
        NotOpenError,
        EndOfFileError,
    )
}


def error_for_code(code: int, message: str = "") -> SensorError:
    """Build the exception matching a failure status code."""
    try:
        ec = ErrorCode(int(code))
    except ValueError:
        return SensorError(message or f"unknown error code {code}")
    cls = _ERROR_BY_CODE.get(ec, SensorError)
    if cls is SensorError:
        return SensorError(message, code=ec)
    return cls(message)
