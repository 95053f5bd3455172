from lidarstream.core.errors import (
    CorruptFileError,
    EndOfFileError,
    ErrorCode,
    InvalidArgumentError,
    SensorError,
    error_code_name,
    error_for_code,
    is_failure,
)


def test_negative_codes_are_failures() -> None:
    assert not is_failure(ErrorCode.SUCCESS)
    assert is_failure(ErrorCode.CORRUPT_FILE)
    assert is_failure(ErrorCode.FAULT_MOTOR_MALFUNCTION)
    assert not is_failure(3)


def test_error_for_code_maps_to_subclasses() -> None:
    assert isinstance(error_for_code(ErrorCode.CORRUPT_FILE), CorruptFileError)
    assert isinstance(error_for_code(-15), EndOfFileError)
    err = error_for_code(ErrorCode.INVALID_ARGUMENTS, "bad seek")
    assert isinstance(err, InvalidArgumentError)
    assert isinstance(err, ValueError)
    assert err.code == ErrorCode.INVALID_ARGUMENTS


def test_unmapped_codes_fall_back_to_sensor_error() -> None:
    err = error_for_code(ErrorCode.FAULT_LASER_MALFUNCTION, "laser")
    assert type(err) is SensorError
    assert err.code == ErrorCode.FAULT_LASER_MALFUNCTION
    assert type(error_for_code(-4242)) is SensorError


def test_error_code_name() -> None:
    assert error_code_name(-13) == "CORRUPT_FILE"
    assert error_code_name(-4242) == ""
