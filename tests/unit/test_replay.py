import time

import pytest

from conftest import RecordingListener, write_capture
from lidarstream.core.errors import (
    AlreadyOpenError,
    CorruptFileError,
    EndOfFileError,
    InvalidArgumentError,
    NotInitializedError,
    NotOpenError,
)
from lidarstream.replay.capture import CaptureReader
from lidarstream.replay.controller import CaptureReplay
from lidarstream.sensors.info import SENSOR_HANDLE_FLAG_MOCK, SensorEvent


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def replay(capture_path, listener):
    r = CaptureReplay(listener)
    r.open(capture_path)
    yield r
    if r.is_open():
        r.close()


def test_open_reports_capture(replay) -> None:
    state = replay.status()
    assert state.is_open
    assert state.position_sec == 0.0
    assert state.length_sec == pytest.approx(4.0)
    assert not state.is_running
    assert not state.is_end
    assert replay.start_time() > 0


def test_resume_blocking_advances_exactly(replay, listener) -> None:
    count = replay.resume_blocking(2.0)

    assert replay.position() == pytest.approx(2.0)
    assert not replay.is_running()
    # attach + batches at 0.0, 0.5, 1.0, 1.5, 2.0
    assert count == 6
    assert len(listener.points) == 5
    assert listener.events[0][3] is SensorEvent.ATTACH

    replay.resume_blocking(0.25)
    assert replay.position() == pytest.approx(2.25)
    assert len(listener.points) == 5


def test_replayed_handles_are_mocked(replay, listener) -> None:
    replay.resume_blocking(0.0)
    _, handle, info, _ = listener.events[0]
    assert handle & SENSOR_HANDLE_FLAG_MOCK
    assert info.is_mocked
    assert info.handle == handle
    assert listener.points[0][1] == handle
    assert replay.get_sensor_info(handle).serial_number == 12345
    assert replay.sensor_handles() == [handle]


def test_seek_sets_position_and_reannounces(replay, listener) -> None:
    replay.seek(1.2)
    assert replay.position() == pytest.approx(1.2)

    replay.resume_blocking_once()
    # synthesized attach comes before the first batch after the seek
    assert [e[3] for e in listener.events] == [SensorEvent.ATTACH]
    assert len(listener.points) == 1
    assert replay.position() == pytest.approx(1.5)


@pytest.mark.parametrize("sec", [-0.1, 4.0, 10.0, float("nan")])
def test_invalid_seek_leaves_position(replay, sec) -> None:
    replay.seek(1.0)
    with pytest.raises(InvalidArgumentError):
        replay.seek(sec)
    assert replay.position() == pytest.approx(1.0)


def test_blocking_replay_saturates_at_end(replay, listener) -> None:
    replay.seek(3.0)
    replay.resume_blocking(10.0)
    assert replay.is_end()
    assert replay.position() == pytest.approx(4.0)
    assert len(listener.points) == 3

    with pytest.raises(EndOfFileError):
        replay.resume_blocking(1.0)
    with pytest.raises(EndOfFileError):
        replay.resume_blocking_once()

    replay.rewind()
    assert not replay.is_end()
    assert replay.position() == 0.0


def test_loop_wraps_position(replay, listener) -> None:
    replay.set_enable_loop(True)
    replay.seek(3.0)
    count = replay.resume_blocking(1.5)

    assert not replay.is_end()
    assert replay.position() == pytest.approx(0.5)
    assert 0.0 <= replay.position() < replay.length()
    # 3.0, 3.5, 4.0 then attach, 0.0, 0.5 after wrapping
    assert count == 6


def test_loop_keeps_position_in_range_over_many_passes(replay) -> None:
    replay.set_enable_loop(True)
    for step in (0.7, 3.9, 8.3, 0.0, 12.1):
        replay.resume_blocking(step)
        assert 0.0 <= replay.position() < replay.length()


def test_step_through_whole_capture(replay, listener) -> None:
    steps = 0
    while not replay.is_end():
        assert replay.resume_blocking_once() == 1
        steps += 1
    assert steps == 10
    assert replay.position() == pytest.approx(4.0)
    with pytest.raises(EndOfFileError):
        replay.resume_blocking_once()


def test_argument_validation(replay) -> None:
    with pytest.raises(InvalidArgumentError):
        replay.set_speed(0.0)
    with pytest.raises(InvalidArgumentError):
        replay.set_speed(-2.0)
    with pytest.raises(InvalidArgumentError):
        replay.resume_blocking(-1.0)
    replay.set_enable_loop(True)
    with pytest.raises(InvalidArgumentError):
        replay.resume_blocking(float("inf"))
    replay.set_speed(2.5)
    assert replay.get_speed() == 2.5


def test_closed_replay_rejects_control(capture_path) -> None:
    r = CaptureReplay(RecordingListener())
    with pytest.raises(NotOpenError):
        r.pause()
    with pytest.raises(NotOpenError):
        r.seek(0.0)
    with pytest.raises(NotOpenError):
        r.resume_blocking(1.0)
    with pytest.raises(NotOpenError):
        r.close()
    assert not r.status().is_open
    # speed and loop may be set before opening
    r.set_speed(4.0)
    r.set_enable_loop(True)
    r.open(capture_path)
    assert r.get_speed() == 4.0
    assert r.get_enable_loop()
    r.close()


def test_replay_without_listener(capture_path) -> None:
    r = CaptureReplay()
    r.open(capture_path)
    try:
        with pytest.raises(NotInitializedError):
            r.resume_blocking(1.0)
        with pytest.raises(NotInitializedError):
            r.resume()
    finally:
        r.close()


def test_double_open(replay, capture_path) -> None:
    with pytest.raises(AlreadyOpenError):
        replay.open(capture_path)


def test_corrupt_capture_stays_closed(tmp_path, capture_path) -> None:
    corrupt = tmp_path / "capture.bin"
    corrupt.write_bytes(capture_path.read_bytes()[:-7])
    r = CaptureReplay(RecordingListener())
    with pytest.raises(CorruptFileError):
        r.open(corrupt)
    assert not r.is_open()
    assert not r.status().is_open
    with pytest.raises(NotOpenError):
        r.resume_blocking(1.0)

    r.open(capture_path)
    assert r.is_open()
    r.close()


def test_async_replay_runs_to_end(capture_path, listener) -> None:
    r = CaptureReplay(listener, speed=40.0)
    r.open(capture_path)
    try:
        r.resume()
        assert _wait_for(r.is_end)
        assert not r.is_running()
        assert len(listener.points) == 9
        assert r.position() == pytest.approx(4.0)
    finally:
        r.close()


def test_async_pause_stops_delivery(capture_path, listener) -> None:
    r = CaptureReplay(listener, speed=1.0)
    r.open(capture_path)
    try:
        r.resume()
        assert r.is_running()
        assert _wait_for(lambda: len(listener.points) >= 1)
        r.pause()
        assert not r.is_running()
        seen = listener.count
        position = r.position()
        time.sleep(0.6)
        assert listener.count == seen
        assert r.position() == position
        assert position < r.length()
    finally:
        r.close()


def test_close_stops_callbacks(capture_path, listener) -> None:
    r = CaptureReplay(listener, speed=20.0, loop=True)
    r.open(capture_path)
    r.resume()
    assert _wait_for(lambda: len(listener.points) >= 3)
    r.close()
    seen = listener.count
    time.sleep(0.3)
    assert listener.count == seen
    assert not r.is_open()


def test_async_loop_wraps_position(capture_path) -> None:
    class _PauseInSecondPass(RecordingListener):
        def __init__(self) -> None:
            super().__init__()
            self.replay = None

        def on_points(self, error_code, sensor_handle, raw_points) -> None:
            super().on_points(error_code, sensor_handle, raw_points)
            if len(self.points) == 12:
                self.replay.pause()

    listener = _PauseInSecondPass()
    r = CaptureReplay(listener, speed=40.0, loop=True)
    listener.replay = r
    r.open(capture_path)
    try:
        packets = len(CaptureReader(capture_path))
        r.resume()
        assert _wait_for(lambda: len(listener.points) >= 12 and not r.is_running())

        assert len(listener.points) > packets
        assert not r.is_end()
        assert 0.0 <= r.position() < r.length()
        # the recorded attach is replayed at the start of every pass
        assert [e[3] for e in listener.events] == [SensorEvent.ATTACH, SensorEvent.ATTACH]
    finally:
        r.close()


def test_async_loop_of_zero_length_capture_stops_at_end(tmp_path, listener) -> None:
    path = write_capture(tmp_path / "instant.lscap", offsets=(0.0,))
    r = CaptureReplay(listener, speed=1.0, loop=True)
    r.open(path)
    try:
        assert r.length() == 0.0
        r.resume()
        assert _wait_for(r.is_end)
        time.sleep(0.3)
        assert len(listener.points) == 1
        assert not r.is_running()
    finally:
        r.close()


def test_blocking_loop_of_zero_length_capture_stops_at_end(tmp_path, listener) -> None:
    path = write_capture(tmp_path / "instant.lscap", offsets=(0.0,))
    r = CaptureReplay(listener, loop=True)
    r.open(path)
    try:
        assert r.resume_blocking(5.0) == 2
        assert r.is_end()
        assert len(listener.points) == 1
    finally:
        r.close()


def test_listener_may_pause_from_callback(capture_path) -> None:
    class _PauseOnFirstBatch(RecordingListener):
        def __init__(self) -> None:
            super().__init__()
            self.replay = None

        def on_points(self, error_code, sensor_handle, raw_points) -> None:
            super().on_points(error_code, sensor_handle, raw_points)
            self.replay.pause()

    listener = _PauseOnFirstBatch()
    r = CaptureReplay(listener, speed=50.0)
    listener.replay = r
    r.open(capture_path)
    try:
        r.resume()
        assert _wait_for(lambda: not r.is_running())
        assert len(listener.points) == 1
    finally:
        r.close()


def test_listener_errors_do_not_stop_playback(capture_path) -> None:
    class _Exploding(RecordingListener):
        def on_points(self, error_code, sensor_handle, raw_points) -> None:
            super().on_points(error_code, sensor_handle, raw_points)
            raise RuntimeError("boom")

    listener = _Exploding()
    r = CaptureReplay(listener)
    r.open(capture_path)
    try:
        r.resume_blocking(10.0)
        assert len(listener.points) == 9
        assert r.is_end()
    finally:
        r.close()


def test_empty_capture(tmp_path, listener) -> None:
    path = write_capture(tmp_path / "empty.lscap", offsets=())
    r = CaptureReplay(listener)
    r.open(path)
    try:
        assert r.length() == 0.0
        # the attach record is the only packet
        assert r.resume_blocking_once() == 1
        assert r.is_end()
        with pytest.raises(EndOfFileError):
            r.resume_blocking(1.0)
        with pytest.raises(InvalidArgumentError):
            r.seek(0.0)
    finally:
        r.close()
