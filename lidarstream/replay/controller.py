"""
Capture replay controller.

Replays a recorded capture into a feed listener, either synchronously in the
caller's thread (``resume_blocking*``) or in real time from a playback thread
(``resume``). While a capture is open a single owner thread holds the replay
state; control calls are queued as commands and the caller waits until the
owner thread has applied them.
"""

from __future__ import annotations

import contextlib
import math
import pathlib
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Set, Union

from ..core.errors import (
    AlreadyOpenError,
    EndOfFileError,
    ErrorCode,
    InvalidArgumentError,
    NotInitializedError,
    NotOpenError,
)
from ..core.utils import get_logger
from ..sensors.base import FeedListener
from ..sensors.info import SENSOR_HANDLE_FLAG_MOCK, SensorEvent, SensorInfo
from .capture import CapturePacket, CaptureReader, RecordKind

_log = get_logger()

# Longest the playback thread sleeps before refreshing the position while running.
_MAX_IDLE_S = 0.05


class ReplayCommandKind(Enum):
    RESUME = "resume"
    PAUSE = "pause"
    SEEK = "seek"
    REWIND = "rewind"
    SET_SPEED = "set_speed"
    SET_LOOP = "set_loop"
    STOP = "stop"


@dataclass
class ReplayCommand:
    kind: ReplayCommandKind
    value: Any = None
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ReplayState:
    is_open: bool
    position_sec: float
    length_sec: float
    loop_enabled: bool
    speed: float
    is_running: bool
    is_end: bool


class CaptureReplay:
    """
    Replay a capture file with pause/resume/seek/loop/speed control.

    Usage:
        replay = CaptureReplay(listener)
        replay.open("session.lscap")
        replay.resume_blocking(2.0)    # deterministic, caller's thread
        replay.resume()                # real time, playback thread
        replay.pause()
        replay.close()
    """

    def __init__(self, listener: Optional[FeedListener] = None, speed: float = 1.0, loop: bool = False) -> None:
        self._listener = listener
        self._speed = _validate_speed(speed)
        self._loop = bool(loop)

        # _control serialises public operations; _lock guards the replay state
        self._control = threading.RLock()
        self._lock = threading.RLock()
        self._commands: "queue.Queue[ReplayCommand]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

        self._reader: Optional[CaptureReader] = None
        self._index = 0
        self._position = 0.0
        self._running = False
        self._end = False
        self._pending_announce: Set[int] = set()
        self._anchor_wall = 0.0
        self._anchor_pos = 0.0

    # ------------------------------------------------------------------
    # feed capability
    # ------------------------------------------------------------------
    def listen(self, listener: Optional[FeedListener]) -> None:
        with self._lock:
            self._listener = listener

    def get_sensor_info(self, handle: int) -> Optional[SensorInfo]:
        with self._lock:
            if self._reader is None:
                return None
            raw_handle = handle & ~SENSOR_HANDLE_FLAG_MOCK
            info = self._reader.infos.get(raw_handle)
        return _mocked(info) if info is not None else None

    def sensor_handles(self) -> List[int]:
        with self._lock:
            if self._reader is None:
                return []
            return [h | SENSOR_HANDLE_FLAG_MOCK for h in self._reader.infos]

    # ------------------------------------------------------------------
    # open / close
    # ------------------------------------------------------------------
    def open(self, path: Union[str, pathlib.Path]) -> None:
        with self._control_scope():
            if self._thread is not None:
                raise AlreadyOpenError("Capture replay is already open")
            reader = CaptureReader(path)
            with self._lock:
                self._reader = reader
                self._index = 0
                self._position = 0.0
                self._running = False
                self._end = len(reader) == 0
                self._pending_announce = set()
            self._thread = threading.Thread(target=self._run, name="capture-replay", daemon=True)
            self._thread.start()
            _log.info("Opened capture %s (%.3f s, %d packets)", reader.path.name, reader.length, len(reader))

    def close(self) -> None:
        if self._on_owner_thread():
            raise RuntimeError("close() cannot be called from a replay callback")
        with self._control:
            thread = self._thread
            if thread is None:
                raise NotOpenError("Capture replay is not open")
            self._send(ReplayCommandKind.STOP)
            thread.join()
            with self._lock:
                self._thread = None
                self._reader = None
                self._index = 0
                self._position = 0.0
                self._running = False
                self._end = False
                self._pending_announce = set()
            _log.info("Closed capture replay")

    def is_open(self) -> bool:
        with self._lock:
            return self._reader is not None

    # ------------------------------------------------------------------
    # getters
    # ------------------------------------------------------------------
    def start_time(self) -> int:
        with self._lock:
            return self._reader.start_time if self._reader is not None else 0

    def position(self) -> float:
        with self._lock:
            return self._position

    def length(self) -> float:
        with self._lock:
            return self._reader.length if self._reader is not None else 0.0

    def is_end(self) -> bool:
        with self._lock:
            return self._end

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def get_speed(self) -> float:
        with self._lock:
            return self._speed

    def get_enable_loop(self) -> bool:
        with self._lock:
            return self._loop

    def status(self) -> ReplayState:
        with self._lock:
            return ReplayState(
                is_open=self._reader is not None,
                position_sec=self._position,
                length_sec=self._reader.length if self._reader is not None else 0.0,
                loop_enabled=self._loop,
                speed=self._speed,
                is_running=self._running,
                is_end=self._end,
            )

    # ------------------------------------------------------------------
    # control
    # ------------------------------------------------------------------
    def set_speed(self, speed: float) -> None:
        speed = _validate_speed(speed)
        with self._control_scope():
            if self._thread is None:
                with self._lock:
                    self._speed = speed
                return
            self._send(ReplayCommandKind.SET_SPEED, speed)

    def set_enable_loop(self, enable_loop: bool) -> None:
        with self._control_scope():
            if self._thread is None:
                with self._lock:
                    self._loop = bool(enable_loop)
                return
            self._send(ReplayCommandKind.SET_LOOP, bool(enable_loop))

    def seek(self, sec: float) -> None:
        """Seek to ``sec`` seconds from the start; requires ``0 <= sec < length``."""
        with self._control_scope():
            self._require_open()
            self._send(ReplayCommandKind.SEEK, float(sec))

    def rewind(self) -> None:
        with self._control_scope():
            self._require_open()
            self._send(ReplayCommandKind.REWIND)

    def resume(self) -> None:
        """Resume real-time playback on the playback thread."""
        with self._control_scope():
            self._require_open()
            self._require_listener()
            self._send(ReplayCommandKind.RESUME)

    def pause(self) -> None:
        with self._control_scope():
            self._require_open()
            self._send(ReplayCommandKind.PAUSE)

    def resume_blocking_once(self) -> int:
        """Replay the next packet in the caller's thread without sleeping."""
        with self._control_scope():
            self._require_open()
            self._require_listener()
            self._send(ReplayCommandKind.PAUSE)
            with self._lock:
                reader = self._require_reader()
                if len(reader) == 0 or (self._end and not self._loop):
                    self._mark_end_locked()
                    raise EndOfFileError("End of capture reached")
                if self._index >= len(reader):
                    self._rewind_locked()
                packet = reader.packets[self._index]
                self._index += 1
                self._position = float(reader.times[self._index - 1])
                announce = self._take_announce_locked(packet.handle)
                if self._index >= len(reader):
                    if self._loop:
                        self._rewind_locked()
                    else:
                        self._mark_end_locked()
            self._deliver(packet, announce)
            return 1

    def resume_blocking(self, duration: float) -> int:
        """Replay packets until ``duration`` seconds of capture time have elapsed.

        Runs in the caller's thread without sleeping between packets and
        returns the number of packets replayed. An infinite duration replays
        everything up to the end of the capture.
        """
        duration = float(duration)
        if not duration >= 0.0:
            raise InvalidArgumentError(f"Resume duration must be a non-negative number, got {duration}")
        with self._control_scope():
            self._require_open()
            self._require_listener()
            if math.isinf(duration) and self.get_enable_loop():
                raise InvalidArgumentError("An unbounded resume needs looping disabled")
            self._send(ReplayCommandKind.PAUSE)
            with self._lock:
                reader = self._require_reader()
                if len(reader) == 0 or (self._end and not self._loop):
                    self._mark_end_locked()
                    raise EndOfFileError("End of capture reached")
                target = self._position + duration

            count = 0
            while True:
                packet: Optional[CapturePacket] = None
                announce = False
                with self._lock:
                    reader = self._require_reader()
                    length = reader.length
                    if self._index < len(reader) and reader.times[self._index] <= target:
                        packet = reader.packets[self._index]
                        self._index += 1
                        self._position = max(self._position, float(reader.times[self._index - 1]))
                        announce = self._take_announce_locked(packet.handle)
                    elif self._index < len(reader) or target < length:
                        self._position = target
                        break
                    elif self._loop and length > 0.0:
                        target -= length
                        self._rewind_locked()
                        continue
                    else:
                        self._mark_end_locked()
                        break
                self._deliver(packet, announce)
                count += 1
            return count

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _on_owner_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def _control_scope(self):
        # a listener on the playback thread must not wait for a caller that waits on it
        if self._on_owner_thread():
            return contextlib.nullcontext()
        return self._control

    def _require_open(self) -> None:
        if self._thread is None:
            raise NotOpenError("Capture replay is not open")

    def _require_listener(self) -> None:
        if self._listener is None:
            raise NotInitializedError("Capture replay has no listener")

    def _require_reader(self) -> CaptureReader:
        if self._reader is None:
            raise NotOpenError("Capture replay is not open")
        return self._reader

    def _send(self, kind: ReplayCommandKind, value: Any = None) -> Any:
        """Hand a command to the owner thread and wait until it has been applied."""
        cmd = ReplayCommand(kind, value)
        if self._on_owner_thread():
            # re-entrant call from a listener running on the playback thread
            self._execute(cmd)
        else:
            self._commands.put(cmd)
            cmd.done.wait()
        if cmd.error is not None:
            raise cmd.error
        return cmd.result

    def _execute(self, cmd: ReplayCommand) -> None:
        try:
            with self._lock:
                if cmd.kind is ReplayCommandKind.RESUME:
                    self._running = True
                    self._reanchor_locked(self._position)
                elif cmd.kind is ReplayCommandKind.PAUSE or cmd.kind is ReplayCommandKind.STOP:
                    if self._running:
                        self._position = self._realtime_position_locked()
                    self._running = False
                elif cmd.kind is ReplayCommandKind.SEEK:
                    self._seek_locked(cmd.value)
                elif cmd.kind is ReplayCommandKind.REWIND:
                    self._rewind_locked()
                elif cmd.kind is ReplayCommandKind.SET_SPEED:
                    if self._running:
                        self._reanchor_locked(self._realtime_position_locked())
                    self._speed = cmd.value
                elif cmd.kind is ReplayCommandKind.SET_LOOP:
                    self._loop = cmd.value
        except Exception as exc:
            cmd.error = exc
        finally:
            cmd.done.set()

    def _seek_locked(self, sec: float) -> None:
        reader = self._require_reader()
        if not (0.0 <= sec < reader.length):
            raise InvalidArgumentError(f"Seek position {sec} outside [0, {reader.length})")
        self._index = reader.index_at(sec)
        self._position = sec
        self._end = False
        self._pending_announce = set(reader.infos)
        self._reanchor_locked(sec)

    def _rewind_locked(self) -> None:
        reader = self._require_reader()
        self._index = 0
        self._position = 0.0
        self._end = len(reader) == 0
        self._pending_announce = set(reader.infos)
        self._reanchor_locked(0.0)

    def _mark_end_locked(self) -> None:
        reader = self._require_reader()
        self._index = len(reader)
        self._position = reader.length
        self._end = True
        self._running = False

    def _reanchor_locked(self, position: float) -> None:
        self._anchor_wall = time.monotonic()
        self._anchor_pos = position

    def _realtime_position_locked(self) -> float:
        elapsed = (time.monotonic() - self._anchor_wall) * self._speed
        return min(self._anchor_pos + elapsed, self._reader.length if self._reader is not None else 0.0)

    def _run(self) -> None:
        """Owner thread: apply commands, and deliver due packets while running."""
        while True:
            timeout = self._next_wakeup()
            try:
                cmd = self._commands.get(timeout=timeout)
            except queue.Empty:
                self._step_realtime()
                continue
            self._execute(cmd)
            if cmd.kind is ReplayCommandKind.STOP:
                break
        # anything queued behind STOP never runs
        while True:
            try:
                cmd = self._commands.get_nowait()
            except queue.Empty:
                break
            cmd.error = NotOpenError("Capture replay is closed")
            cmd.done.set()

    def _next_wakeup(self) -> Optional[float]:
        with self._lock:
            if not self._running or self._reader is None:
                return None
            reader = self._reader
            if self._index >= len(reader):
                return 0.0
            ahead = float(reader.times[self._index]) - (
                self._anchor_pos + (time.monotonic() - self._anchor_wall) * self._speed
            )
            return max(0.0, min(ahead / self._speed, _MAX_IDLE_S))

    def _step_realtime(self) -> None:
        """Deliver at most one due packet so queued commands are never starved."""
        packet: Optional[CapturePacket] = None
        with self._lock:
            if not self._running or self._reader is None:
                return
            reader = self._reader
            now = self._realtime_position_locked()
            if self._index >= len(reader):
                if now < reader.length:
                    self._position = now
                elif self._loop and reader.length > 0.0:
                    self._rewind_locked()
                else:
                    self._mark_end_locked()
                return
            announce = False
            if reader.times[self._index] <= now:
                packet = reader.packets[self._index]
                self._index += 1
                announce = self._take_announce_locked(packet.handle)
            self._position = max(self._position, now)
            if self._loop and reader.length > 0.0 and self._index >= len(reader):
                # wrap before delivering the last packet so position stays below length
                self._rewind_locked()
        if packet is not None:
            self._deliver(packet, announce)

    def _take_announce_locked(self, handle: int) -> bool:
        announce = handle in self._pending_announce
        self._pending_announce.discard(handle)
        return announce

    def _deliver(self, packet: CapturePacket, announce: bool) -> None:
        with self._lock:
            listener = self._listener
            reader = self._reader
        if listener is None or reader is None:
            return

        handle = packet.handle | SENSOR_HANDLE_FLAG_MOCK
        try:
            if packet.kind is RecordKind.POINTS:
                info = reader.infos.get(packet.handle)
                if announce and info is not None:
                    listener.on_sensor_event(ErrorCode.SUCCESS, handle, _mocked(info), SensorEvent.ATTACH)
                listener.on_points(ErrorCode.SUCCESS, handle, packet.points)
            else:
                info = _mocked(packet.info) if packet.info is not None else None
                listener.on_sensor_event(ErrorCode.SUCCESS, handle, info, packet.event)
        except Exception:
            _log.exception("Replay listener failed on packet at %.6f s", packet.offset_s)


def _mocked(info: SensorInfo) -> SensorInfo:
    return info.with_updates(handle=info.handle | SENSOR_HANDLE_FLAG_MOCK, is_mocked=True)


def _validate_speed(speed: float) -> float:
    speed = float(speed)
    if not (speed > 0.0) or math.isinf(speed):
        raise InvalidArgumentError(f"Replay speed must be positive, got {speed}")
    return speed
