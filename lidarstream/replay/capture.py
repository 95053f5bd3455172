"""
Capture file format for recorded sensor sessions.

Layout (little-endian):
[File header 20B]: 8s MAGIC, u16 VERSION, u16 flags, u64 start_time_us
[Record header 24B]: u8 kind, u8 reserved, u16 reserved, u32 payload_len,
                     u64 handle, u64 timestamp_us
[Payload]:
  POINTS       -> payload_len bytes of RAW_POINT_DTYPE records
  SENSOR_EVENT -> u8 event, then UTF-8 JSON of the sensor information
"""

from __future__ import annotations

import json
import pathlib
import struct
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Dict, List, Optional, Union

import numpy as np

from ..core.errors import CorruptFileError, FileIOError, InvalidFormatError
from ..core.frame import RAW_POINT_DTYPE, raw_points_from_records
from ..core.utils import get_logger, get_timestamp_usec
from ..sensors.info import SensorEvent, SensorInfo

_log = get_logger()

MAGIC = b"LSCAPTR\x00"
VERSION = 1

_FILE_HEADER = struct.Struct("<8sHHQ")
_RECORD_HEADER = struct.Struct("<BBHIQQ")


class RecordKind(IntEnum):
    POINTS = 1
    SENSOR_EVENT = 2


@dataclass(frozen=True)
class CapturePacket:
    """One recorded delivery, either a point batch or a sensor event."""

    kind: RecordKind
    handle: int
    timestamp: int                      # [us]
    offset_s: float                     # seconds since capture start
    points: Optional[np.ndarray] = None
    event: Optional[SensorEvent] = None
    info: Optional[SensorInfo] = None


class CaptureWriter:
    """
    Records point batches and sensor events to a capture file.

    Usage:
        with CaptureWriter("session.lscap", start_time=ts) as writer:
            writer.write_event(ts, info, SensorEvent.ATTACH)
            writer.write_points(ts, info.handle, raw_points)
    """

    def __init__(self, path: Union[str, pathlib.Path], start_time: Optional[int] = None) -> None:
        self.path = pathlib.Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.start_time = int(start_time) if start_time is not None else get_timestamp_usec()
        self._lock = threading.Lock()
        self._fh: Optional[BinaryIO] = open(self.path, "wb")
        self._fh.write(_FILE_HEADER.pack(MAGIC, VERSION, 0, self.start_time))
        self.packet_count = 0

    def write_points(self, timestamp: int, handle: int, raw_points) -> None:
        raw = raw_points_from_records(raw_points)
        payload = np.ascontiguousarray(raw).tobytes()
        self._write_record(RecordKind.POINTS, handle, timestamp, payload)

    def write_event(self, timestamp: int, info: SensorInfo, event: SensorEvent) -> None:
        body = json.dumps(info.to_dict()).encode("utf-8")
        payload = struct.pack("<B", int(event)) + body
        self._write_record(RecordKind.SENSOR_EVENT, info.handle, timestamp, payload)

    def _write_record(self, kind: RecordKind, handle: int, timestamp: int, payload: bytes) -> None:
        with self._lock:
            if self._fh is None:
                raise RuntimeError("CaptureWriter is closed")
            self._fh.write(_RECORD_HEADER.pack(int(kind), 0, 0, len(payload), int(handle), int(timestamp)))
            self._fh.write(payload)
            self.packet_count += 1

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None

    def __enter__(self) -> "CaptureWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class CaptureReader:
    """Loads and indexes a capture file.

    Raises FileIOError when the file cannot be read, InvalidFormatError when
    the file header is not a capture header, and CorruptFileError when a record
    is truncated or malformed.
    """

    def __init__(self, path: Union[str, pathlib.Path]) -> None:
        self.path = pathlib.Path(path)
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise FileIOError(f"Cannot read capture file {self.path}: {exc}") from exc

        if len(data) < _FILE_HEADER.size:
            raise InvalidFormatError(f"{self.path} is too short to be a capture file")
        magic, version, _flags, start_time = _FILE_HEADER.unpack_from(data, 0)
        if magic != MAGIC:
            raise InvalidFormatError(f"{self.path} is not a capture file (bad magic)")
        if version != VERSION:
            raise InvalidFormatError(f"Unsupported capture version {version} in {self.path}")

        self.start_time: int = int(start_time)
        self.packets: List[CapturePacket] = self._parse_records(data, _FILE_HEADER.size)

        offsets = np.asarray([p.offset_s for p in self.packets], dtype=np.float64)
        # packets are replayed in file order; keep the seek index monotonic
        self._times = np.maximum.accumulate(offsets) if len(offsets) else offsets
        self.infos: Dict[int, SensorInfo] = {}
        for p in self.packets:
            if p.info is not None:
                self.infos[p.handle] = p.info
        _log.debug("Loaded %s: %d packets, %.3f s", self.path.name, len(self.packets), self.length)

    def _parse_records(self, data: bytes, pos: int) -> List[CapturePacket]:
        packets: List[CapturePacket] = []
        end = len(data)
        while pos < end:
            if end - pos < _RECORD_HEADER.size:
                raise CorruptFileError(f"Truncated record header at byte {pos} in {self.path}")
            kind_raw, _r0, _r1, length, handle, timestamp = _RECORD_HEADER.unpack_from(data, pos)
            pos += _RECORD_HEADER.size
            if end - pos < length:
                raise CorruptFileError(f"Truncated record payload at byte {pos} in {self.path}")
            payload = data[pos:pos + length]
            pos += length

            offset_s = max(int(timestamp) - self.start_time, 0) / 1_000_000.0
            if kind_raw == RecordKind.POINTS:
                if length % RAW_POINT_DTYPE.itemsize != 0:
                    raise CorruptFileError(f"Point payload of {length} bytes is not a whole number of points")
                points = np.frombuffer(payload, dtype=RAW_POINT_DTYPE).copy()
                points.flags.writeable = False
                packets.append(CapturePacket(RecordKind.POINTS, int(handle), int(timestamp), offset_s, points=points))
            elif kind_raw == RecordKind.SENSOR_EVENT:
                event, info = self._parse_event(payload)
                packets.append(CapturePacket(
                    RecordKind.SENSOR_EVENT, int(handle), int(timestamp), offset_s, event=event, info=info
                ))
            else:
                raise CorruptFileError(f"Unknown record kind {kind_raw} in {self.path}")
        return packets

    def _parse_event(self, payload: bytes):
        if not payload:
            raise CorruptFileError("Empty sensor event record")
        try:
            event = SensorEvent(payload[0])
            info = SensorInfo.from_dict(json.loads(payload[1:].decode("utf-8")))
        except (ValueError, TypeError, AttributeError, UnicodeDecodeError) as exc:
            raise CorruptFileError(f"Malformed sensor event record: {exc}") from exc
        return event, info

    @property
    def times(self) -> np.ndarray:
        """Monotonic per-packet offsets in seconds."""
        return self._times

    @property
    def length(self) -> float:
        """Capture length in seconds (offset of the last packet)."""
        return float(self._times[-1]) if len(self._times) else 0.0

    def __len__(self) -> int:
        return len(self.packets)

    def index_at(self, sec: float) -> int:
        """Index of the first packet at or after ``sec``."""
        return int(np.searchsorted(self._times, sec, side="left"))

    def summary(self) -> Dict[str, object]:
        n_points = sum(len(p.points) for p in self.packets if p.points is not None)
        return {
            "path": str(self.path),
            "start_time": self.start_time,
            "length_s": self.length,
            "packets": len(self.packets),
            "points": int(n_points),
            "sensors": sorted(info.serial_number for info in self.infos.values()),
        }
