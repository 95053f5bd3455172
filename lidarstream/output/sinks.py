from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol
import json
import pathlib
import threading
import numpy as np

import laspy  # type: ignore
from ..core.frame import POINT_DTYPE, Frame
from ..core.utils import get_logger
from ..sensors.info import SensorInfo

_log = get_logger()


class PointSink(Protocol):
    channel_id: str

    def publish(self, frame: Frame) -> None: ...

    def close(self) -> None: ...


class InfoSink(Protocol):
    channel_id: str

    def publish(self, info: SensorInfo) -> None: ...

    def close(self) -> None: ...


class MemorySink:
    """Keeps every published item in order. Works for frames and sensor info."""

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        self.items: List[Any] = []
        self.closed = False
        self._lock = threading.Lock()

    def publish(self, item: Any) -> None:
        with self._lock:
            self.items.append(item)

    def close(self) -> None:
        self.closed = True

    def __len__(self) -> int:
        with self._lock:
            return len(self.items)


@dataclass
class LasFrameSink:
    """Streaming LAS/LAZ sink for frames using laspy (v2+).

    The header is created lazily on the first non-empty frame so the offset
    can be taken from real data.
    """
    path: str
    channel_id: str = ""
    point_format: int = 6
    compress: bool = False
    scale: tuple[float, float, float] = (1e-3, 1e-3, 1e-3)
    offset: Optional[tuple[float, float, float]] = None

    def __post_init__(self) -> None:
        self._fh: Optional[laspy.LasWriter] = None  # type: ignore
        self._header: Optional[laspy.LasHeader] = None  # type: ignore
        self._lock = threading.Lock()
        self._frame_index = 0
        self._closed = False
        self.points_written = 0

    # -- public API --
    def publish(self, frame: Frame) -> None:
        with self._lock:
            if self._closed:
                return
            if frame.width > 0:
                if self._fh is None:
                    self._open(frame)
                assert self._fh is not None and self._header is not None
                self._fh.write_points(self._point_record_from_frame(frame, self._header))
                self.points_written += frame.width
            self._frame_index += 1

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._fh is None:
                # no points seen: still leave a valid, empty file behind
                self._open(None)
            assert self._fh is not None
            self._fh.close()
            self._fh = None

    # -- internals --
    def _open(self, frame: Optional[Frame]) -> None:
        pf = laspy.PointFormat(self.point_format)
        hdr = laspy.LasHeader(point_format=pf, version="1.4")
        hdr.scales = self.scale
        if self.offset is not None:
            hdr.offsets = self.offset
        elif frame is not None:
            mn = np.min(frame.xyz, axis=0)
            hdr.offsets = (float(mn[0]), float(mn[1]), float(mn[2]))
        else:
            hdr.offsets = (0.0, 0.0, 0.0)
        hdr.add_extra_dim(laspy.ExtraBytesParams(name="valid", type="uint8"))
        hdr.add_extra_dim(laspy.ExtraBytesParams(name="frame_index", type="uint32"))

        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = laspy.open(path, mode="w", header=hdr, do_compress=self.compress)
        self._header = hdr
        _log.info("Opened %s (PF=%d, compress=%s)", path.name, self.point_format, self.compress)

    def _point_record_from_frame(self, frame: Frame, header: "laspy.LasHeader") -> "laspy.ScaleAwarePointRecord":
        n = frame.width
        pts = laspy.ScaleAwarePointRecord.zeros(n, header=header)
        pts.x = frame.points["x"].astype(np.float64)
        pts.y = frame.points["y"].astype(np.float64)
        pts.z = frame.points["z"].astype(np.float64)

        v = np.clip(frame.points["intensity"].astype(np.float64), 0.0, 1.0)
        pts.intensity = (v * 65535.0 + 0.5).astype(np.uint16)
        # LAS return numbers are 1-based
        pts.return_number = np.clip(frame.points["return_number"].astype(np.uint8) + 1, 1, 15)
        pts.gps_time = frame.points["timestamp"].astype(np.float64) / 1e6
        pts["valid"] = frame.points["valid"]
        pts["frame_index"] = np.full(n, self._frame_index, dtype=np.uint32)
        return pts


class NpzFrameSink:
    """Buffers frames and writes one compressed ``.npz`` on close."""

    def __init__(self, path: str, channel_id: str = "") -> None:
        self.path = path
        self.channel_id = channel_id
        self._frames: List[Frame] = []
        self._lock = threading.Lock()
        self._closed = False

    def publish(self, frame: Frame) -> None:
        with self._lock:
            if not self._closed:
                self._frames.append(frame)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            frames = list(self._frames)
            self._frames.clear()
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if frames:
            points = np.concatenate([f.points for f in frames])
        else:
            points = np.zeros(0, dtype=POINT_DTYPE)
        out: Dict[str, np.ndarray] = {
            "xyz": np.column_stack([points["x"], points["y"], points["z"]]).astype(np.float32).reshape(-1, 3),
            "timestamp": points["timestamp"],
            "intensity": points["intensity"],
            "return_number": points["return_number"],
            "valid": points["valid"],
            "frame_index": np.repeat(np.arange(len(frames), dtype=np.uint32), [f.width for f in frames]),
            "frame_timestamp": np.asarray([f.frame_timestamp for f in frames], dtype=np.uint64),
            "frame_width": np.asarray([f.width for f in frames], dtype=np.uint32),
            "frame_label": np.asarray([f.frame_label for f in frames], dtype=str),
        }
        np.savez_compressed(path, **out)


class JsonlInfoSink:
    """Appends one JSON line per sensor information refresh."""

    def __init__(self, path: str, channel_id: str = "") -> None:
        self.path = path
        self.channel_id = channel_id
        self._lock = threading.Lock()
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(p, "w", encoding="utf-8")
        self.count = 0

    def publish(self, info: SensorInfo) -> None:
        with self._lock:
            if self._fh is None:
                return
            self._fh.write(json.dumps(info.to_dict()) + "\n")
            self.count += 1

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
