from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Union
import numpy as np

from .errors import FrameFinishedError
from .transform import RigidTransform, convert_image_points

# Image-plane measurement as delivered by a sensor feed (packed, little-endian).
RAW_POINT_DTYPE = np.dtype(
    [
        ("timestamp", "<u8"),      # unix time [us]
        ("image_x", "<f4"),
        ("distance", "<f4"),       # [m]
        ("image_z", "<f4"),
        ("intensity", "<f4"),      # 0-1
        ("return_number", "u1"),
        ("valid", "u1"),
    ]
)

POINT_DTYPE = np.dtype(
    [
        ("timestamp", "<u8"),
        ("x", "<f4"),
        ("y", "<f4"),
        ("z", "<f4"),
        ("intensity", "<f4"),
        ("return_number", "u1"),
        ("valid", "u1"),
    ]
)


@dataclass(frozen=True)
class RawPoint:
    timestamp: int
    image_x: float
    image_z: float
    distance: float
    intensity: float = 0.0
    return_number: int = 0
    valid: bool = True

    def to_record(self) -> np.ndarray:
        rec = np.zeros(1, dtype=RAW_POINT_DTYPE)
        rec["timestamp"] = self.timestamp
        rec["image_x"] = self.image_x
        rec["image_z"] = self.image_z
        rec["distance"] = self.distance
        rec["intensity"] = self.intensity
        rec["return_number"] = self.return_number
        rec["valid"] = 1 if self.valid else 0
        return rec


@dataclass(frozen=True)
class CartesianPoint:
    timestamp: int
    x: float
    y: float
    z: float
    intensity: float
    return_number: int
    valid: bool

    @staticmethod
    def from_record(rec: np.void) -> "CartesianPoint":
        return CartesianPoint(
            timestamp=int(rec["timestamp"]),
            x=float(rec["x"]),
            y=float(rec["y"]),
            z=float(rec["z"]),
            intensity=float(rec["intensity"]),
            return_number=int(rec["return_number"]),
            valid=bool(rec["valid"]),
        )


def raw_points_from_records(records) -> np.ndarray:
    """Coerce a sequence of :class:`RawPoint` or a structured array to RAW_POINT_DTYPE."""
    if isinstance(records, np.ndarray):
        if records.dtype != RAW_POINT_DTYPE:
            raise ValueError(f"Expected RAW_POINT_DTYPE array, got {records.dtype}")
        return records
    rows = [r.to_record() for r in records]
    if not rows:
        return np.zeros(0, dtype=RAW_POINT_DTYPE)
    return np.concatenate(rows)


@dataclass(frozen=True)
class Frame:
    """Converted points of one delivery batch, ready for publication."""

    sensor_name: str
    frame_label: str
    frame_timestamp: int                  # max point timestamp [us], 0 if empty
    points: np.ndarray                    # (N,) POINT_DTYPE, arrival order
    height: int = 1

    def __post_init__(self) -> None:
        if self.points.dtype != POINT_DTYPE:
            raise ValueError(f"Frame points must use POINT_DTYPE, got {self.points.dtype}")
        self.points.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.points.shape[0])

    def __len__(self) -> int:
        return self.width

    @property
    def xyz(self) -> np.ndarray:
        """(N, 3) float32 copy of the coordinates."""
        return np.column_stack([self.points["x"], self.points["y"], self.points["z"]]).astype(np.float32, copy=False)

    def point(self, index: int) -> CartesianPoint:
        return CartesianPoint.from_record(self.points[index])


@dataclass
class FrameBuilder:
    """Accumulates converted points for a single frame.

    The builder keeps its own copy of every delivered point; callers may reuse
    their buffers as soon as ``add``/``extend`` returns.
    """

    sensor_name: str
    frame_label: Optional[str] = None
    transform: Optional[RigidTransform] = None
    _chunks: List[np.ndarray] = field(default_factory=list, init=False, repr=False)
    _max_timestamp: int = field(default=0, init=False)
    _count: int = field(default=0, init=False)
    _finished: bool = field(default=False, init=False)

    @property
    def max_timestamp(self) -> int:
        return self._max_timestamp

    def __len__(self) -> int:
        return self._count

    def add(self, raw_point: Union[RawPoint, np.void]) -> None:
        if isinstance(raw_point, RawPoint):
            rec = raw_point.to_record()
        else:
            rec = np.zeros(1, dtype=RAW_POINT_DTYPE)
            rec[0] = raw_point
        self.extend(rec)

    def extend(self, raw_points: np.ndarray) -> None:
        if self._finished:
            raise FrameFinishedError("FrameBuilder cannot be reused after finish().")
        raw = raw_points_from_records(raw_points)
        n = raw.shape[0]
        if n == 0:
            return

        out = np.empty(n, dtype=POINT_DTYPE)
        xyz = convert_image_points(raw["image_x"], raw["image_z"], raw["distance"])
        if self.transform is not None:
            self.transform.apply(xyz)
        out["timestamp"] = raw["timestamp"]
        out["x"] = xyz[:, 0]
        out["y"] = xyz[:, 1]
        out["z"] = xyz[:, 2]
        out["intensity"] = raw["intensity"]
        out["return_number"] = raw["return_number"]
        out["valid"] = raw["valid"]

        self._chunks.append(out)
        self._count += n
        batch_max = int(raw["timestamp"].max())
        if batch_max > self._max_timestamp:
            self._max_timestamp = batch_max

    def finish(self) -> Frame:
        if self._finished:
            raise FrameFinishedError("FrameBuilder.finish() called twice.")
        self._finished = True
        if self._chunks:
            points = np.concatenate(self._chunks) if len(self._chunks) > 1 else self._chunks[0]
        else:
            points = np.zeros(0, dtype=POINT_DTYPE)
        self._chunks = []
        label = self.frame_label if self.frame_label is not None else self.sensor_name
        return Frame(
            sensor_name=self.sensor_name,
            frame_label=label,
            frame_timestamp=self._max_timestamp,
            points=points,
        )


def begin_frame(
    sensor_name: str,
    frame_label: Optional[str] = None,
    transform: Optional[RigidTransform] = None,
) -> FrameBuilder:
    return FrameBuilder(sensor_name=sensor_name, frame_label=frame_label, transform=transform)


def build_frame(
    sensor_name: str,
    raw_points,
    frame_label: Optional[str] = None,
    transform: Optional[RigidTransform] = None,
) -> Frame:
    """Convert one whole delivery batch into a :class:`Frame`."""
    builder = begin_frame(sensor_name, frame_label=frame_label, transform=transform)
    builder.extend(raw_points)
    return builder.finish()
