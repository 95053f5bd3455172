from __future__ import annotations

import threading
from typing import Dict, Optional

import numpy as np

from ..core.errors import ErrorCode, NotInitializedError
from ..core.frame import RAW_POINT_DTYPE, raw_points_from_records
from .base import FeedListener
from .info import SensorEvent, SensorInfo


class ManualFeed:
    """In-process feed: packets are pushed by the caller and delivered synchronously.

    Stands in for a network transport when sensor data arrives from another
    component in the same process (or from tests).
    """

    def __init__(self) -> None:
        self._listener: Optional[FeedListener] = None
        self._infos: Dict[int, SensorInfo] = {}
        self._lock = threading.Lock()

    def listen(self, listener: Optional[FeedListener]) -> None:
        self._listener = listener

    def get_sensor_info(self, handle: int) -> Optional[SensorInfo]:
        with self._lock:
            return self._infos.get(handle)

    def _require_listener(self) -> FeedListener:
        if self._listener is None:
            raise NotInitializedError("ManualFeed has no listener")
        return self._listener

    def attach(self, info: SensorInfo) -> None:
        listener = self._require_listener()
        with self._lock:
            self._infos[info.handle] = info
        listener.on_sensor_event(ErrorCode.SUCCESS, info.handle, info, SensorEvent.ATTACH)

    def detach(self, handle: int) -> None:
        listener = self._require_listener()
        with self._lock:
            info = self._infos.get(handle)
            if info is not None:
                info = info.with_updates(is_connected=False)
                self._infos[handle] = info
        listener.on_sensor_event(ErrorCode.SUCCESS, handle, info, SensorEvent.DETACH)

    def frame_boundary(self, handle: int) -> None:
        listener = self._require_listener()
        listener.on_sensor_event(ErrorCode.SUCCESS, handle, self.get_sensor_info(handle), SensorEvent.FRAME)

    def push_points(self, handle: int, raw_points, error_code: int = ErrorCode.SUCCESS) -> None:
        listener = self._require_listener()
        raw = raw_points_from_records(raw_points) if raw_points is not None else np.zeros(0, dtype=RAW_POINT_DTYPE)
        listener.on_points(int(error_code), handle, raw)

    def push_event_error(self, handle: int, error_code: int, event: SensorEvent = SensorEvent.ATTACH) -> None:
        listener = self._require_listener()
        listener.on_sensor_event(int(error_code), handle, None, event)
