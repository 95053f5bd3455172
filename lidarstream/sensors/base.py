from __future__ import annotations
from typing import Optional, Protocol
import numpy as np
from .info import SensorEvent, SensorInfo


class FeedListener(Protocol):
    """Receiver of point deliveries and sensor lifecycle events."""

    def on_points(self, error_code: int, sensor_handle: int, raw_points: np.ndarray) -> None: ...

    def on_sensor_event(
        self, error_code: int, handle: int, info: Optional[SensorInfo], event: SensorEvent
    ) -> None: ...


class SensorFeed(Protocol):
    """Source of raw point batches (live transport or capture replay)."""

    def listen(self, listener: Optional[FeedListener]) -> None: ...

    def get_sensor_info(self, handle: int) -> Optional[SensorInfo]: ...
