from __future__ import annotations

import threading
from typing import Dict, List, Optional

from ..core.errors import SensorNotFoundError
from .info import SensorInfo


class SensorRegistry:
    """Process-lifetime mapping of sensor handle -> latest :class:`SensorInfo`.

    Entries are never removed: a detached sensor stays known with
    ``is_connected=False`` so late deliveries can still be named.
    """

    def __init__(self) -> None:
        self._infos: Dict[int, SensorInfo] = {}
        self._lock = threading.Lock()

    def upsert(self, info: SensorInfo) -> bool:
        """Insert or overwrite by handle. Returns True when the handle is new."""
        with self._lock:
            is_new = info.handle not in self._infos
            self._infos[info.handle] = info
        return is_new

    def lookup(self, handle: int) -> SensorInfo:
        with self._lock:
            info = self._infos.get(handle)
        if info is None:
            raise SensorNotFoundError(f"No sensor information for handle {handle:#x}")
        return info

    def get(self, handle: int) -> Optional[SensorInfo]:
        with self._lock:
            return self._infos.get(handle)

    def mark_disconnected(self, handle: int) -> Optional[SensorInfo]:
        with self._lock:
            info = self._infos.get(handle)
            if info is None:
                return None
            info = info.with_updates(is_connected=False)
            self._infos[handle] = info
        return info

    @staticmethod
    def name_of(info: SensorInfo) -> str:
        return info.name

    def handles(self) -> List[int]:
        with self._lock:
            return list(self._infos.keys())

    def snapshot(self) -> Dict[int, SensorInfo]:
        with self._lock:
            return dict(self._infos)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._infos

    def __len__(self) -> int:
        with self._lock:
            return len(self._infos)
