from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from ..core.errors import SensorNotFoundError, error_code_name, is_failure
from ..core.frame import build_frame
from ..core.transform import RigidTransform
from ..core.utils import get_logger
from ..output.router import OutputRouter
from ..output.sinks import InfoSink
from ..sensors.info import SensorEvent, SensorInfo
from ..sensors.registry import SensorRegistry

_log = get_logger()


class PipelineStats:
    """Thread-safe delivery counters."""

    FIELDS = ("deliveries", "frames", "points", "dropped", "errors")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.FIELDS}

    def add(self, **counts: int) -> None:
        with self._lock:
            for name, value in counts.items():
                self._counts[name] += int(value)

    def as_dict(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


@dataclass
class PipelineContext:
    registry: SensorRegistry
    router: OutputRouter
    info_sink: Optional[InfoSink] = None
    transform: Optional[RigidTransform] = None
    stats: PipelineStats = field(default_factory=PipelineStats)


class PipelineDriver:
    """Feed listener that turns point deliveries into published frames.

    Every delivery becomes exactly one frame on the sensor's channel.
    Deliveries for the same handle are serialised; different handles may be
    processed concurrently. Nothing raised while handling a delivery escapes
    back into the feed.
    """

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self._locks_guard = threading.Lock()
        self._handle_locks: Dict[int, threading.Lock] = {}

    def _handle_lock(self, handle: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._handle_locks.get(handle)
            if lock is None:
                lock = threading.Lock()
                self._handle_locks[handle] = lock
            return lock

    # -- FeedListener --
    def on_points(self, error_code: int, sensor_handle: int, raw_points: np.ndarray) -> None:
        stats = self.context.stats
        stats.add(deliveries=1)
        if is_failure(error_code):
            _log.warning("Point delivery for handle %#x failed: %s", sensor_handle, error_code_name(error_code) or error_code)
            stats.add(dropped=1, errors=1)
            return

        with self._handle_lock(sensor_handle):
            try:
                self._publish(sensor_handle, raw_points)
            except SensorNotFoundError as exc:
                # attach always precedes points; a miss means the feed misbehaved
                _log.error("Dropping delivery: %s", exc)
                stats.add(dropped=1)
            except Exception:
                _log.exception("Unexpected failure publishing points for handle %#x", sensor_handle)
                stats.add(dropped=1, errors=1)

    def on_sensor_event(
        self, error_code: int, handle: int, info: Optional[SensorInfo], event: SensorEvent
    ) -> None:
        if is_failure(error_code):
            _log.warning("Sensor event %s for handle %#x failed: %s", _event_name(event), handle, error_code_name(error_code) or error_code)
            self.context.stats.add(errors=1)
            return
        try:
            self._handle_event(handle, info, event)
        except Exception:
            _log.exception("Unexpected failure handling sensor event for handle %#x", handle)
            self.context.stats.add(errors=1)

    # -- internals --
    def _publish(self, handle: int, raw_points: np.ndarray) -> None:
        ctx = self.context
        info = ctx.registry.lookup(handle)
        name = SensorRegistry.name_of(info)
        if ctx.info_sink is not None:
            ctx.info_sink.publish(info)

        frame = build_frame(
            name,
            raw_points,
            frame_label=ctx.router.frame_label(name),
            transform=ctx.transform,
        )
        sink = ctx.router.resolve_sink(name)
        sink.publish(frame)
        ctx.stats.add(frames=1, points=frame.width)
        _log.debug("Published %d points from sensor %s to %s", frame.width, name, sink.channel_id)

    def _handle_event(self, handle: int, info: Optional[SensorInfo], event: SensorEvent) -> None:
        registry = self.context.registry
        if event == SensorEvent.ATTACH:
            if info is None:
                _log.warning("Attach for handle %#x carried no sensor information", handle)
                return
            is_new = registry.upsert(info)
            _log.info("Sensor %s attached (handle %#x%s)", info.name, handle, "" if is_new else ", known")
        elif event == SensorEvent.DETACH:
            if info is not None:
                registry.upsert(info)
            updated = registry.mark_disconnected(handle)
            name = updated.name if updated is not None else f"{handle:#x}"
            _log.info("Sensor %s detached", name)
        elif event == SensorEvent.FRAME:
            # frames follow delivery granularity; boundary events are reserved
            pass
        else:
            _log.warning("Ignoring unknown sensor event %r for handle %#x", event, handle)


def _event_name(event: SensorEvent) -> str:
    try:
        return SensorEvent(event).name
    except ValueError:
        return str(event)
