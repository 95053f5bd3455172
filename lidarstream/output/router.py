from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from ..core.utils import get_logger
from .sinks import PointSink

_log = get_logger()

SinkFactory = Callable[[str], PointSink]


class OutputRouter:
    """Maps a sensor name to exactly one output channel.

    In combine mode every sensor shares one sink created up front. Otherwise a
    sink is created the first time a sensor name is seen and reused afterwards;
    lookup-or-create happens under a single lock so concurrent first deliveries
    for the same sensor never create two sinks.
    """

    def __init__(self, combine_sensors: bool, output_namespace: str, sink_factory: SinkFactory) -> None:
        if not output_namespace:
            raise ValueError("output_namespace must be non-empty.")
        self.combine_sensors = bool(combine_sensors)
        self.output_namespace = output_namespace
        self._sink_factory = sink_factory
        self._lock = threading.Lock()
        self._sinks: Dict[str, PointSink] = {}
        self._combined: Optional[PointSink] = None
        self._closed = False
        if self.combine_sensors:
            channel = self.points_channel_id("")
            self._combined = sink_factory(channel)
            _log.info("Created combined points channel %s", channel)

    # -- naming --
    def points_channel_id(self, sensor_name: str) -> str:
        if self.combine_sensors:
            return self.output_namespace + "_points"
        return self.output_namespace + "_points_" + sensor_name

    def frame_label(self, sensor_name: str) -> str:
        if self.combine_sensors:
            return self.output_namespace
        return self.output_namespace + "_" + sensor_name

    def info_channel_id(self) -> str:
        return self.output_namespace + "_sensor_information"

    # -- sinks --
    def resolve_sink(self, sensor_name: str) -> PointSink:
        """Return the sink for ``sensor_name``, creating it on first use.

        Raises RuntimeError once the router has been closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Output router is closed")
            if self._combined is not None:
                return self._combined
            sink = self._sinks.get(sensor_name)
            if sink is None:
                channel = self.points_channel_id(sensor_name)
                sink = self._sink_factory(channel)
                self._sinks[sensor_name] = sink
                _log.info("Created points channel %s", channel)
            return sink

    def sinks(self) -> Dict[str, PointSink]:
        """Snapshot of channel id -> sink for every channel created so far."""
        if self._combined is not None:
            return {self.points_channel_id(""): self._combined}
        with self._lock:
            return {self.points_channel_id(name): sink for name, sink in self._sinks.items()}

    def __len__(self) -> int:
        return len(self.sinks())

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        first_error: Optional[BaseException] = None
        for channel, sink in self.sinks().items():
            try:
                sink.close()
            except Exception as exc:
                _log.error("Closing channel %s failed: %s", channel, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
