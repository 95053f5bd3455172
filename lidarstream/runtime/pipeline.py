from __future__ import annotations

import math
import threading
from typing import Dict, List, Optional

from ..config import PipelineConfig
from ..core.errors import PipelineInitError
from ..core.utils import get_logger
from ..output.router import OutputRouter
from ..output.sinks import InfoSink
from ..replay.controller import CaptureReplay
from ..sensors.base import SensorFeed
from ..sensors.feed import ManualFeed
from ..sensors.registry import SensorRegistry
from .builders import build_info_sink, build_router, build_transform
from .driver import PipelineContext, PipelineDriver, PipelineStats

_log = get_logger()


class Pipeline:
    """
    Owns one pipeline run: feed, driver, router and sinks.

    With ``capture_path`` set the feed is a :class:`CaptureReplay`; otherwise
    the given live feed (a :class:`ManualFeed` by default) is used.

    Usage:
        with Pipeline(cfg) as pipeline:
            pipeline.run_blocking()
        print(pipeline.stats())
    """

    def __init__(self, config: PipelineConfig, feed: Optional[SensorFeed] = None) -> None:
        self.config = config
        self._live_feed = feed
        self.feed: Optional[SensorFeed] = None
        self.replay: Optional[CaptureReplay] = None
        self.context: Optional[PipelineContext] = None
        self.driver: Optional[PipelineDriver] = None
        self._lock = threading.Lock()
        self._started = False

    @property
    def router(self) -> Optional[OutputRouter]:
        return self.context.router if self.context is not None else None

    def start(self) -> None:
        with self._lock:
            if self._started:
                raise RuntimeError("Pipeline already started")
            cfg = self.config
            replay: Optional[CaptureReplay] = None
            router: Optional[OutputRouter] = None
            info_sink: Optional[InfoSink] = None
            try:
                transform = build_transform(cfg)
                if cfg.capture_path is not None:
                    # open before any sink exists so a bad capture leaves nothing behind
                    replay = CaptureReplay(speed=cfg.replay.speed, loop=cfg.replay.loop)
                    replay.open(cfg.capture_path)
                router = build_router(cfg)
                info_sink = build_info_sink(cfg, router)
                context = PipelineContext(
                    registry=SensorRegistry(),
                    router=router,
                    info_sink=info_sink,
                    transform=transform,
                )
                driver = PipelineDriver(context)
                feed: SensorFeed = replay if replay is not None else (self._live_feed or ManualFeed())
                feed.listen(driver)
                if replay is not None and cfg.replay.mode == "async":
                    replay.resume()
            except Exception as exc:
                _log.error("Pipeline initialisation failed: %s", exc)
                try:
                    _cleanup(replay, router, info_sink)
                except Exception as cleanup_exc:
                    _log.error("Cleanup after failed initialisation also failed: %s", cleanup_exc)
                raise PipelineInitError(f"Pipeline initialisation failed: {exc}") from exc

            self.replay = replay
            self.feed = feed
            self.context = context
            self.driver = driver
            self._started = True
            mode = f"replay of {cfg.capture_path}" if replay is not None else "live feed"
            _log.info("Pipeline started (%s, namespace=%s, combine=%s)", mode, cfg.output_namespace, cfg.combine_sensors)

    def run_blocking(self, duration: Optional[float] = None) -> Dict[str, int]:
        """Replay synchronously in the calling thread and return the stats.

        Without a duration the configured ``replay.duration_s`` is used, and
        without that a single pass to the end of the capture.
        """
        if not self._started or self.replay is None:
            raise RuntimeError("run_blocking() needs a started pipeline with a capture")
        if duration is None:
            duration = self.config.replay.duration_s
        if duration is None:
            duration = math.inf
        replay = self.replay
        if replay.is_end() and not replay.get_enable_loop():
            return self.stats()
        count = replay.resume_blocking(duration)
        _log.info("Replayed %d packets, position %.3f / %.3f s", count, replay.position(), replay.length())
        return self.stats()

    def stats(self) -> Dict[str, int]:
        if self.context is None:
            return {name: 0 for name in PipelineStats.FIELDS}
        return self.context.stats.as_dict()

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
            if self.replay is not None and self.replay.is_open():
                self.replay.close()
            if self.feed is not None:
                self.feed.listen(None)
            ctx = self.context
            sensors: List[str] = []
            if ctx is not None:
                sensors = sorted(info.name for info in ctx.registry.snapshot().values())
                _cleanup(None, ctx.router, ctx.info_sink)
            _log.info("Pipeline stopped: %s, sensors=%s", self.stats(), sensors)

    def __enter__(self) -> "Pipeline":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()


def _cleanup(replay: Optional[CaptureReplay], router: Optional[OutputRouter], info_sink: Optional[InfoSink]) -> None:
    if replay is not None and replay.is_open():
        replay.close()
    try:
        if router is not None:
            router.close()
    finally:
        if info_sink is not None:
            info_sink.close()
