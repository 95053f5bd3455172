from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from ..config import PipelineConfig, load_config
from ..output.sinks import PointSink
from ..runtime.pipeline import Pipeline


@dataclass(frozen=True)
class ReplayRunResult:
    """Summary of a blocking capture replay driven by a configuration."""

    stats: Dict[str, int]
    channels: Dict[str, PointSink]
    config: PipelineConfig


def replay_capture(
    config: Union[str, Path, PipelineConfig],
    *,
    capture: Optional[Union[str, Path]] = None,
    duration: Optional[float] = None,
) -> ReplayRunResult:
    """Replay a capture through the pipeline in the calling thread.

    Parameters
    ----------
    config:
        Path to a YAML file or a pre-loaded :class:`~lidarstream.config.schema.PipelineConfig`.
    capture:
        Optional override for the capture file to replay.
    duration:
        Optional capture-time duration in seconds. Falls back to
        ``replay.duration_s`` and then to a single pass over the capture.

    Returns
    -------
    ReplayRunResult
        Delivery counters, the output channels keyed by channel id (closed
        by the time this returns), and the resolved configuration.
    """

    cfg = load_config(config) if not isinstance(config, PipelineConfig) else config.model_copy(deep=True)
    if capture is not None:
        cfg.capture_path = Path(capture).resolve()
    if cfg.capture_path is None:
        raise ValueError("replay_capture() needs a capture path")
    cfg.replay.mode = "blocking"

    pipeline = Pipeline(cfg)
    pipeline.start()
    try:
        stats = pipeline.run_blocking(duration)
        router = pipeline.router
        channels = router.sinks() if router is not None else {}
    finally:
        pipeline.stop()

    return ReplayRunResult(stats=stats, channels=channels, config=cfg)
