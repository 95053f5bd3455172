from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config import PipelineConfig
from ..config.schema import OutputConfig
from ..core.transform import RigidTransform
from ..output.router import OutputRouter, SinkFactory
from ..output.sinks import InfoSink, JsonlInfoSink, LasFrameSink, MemorySink, NpzFrameSink, PointSink


def build_transform(cfg: PipelineConfig) -> Optional[RigidTransform]:
    if cfg.mount is None:
        return None
    return RigidTransform.compile(cfg.mount.translation, cfg.mount.rotation_xyzw)


def build_sink_factory(out_cfg: OutputConfig) -> SinkFactory:
    """Map a channel id to a new sink at ``<directory>/<channel_id>.<ext>``."""
    format_lower = out_cfg.format.lower()
    directory = Path(out_cfg.directory)

    if format_lower == "memory":
        return MemorySink
    if format_lower in {"las", "laz"}:
        compress = format_lower == "laz"

        def _las(channel_id: str) -> PointSink:
            return LasFrameSink(
                str(directory / f"{channel_id}.{format_lower}"),
                channel_id=channel_id,
                point_format=out_cfg.point_format,
                compress=compress,
            )

        return _las
    if format_lower == "npz":

        def _npz(channel_id: str) -> PointSink:
            return NpzFrameSink(str(directory / f"{channel_id}.npz"), channel_id=channel_id)

        return _npz
    raise ValueError(f"Unsupported output format: {out_cfg.format}")


def build_router(cfg: PipelineConfig, sink_factory: Optional[SinkFactory] = None) -> OutputRouter:
    factory = sink_factory if sink_factory is not None else build_sink_factory(cfg.output)
    return OutputRouter(cfg.combine_sensors, cfg.output_namespace, factory)


def build_info_sink(cfg: PipelineConfig, router: OutputRouter) -> Optional[InfoSink]:
    if not cfg.output.write_sensor_information:
        return None
    channel_id = router.info_channel_id()
    if cfg.output.format == "memory":
        return MemorySink(channel_id)
    return JsonlInfoSink(str(Path(cfg.output.directory) / f"{channel_id}.jsonl"), channel_id=channel_id)
