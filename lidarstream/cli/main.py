from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from ..config import PipelineConfig, load_config
from ..core.errors import LidarStreamError
from ..examples.synthetic import generate_capture
from ..replay.capture import CaptureReader
from ..sdk.run import replay_capture

app = typer.Typer(help="LiDAR point-stream pipeline utilities")
capture_app = typer.Typer(help="Capture file helpers")
app.add_typer(capture_app, name="capture")


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("lidarstream").setLevel(numeric)


@app.command("run")
def run(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    capture: Optional[Path] = typer.Option(None, "--capture", "-c", help="Override the capture file to replay."),
    combine: Optional[bool] = typer.Option(None, "--combine/--no-combine", help="Publish every sensor to one channel."),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Override the output namespace."),
    duration: Optional[float] = typer.Option(None, "--duration", help="Capture-time seconds to replay."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Replay a capture through the pipeline into the configured sinks."""

    cfg = load_config(config)
    _configure_logging(log_level or cfg.log_level)
    if capture is not None:
        cfg.capture_path = capture.resolve()
    if combine is not None:
        cfg.combine_sensors = combine
    if namespace is not None:
        # re-validate so the namespace rules apply to the override too
        cfg = PipelineConfig.model_validate({**cfg.model_dump(), "output_namespace": namespace})
    if duration is not None and duration < 0:
        raise typer.BadParameter("duration must be non-negative.", param_hint="--duration")
    if cfg.capture_path is None:
        raise typer.BadParameter("No capture configured; pass --capture or set capture_path.", param_hint="--capture")

    try:
        result = replay_capture(cfg, duration=duration)
    except LidarStreamError as exc:
        typer.echo(f"Replay failed: {exc}", err=True)
        raise typer.Exit(code=1)

    stats = result.stats
    typer.echo(
        f"Published {stats['frames']} frames ({stats['points']} points) "
        f"from {stats['deliveries']} deliveries, dropped {stats['dropped']}"
    )
    for channel in sorted(result.channels):
        typer.echo(f"  {channel}")


@capture_app.command("info")
def capture_info(
    path: Path = typer.Argument(..., exists=True, readable=True, help="Capture file."),
) -> None:
    """Print a summary of a capture file."""

    try:
        reader = CaptureReader(path)
    except LidarStreamError as exc:
        typer.echo(f"Cannot read capture: {exc}", err=True)
        raise typer.Exit(code=1)
    summary = reader.summary()
    started = datetime.fromtimestamp(reader.start_time / 1e6, tz=timezone.utc)
    typer.echo(f"Capture:  {summary['path']}")
    typer.echo(f"Start:    {started.isoformat()} ({reader.start_time} us)")
    typer.echo(f"Length:   {summary['length_s']:.3f} s")
    typer.echo(f"Packets:  {summary['packets']}")
    typer.echo(f"Points:   {summary['points']}")
    sensors = summary["sensors"]
    typer.echo(f"Sensors:  {len(sensors)} ({', '.join(str(s) for s in sensors)})")


@capture_app.command("synth")
def capture_synth(
    output: Path = typer.Argument(..., help="Output capture path."),
    sensors: int = typer.Option(2, "--sensors", help="Number of sensors."),
    frames: int = typer.Option(10, "--frames", help="Frames per sensor."),
    points: int = typer.Option(256, "--points", help="Points per frame."),
    rate: float = typer.Option(10.0, "--rate", help="Frame rate in Hz."),
    seed: int = typer.Option(0, "--seed", help="Random seed."),
) -> None:
    """Write a synthetic multi-sensor capture."""

    if sensors < 1:
        raise typer.BadParameter("At least one sensor is required.", param_hint="--sensors")
    if rate <= 0:
        raise typer.BadParameter("rate must be positive.", param_hint="--rate")
    out = output.resolve()
    generate_capture(out, sensors=sensors, frames=frames, points_per_frame=points, rate_hz=rate, seed=seed)
    typer.echo(f"Wrote synthetic capture to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
