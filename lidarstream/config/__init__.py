"""Configuration loading utilities for lidarstream."""

from .schema import (
    PipelineConfig,
    load_config,
)

__all__ = ["PipelineConfig", "load_config"]
