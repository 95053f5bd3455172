"""Pipeline wiring: builders, the feed listener and the run lifecycle."""

from .driver import PipelineContext, PipelineDriver, PipelineStats
from .pipeline import Pipeline

__all__ = ["Pipeline", "PipelineContext", "PipelineDriver", "PipelineStats"]
