"""Pipeline orchestration package for per-frame stream export.

Provides the pipeline context, builder, and runner for exporting a frame
range of a recorded stream.
"""

from .builder import build_pipeline_context, configure_exporter
from .context import PipelineContext
from .runner import Pipeline, PipelineSummary, process_frame, run_pipeline

__all__ = [
    "Pipeline",
    "PipelineContext",
    "PipelineSummary",
    "build_pipeline_context",
    "configure_exporter",
    "process_frame",
    "run_pipeline",
]
