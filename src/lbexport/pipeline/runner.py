"""Pipeline runner: the per-frame export loop and public API."""

import logging
import sys
from dataclasses import dataclass, field

from tqdm import tqdm

from ..config import ExportMode, PipelineConfig
from ..engine import ImagingEngine
from ..export import ExportResult, ExportStatus
from .builder import build_pipeline_context
from .context import PipelineContext

logger = logging.getLogger(__name__)


@dataclass
class PipelineSummary:
    """Aggregate outcome of an export run.

    Attributes:
        frames_requested: Number of frame indices in the resolved range.
        results: One ExportResult per processed frame index.
    """

    frames_requested: int
    results: list[ExportResult] = field(default_factory=list)

    def count(self, status: ExportStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def files_written(self) -> int:
        return sum(len(r.written) for r in self.results)

    @property
    def complete(self) -> bool:
        """True if every requested frame exported without error."""
        return (
            len(self.results) == self.frames_requested
            and self.count(ExportStatus.SUCCESS) == self.frames_requested
        )


def _skip(frame_idx: int, what: str, result) -> ExportResult:
    """Log a per-frame failure and report the frame as skipped."""
    logger.warning("Could not %s frame %d: %s", what, frame_idx, result.describe())
    return ExportResult.skipped(
        frame_idx, f"Could not {what} frame {frame_idx}: {result.describe()}"
    )


def process_frame(frame_idx: int, ctx: PipelineContext) -> ExportResult:
    """Read, convert and export a single frame.

    Failures are logged and reported in the result; nothing is raised. The
    shared camera buffers are overwritten by the conversion and fully
    consumed by the export before this returns.

    Args:
        frame_idx: Stream index of the frame.
        ctx: Pipeline context from build_pipeline_context().

    Returns:
        ExportResult for this frame.
    """
    session = ctx.session
    engine = ctx.engine
    buffers = ctx.buffers

    # A failed read leaves the stream position unknown.
    if session.position != frame_idx:
        result = session.seek(frame_idx)
        if not result.ok:
            return _skip(frame_idx, "seek to", result)

    result = session.read_next()
    if not result.ok:
        return _skip(frame_idx, "read", result)
    frame = result.value

    result = engine.convert_frame(
        session.context, frame, buffers.views(), buffers.pixel_format
    )
    if not result.ok:
        return _skip(frame_idx, "convert", result)

    if ctx.config.export_mode == ExportMode.PANORAMA:
        result = engine.update_textures(
            session.context, buffers.views(), buffers.pixel_format
        )
        if not result.ok:
            return _skip(frame_idx, "update textures for", result)

    return ctx.exporter.export_frame(frame_idx, buffers)


def run_pipeline(
    config: PipelineConfig,
    engine: ImagingEngine | None = None,
    progress: bool = True,
) -> PipelineSummary:
    """Export every frame of the configured range.

    Args:
        config: Resolved pipeline configuration.
        engine: Imaging engine to use (default: OpenCVEngine).
        progress: Show a progress bar when stderr is a terminal.

    Returns:
        PipelineSummary of the run. Per-frame failures are recorded there
        and never raised.

    Raises:
        FatalInitError: If initialization fails (nothing is exported).
    """
    ctx = build_pipeline_context(config, engine)

    with ctx:
        frame_range = ctx.frame_range
        summary = PipelineSummary(frames_requested=frame_range.count)
        logger.info("Processing frames %d to %d", frame_range.start, frame_range.end)

        for frame_idx in tqdm(
            frame_range,
            total=frame_range.count,
            desc="Exporting frames",
            disable=not progress or not sys.stderr.isatty(),
            unit="frame",
        ):
            logger.debug("Processing frame %d of %d", frame_idx, frame_range.end)
            try:
                result = process_frame(frame_idx, ctx)
            except Exception:
                logger.exception("Frame %d: processing failed, skipping", frame_idx)
                result = ExportResult.skipped(frame_idx, "unexpected error")
            summary.results.append(result)

    logger.info(
        "Export complete: %d frames ok, %d partial, %d failed, %d skipped, "
        "%d files written",
        summary.count(ExportStatus.SUCCESS),
        summary.count(ExportStatus.PARTIAL_FAILURE),
        summary.count(ExportStatus.FAILED),
        summary.count(ExportStatus.SKIPPED),
        summary.files_written,
    )
    return summary


class Pipeline:
    """Stream export pipeline.

    Primary programmatic entry point for LBExport.

    Example:
        pipeline = Pipeline(config)
        summary = pipeline.run()
    """

    def __init__(self, config: PipelineConfig, engine: ImagingEngine | None = None):
        self.config = config
        self.engine = engine

    def run(self, progress: bool = True) -> PipelineSummary:
        """Run the export. Equivalent to run_pipeline(config, engine)."""
        return run_pipeline(self.config, self.engine, progress=progress)
