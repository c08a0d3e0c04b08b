"""Pipeline context dataclass for state shared across frames."""

import logging
from dataclasses import dataclass

from ..buffers import CameraBufferSet
from ..config import FrameRange, PipelineConfig
from ..export import MultiCameraExporter, PanoramaExporter
from ..stream import StreamSession

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Resources acquired once by build_pipeline_context() and reused for
    every frame.

    Owns the stream session and the camera buffers; ``release()`` (or leaving
    a ``with`` block) frees both.
    """

    config: PipelineConfig
    session: StreamSession
    buffers: CameraBufferSet
    frame_range: FrameRange
    exporter: MultiCameraExporter | PanoramaExporter

    @property
    def engine(self):
        return self.session.engine

    def release(self) -> None:
        """Free the buffers, then close the stream and engine context."""
        self.buffers.release()
        self.session.close()
        logger.debug("Pipeline resources released")

    def __enter__(self) -> "PipelineContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
