"""Export strategies: write one frame's images to the output directory.

Exporters report every outcome through ``ExportResult`` and never raise; a
failed write is logged and the remaining artifacts are still attempted.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .buffers import CameraBufferSet
from .config import ImageFileFormat
from .engine.protocol import ImagingEngine, PixelFormat, ProcessedImage

logger = logging.getLogger(__name__)


class ExportStatus(str, Enum):
    """Outcome of processing one frame."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExportResult:
    """Per-frame export outcome.

    Attributes:
        frame_idx: Frame index the result belongs to.
        status: Overall outcome.
        written: Files successfully written.
        errors: One message per failed step.
    """

    frame_idx: int
    status: ExportStatus
    written: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def skipped(cls, frame_idx: int, error: str) -> "ExportResult":
        return cls(frame_idx, ExportStatus.SKIPPED, errors=[error])

    @classmethod
    def from_attempts(
        cls, frame_idx: int, written: list[Path], errors: list[str]
    ) -> "ExportResult":
        """Status from what was written versus what failed."""
        if not errors:
            status = ExportStatus.SUCCESS
        elif written:
            status = ExportStatus.PARTIAL_FAILURE
        else:
            status = ExportStatus.FAILED
        return cls(frame_idx, status, written, errors)


def camera_image_path(
    output_dir: str | Path, frame_idx: int, camera: int, extension: str
) -> Path:
    """``<output_dir>/<frame:06d>_cam<camera>.<extension>``"""
    return Path(output_dir) / f"{frame_idx:06d}_cam{camera}.{extension}"


def panorama_image_path(output_dir: str | Path, frame_idx: int, extension: str) -> Path:
    """``<output_dir>/<frame:06d>.<extension>``"""
    return Path(output_dir) / f"{frame_idx:06d}.{extension}"


class MultiCameraExporter:
    """Save every camera's processed buffer as its own image.

    Args:
        engine: Imaging engine used to encode files.
        context: Engine processing context.
        output_dir: Directory files are written into.
        file_format: Output encoding.
    """

    def __init__(
        self,
        engine: ImagingEngine,
        context: Any,
        output_dir: str | Path,
        file_format: ImageFileFormat,
    ):
        self.engine = engine
        self.context = context
        self.output_dir = Path(output_dir)
        self.file_format = file_format

    def export_frame(self, frame_idx: int, buffers: CameraBufferSet) -> ExportResult:
        """Write one image per camera for ``frame_idx``.

        Each buffer is wrapped without copying, so this must finish before
        the next frame is converted into the same buffers.
        """
        geometry = buffers.geometry
        written: list[Path] = []
        errors: list[str] = []

        for cam in range(len(buffers)):
            image = ProcessedImage(
                data=buffers.camera(cam),
                cols=geometry.width,
                rows=geometry.height,
                pixel_format=buffers.pixel_format,
            )
            path = camera_image_path(
                self.output_dir, frame_idx, cam, self.file_format.extension
            )
            result = self.engine.save_image(self.context, image, path, self.file_format)
            if result.ok:
                written.append(path)
            else:
                message = f"Could not save camera {cam} image: {result.describe()}"
                logger.warning("Frame %d: %s", frame_idx, message)
                errors.append(message)

        logger.debug(
            "Frame %d: wrote %d/%d camera images", frame_idx, len(written), len(buffers)
        )
        return ExportResult.from_attempts(frame_idx, written, errors)


class PanoramaExporter:
    """Render the stitched panorama from the current textures and save it.

    Args:
        engine: Imaging engine used to render and encode.
        context: Engine processing context, already configured for
            off-screen rendering.
        output_dir: Directory files are written into.
        file_format: Output encoding.
    """

    def __init__(
        self,
        engine: ImagingEngine,
        context: Any,
        output_dir: str | Path,
        file_format: ImageFileFormat,
    ):
        self.engine = engine
        self.context = context
        self.output_dir = Path(output_dir)
        self.file_format = file_format

    def export_frame(self, frame_idx: int, buffers: CameraBufferSet) -> ExportResult:
        """Render and write the panorama for ``frame_idx``.

        The buffers must already have been pushed to the renderer.
        """
        result = self.engine.render_offscreen(self.context, PixelFormat.BGR)
        if not result.ok:
            message = f"Could not render panorama: {result.describe()}"
            logger.warning("Frame %d: %s", frame_idx, message)
            return ExportResult.from_attempts(frame_idx, [], [message])

        path = panorama_image_path(self.output_dir, frame_idx, self.file_format.extension)
        result = self.engine.save_image(
            self.context, result.value, path, self.file_format
        )
        if not result.ok:
            message = f"Could not save panorama: {result.describe()}"
            logger.warning("Frame %d: %s", frame_idx, message)
            return ExportResult.from_attempts(frame_idx, [], [message])

        logger.debug("Frame %d: wrote panoramic image to %s", frame_idx, path)
        return ExportResult.from_attempts(frame_idx, [path], [])
