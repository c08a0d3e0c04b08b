"""Pipeline context builder: every fatal initialization step before the loop."""

import logging
import math
from typing import Any

from ..buffers import (
    CameraBufferSet,
    allocate_buffers,
    compute_texture_geometry,
    configure_blending,
)
from ..config import ExportMode, PipelineConfig, resolve_frame_range
from ..engine import ImagingEngine, OpenCVEngine, OutputType
from ..errors import FatalInitError
from ..export import MultiCameraExporter, PanoramaExporter
from ..io import ensure_output_directory
from ..stream import StreamSession
from .context import PipelineContext

logger = logging.getLogger(__name__)

RENDER_OUTPUT_TYPES = {
    "pano": OutputType.PANORAMIC,
    "dome": OutputType.DOME,
    "spherical": OutputType.SPHERICAL,
}


def render_output_type(render_type: str) -> tuple[OutputType, int | None]:
    """Map a render type name to an engine output type and camera index.

    ``rectify-N`` selects the rectified image of camera N.
    """
    if render_type.startswith("rectify-"):
        return OutputType.RECTIFIED, int(render_type.split("-", 1)[1])
    return RENDER_OUTPUT_TYPES[render_type], None


def configure_exporter(
    engine: ImagingEngine, context: Any, config: PipelineConfig
) -> MultiCameraExporter | PanoramaExporter:
    """Prepare the engine for the configured export mode.

    Multi-camera export needs no renderer setup. Panorama export configures
    the off-screen target and canvas size (fatal on failure) and applies the
    mesh rotation once (a warning on failure).

    Raises:
        FatalInitError: If the off-screen output cannot be configured.
    """
    if config.export_mode == ExportMode.MULTI_CAMERA:
        logger.info("Multi-camera export: skipping panoramic setup")
        return MultiCameraExporter(
            engine, context, config.output_dir, config.file_format
        )

    output_type, camera = render_output_type(config.render_type)
    logger.info("Configure output images (%s)...", config.render_type)
    result = engine.configure_output(context, output_type, camera)
    if not result.ok:
        raise FatalInitError(f"Could not configure output images: {result.describe()}")

    logger.info(
        "Set off-screen image size: %dx%d",
        config.output_width,
        config.output_height,
    )
    result = engine.set_offscreen_size(
        context, config.output_width, config.output_height
    )
    if not result.ok:
        raise FatalInitError(
            f"Could not set off-screen image size: {result.describe()}"
        )

    if config.rotation_front != 0.0 or config.rotation_down != 0.0:
        rot_x = math.radians(config.rotation_front)  # pitch
        rot_y = math.radians(config.rotation_down)  # yaw
        result = engine.set_rotation(context, rot_x, rot_y, 0.0)
        if result.ok:
            logger.info(
                "Applied rotation: Front=%.1f, Down=%.1f degrees",
                config.rotation_front,
                config.rotation_down,
            )
        else:
            logger.warning("Could not set 3D map rotation: %s", result.describe())

    return PanoramaExporter(engine, context, config.output_dir, config.file_format)


def build_pipeline_context(
    config: PipelineConfig, engine: ImagingEngine | None = None
) -> PipelineContext:
    """Perform one-time pipeline initialization.

    Opens the stream, reads a probe frame to size the camera buffers,
    negotiates blending, configures the export mode, creates the output
    directory and seeks to the first requested frame.

    Args:
        config: Resolved pipeline configuration.
        engine: Imaging engine to use (default: OpenCVEngine).

    Returns:
        PipelineContext positioned at the start of the frame range.

    Raises:
        FatalInitError: If any initialization step fails. Everything
            acquired up to that point is released.
    """
    if engine is None:
        engine = OpenCVEngine()

    session = StreamSession.open(engine, config.source_path)
    buffers: CameraBufferSet | None = None
    try:
        if session.total_frames <= 0:
            raise FatalInitError(f"Stream {config.source_path} contains no frames")

        logger.info("Setting debayering method (%s)...", config.color_method.value)
        result = engine.set_color_method(session.context, config.color_method)
        if not result.ok:
            raise FatalInitError(
                f"Could not set color processing method: {result.describe()}"
            )

        # Probe frame: only read to learn the native image size.
        result = session.read_next()
        if not result.ok:
            raise FatalInitError(f"Could not read initial frame: {result.describe()}")
        probe = result.value
        logger.info(
            "Image info: %dx%d, format=%s",
            probe.cols,
            probe.rows,
            probe.data_format.value,
        )

        try:
            geometry = compute_texture_geometry(
                probe.cols, probe.rows, config.color_method, session.high_bit_depth
            )
        except ValueError as e:
            raise FatalInitError(str(e)) from e
        buffers = allocate_buffers(geometry, session.header.num_cameras)

        configure_blending(engine, session.context, geometry, config)
        exporter = configure_exporter(engine, session.context, config)

        frame_range = resolve_frame_range(config.frame_range, session.total_frames)
        ensure_output_directory(config.output_dir)

        result = session.seek(frame_range.start)
        if not result.ok:
            raise FatalInitError(
                f"Could not seek to frame {frame_range.start}: {result.describe()}"
            )
    except BaseException:
        if buffers is not None:
            buffers.release()
        session.close()
        raise

    return PipelineContext(
        config=config,
        session=session,
        buffers=buffers,
        frame_range=frame_range,
        exporter=exporter,
    )
