"""Per-frame panoramic and per-camera image export from recorded multi-camera streams."""

from .buffers import (
    CameraBufferSet,
    TextureGeometry,
    allocate_buffers,
    compute_texture_geometry,
)
from .config import (
    ColorMethod,
    ExportMode,
    FrameRange,
    FrameSelection,
    ImageFileFormat,
    PipelineConfig,
    RawOptions,
    load_config_mapping,
    parse_frame_range,
    parse_resolution,
    parse_rotation,
    resolve_config,
    resolve_frame_range,
)
from .engine import ImagingEngine, OpenCVEngine
from .errors import ConfigError, FatalInitError, LBExportError
from .export import (
    ExportResult,
    ExportStatus,
    MultiCameraExporter,
    PanoramaExporter,
    camera_image_path,
    panorama_image_path,
)
from .io import ensure_output_directory
from .pipeline import (
    Pipeline,
    PipelineContext,
    PipelineSummary,
    build_pipeline_context,
    process_frame,
    run_pipeline,
)
from .stream import StreamSession

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "RawOptions",
    "FrameSelection",
    "FrameRange",
    "ExportMode",
    "ColorMethod",
    "ImageFileFormat",
    "parse_resolution",
    "parse_frame_range",
    "parse_rotation",
    "load_config_mapping",
    "resolve_config",
    "resolve_frame_range",
    "TextureGeometry",
    "CameraBufferSet",
    "compute_texture_geometry",
    "allocate_buffers",
    "ImagingEngine",
    "OpenCVEngine",
    "StreamSession",
    "ExportResult",
    "ExportStatus",
    "MultiCameraExporter",
    "PanoramaExporter",
    "camera_image_path",
    "panorama_image_path",
    "ensure_output_directory",
    "PipelineContext",
    "PipelineSummary",
    "Pipeline",
    "build_pipeline_context",
    "process_frame",
    "run_pipeline",
    "LBExportError",
    "ConfigError",
    "FatalInitError",
]
