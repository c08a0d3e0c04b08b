"""Imaging engine interface and the OpenCV-backed implementation."""

from .opencv import OpenCVContext, OpenCVEngine, OpenCVStream
from .protocol import (
    DEFAULT_NUM_CAMERAS,
    DataFormat,
    EngineResult,
    EngineStatus,
    ImagingEngine,
    OutputType,
    PixelFormat,
    ProcessedImage,
    RawFrame,
    StreamHeader,
)

__all__ = [
    "DEFAULT_NUM_CAMERAS",
    "DataFormat",
    "EngineResult",
    "EngineStatus",
    "ImagingEngine",
    "OpenCVContext",
    "OpenCVEngine",
    "OpenCVStream",
    "OutputType",
    "PixelFormat",
    "ProcessedImage",
    "RawFrame",
    "StreamHeader",
]
