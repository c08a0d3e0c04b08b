"""Protocol and data types for the imaging engine collaborator.

The imaging engine owns everything below the export pipeline: the stream
container, demosaicing, panoramic rendering and image encoding. The pipeline
talks to it only through ``ImagingEngine``. Every engine operation returns an
``EngineResult`` instead of raising, and callers decide immediately whether a
failure is fatal or skippable.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Protocol, Sequence, TypeVar, runtime_checkable

import numpy as np

from ..config import ColorMethod, ImageFileFormat

T = TypeVar("T")

DEFAULT_NUM_CAMERAS = 6


class EngineStatus(str, Enum):
    """Discrete status codes returned by engine operations."""

    OK = "ok"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    NOT_SUPPORTED = "not_supported"
    OUT_OF_RANGE = "out_of_range"
    END_OF_STREAM = "end_of_stream"
    NOT_INITIALIZED = "not_initialized"
    MEMORY_ALLOC_ERROR = "memory_alloc_error"


@dataclass(frozen=True)
class EngineResult(Generic[T]):
    """Value-or-status result of an engine call.

    Attributes:
        status: OK on success, otherwise the failure kind.
        value: Payload of a successful call (None for calls without one).
        message: Human-readable detail for failures.
    """

    status: EngineStatus
    value: T | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == EngineStatus.OK

    @classmethod
    def success(cls, value: T | None = None) -> "EngineResult[T]":
        return cls(EngineStatus.OK, value)

    @classmethod
    def failure(
        cls, status: EngineStatus = EngineStatus.FAILED, message: str = ""
    ) -> "EngineResult[T]":
        if status == EngineStatus.OK:
            raise ValueError("failure() requires a non-OK status")
        return cls(status, None, message)

    def describe(self) -> str:
        """Status and message, for log lines."""
        if self.message:
            return f"{self.status.value}: {self.message}"
        return self.status.value


class DataFormat(str, Enum):
    """Native sensor data formats a stream may be recorded in."""

    RAW8 = "RAW8"
    JPEG8 = "JPEG8"
    COLOR_SEP_RAW8 = "COLOR_SEP_RAW8"
    COLOR_SEP_JPEG8 = "COLOR_SEP_JPEG8"
    HALF_HEIGHT_RAW8 = "HALF_HEIGHT_RAW8"
    COLOR_SEP_HALF_HEIGHT_JPEG8 = "COLOR_SEP_HALF_HEIGHT_JPEG8"
    RAW12 = "RAW12"
    HALF_HEIGHT_RAW12 = "HALF_HEIGHT_RAW12"
    COLOR_SEP_JPEG12 = "COLOR_SEP_JPEG12"
    COLOR_SEP_HALF_HEIGHT_JPEG12 = "COLOR_SEP_HALF_HEIGHT_JPEG12"
    COLOR_SEP_JPEG12_PROCESSED = "COLOR_SEP_JPEG12_PROCESSED"
    COLOR_SEP_HALF_HEIGHT_JPEG12_PROCESSED = "COLOR_SEP_HALF_HEIGHT_JPEG12_PROCESSED"
    RAW16 = "RAW16"
    HALF_HEIGHT_RAW16 = "HALF_HEIGHT_RAW16"

    @property
    def is_high_bit_depth(self) -> bool:
        """True for 12- and 16-bit formats."""
        return self in HIGH_BIT_DEPTH_FORMATS


HIGH_BIT_DEPTH_FORMATS = frozenset(
    {
        DataFormat.RAW12,
        DataFormat.HALF_HEIGHT_RAW12,
        DataFormat.COLOR_SEP_JPEG12,
        DataFormat.COLOR_SEP_HALF_HEIGHT_JPEG12,
        DataFormat.COLOR_SEP_JPEG12_PROCESSED,
        DataFormat.COLOR_SEP_HALF_HEIGHT_JPEG12_PROCESSED,
        DataFormat.RAW16,
        DataFormat.HALF_HEIGHT_RAW16,
    }
)


class PixelFormat(str, Enum):
    """In-memory pixel layouts.

    BGRU/BGRU16 are 4-channel (blue, green, red, unused/alpha) at 8 or 16
    bits per channel. BGR is the flat 3-channel layout of rendered images.
    """

    BGRU = "BGRU"
    BGRU16 = "BGRU16"
    BGR = "BGR"

    @property
    def bytes_per_pixel(self) -> int:
        return {"BGRU": 4, "BGRU16": 8, "BGR": 3}[self.value]

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.uint16) if self == PixelFormat.BGRU16 else np.dtype(np.uint8)


class OutputType(str, Enum):
    """Off-screen render targets."""

    PANORAMIC = "panoramic"
    DOME = "dome"
    SPHERICAL = "spherical"
    RECTIFIED = "rectified"


@dataclass(frozen=True)
class StreamHeader:
    """Static information read from a stream's header.

    Attributes:
        serial_base: Serial number of the camera base unit.
        serial_head: Serial number of the camera head.
        frame_rate: Recording frame rate in frames per second.
        data_format: Native sensor data format.
        resolution: Native resolution label reported by the stream.
        stream_version: Container version.
        num_cameras: Number of physical cameras per frame.
        total_frames: Number of frames in the stream.
    """

    serial_base: int
    serial_head: int
    frame_rate: float
    data_format: DataFormat
    resolution: str
    stream_version: int
    num_cameras: int
    total_frames: int


@dataclass
class RawFrame:
    """One undecoded multi-camera frame.

    Attributes:
        index: Frame index within the stream.
        data: Raw pixel data for all cameras, stacked vertically.
        cols: Per-camera native width in pixels.
        rows: Per-camera native height in pixels.
        data_format: Native sensor data format.
    """

    index: int
    data: np.ndarray
    cols: int
    rows: int
    data_format: DataFormat


@dataclass
class ProcessedImage:
    """A pixel buffer described for saving.

    ``data`` is referenced, not copied, so wrapping a camera buffer is free.
    """

    data: np.ndarray
    cols: int
    rows: int
    pixel_format: PixelFormat


@runtime_checkable
class ImagingEngine(Protocol):
    """Structural interface of the imaging engine collaborator.

    ``context`` and ``stream`` arguments are opaque handles created by
    ``create_context`` and ``open_stream``. All calls are blocking and return
    an EngineResult; none raise.
    """

    # --- Lifecycle ---

    def create_context(self) -> EngineResult[Any]:
        """Create a processing context."""
        ...

    def destroy_context(self, context: Any) -> EngineResult[None]:
        """Release a processing context."""
        ...

    def open_stream(self, path: str | Path) -> EngineResult[Any]:
        """Open a recorded stream for reading."""
        ...

    def close_stream(self, stream: Any) -> EngineResult[None]:
        """Close a stream handle."""
        ...

    # --- Stream configuration and header ---

    def extract_config(self, stream: Any, dest: str | Path) -> EngineResult[None]:
        """Write the stream's embedded configuration blob to ``dest``."""
        ...

    def load_config(self, context: Any, path: str | Path) -> EngineResult[None]:
        """Load a configuration file into the context."""
        ...

    def read_header(self, stream: Any) -> EngineResult[StreamHeader]:
        """Read the stream's static header."""
        ...

    # --- Frame access ---

    def seek(self, stream: Any, index: int) -> EngineResult[None]:
        """Position the stream so the next read returns frame ``index``."""
        ...

    def read_frame(self, stream: Any) -> EngineResult[RawFrame]:
        """Read the frame at the current position and advance."""
        ...

    # --- Color processing ---

    def set_color_method(
        self, context: Any, method: ColorMethod
    ) -> EngineResult[None]:
        """Select the debayering method for subsequent conversions."""
        ...

    def convert_frame(
        self,
        context: Any,
        frame: RawFrame,
        buffers: Sequence[np.ndarray],
        pixel_format: PixelFormat,
    ) -> EngineResult[None]:
        """Convert a raw frame into the per-camera buffers, in place."""
        ...

    # --- Blending, masking, corrections ---

    def set_blending_width(self, context: Any, width: int) -> EngineResult[None]:
        """Set the stitching overlap width in pixels."""
        ...

    def initialize_alpha_masks(
        self, context: Any, width: int, height: int
    ) -> EngineResult[None]:
        """Precompute per-camera alpha masks for the given texture size."""
        ...

    def set_alpha_masking(self, context: Any, enabled: bool) -> EngineResult[None]:
        """Enable or disable writing alpha masks into converted buffers."""
        ...

    def set_falloff_correction(
        self, context: Any, enabled: bool, value: float
    ) -> EngineResult[None]:
        """Configure light falloff correction."""
        ...

    def set_render_options(
        self,
        context: Any,
        software_rendering: bool,
        anti_aliasing: bool,
        stabilization: bool,
    ) -> EngineResult[None]:
        """Configure renderer options."""
        ...

    # --- Panoramic rendering ---

    def configure_output(
        self, context: Any, output_type: OutputType, camera: int | None = None
    ) -> EngineResult[None]:
        """Select the off-screen render target."""
        ...

    def set_offscreen_size(
        self, context: Any, width: int, height: int
    ) -> EngineResult[None]:
        """Set the off-screen canvas size in pixels."""
        ...

    def set_rotation(
        self, context: Any, rot_x: float, rot_y: float, rot_z: float
    ) -> EngineResult[None]:
        """Rotate the stitching mesh (radians: pitch, yaw, roll)."""
        ...

    def update_textures(
        self,
        context: Any,
        buffers: Sequence[np.ndarray],
        pixel_format: PixelFormat,
    ) -> EngineResult[None]:
        """Hand the per-camera buffers to the renderer as live textures."""
        ...

    def render_offscreen(
        self, context: Any, pixel_format: PixelFormat
    ) -> EngineResult[ProcessedImage]:
        """Render the configured output from the current textures."""
        ...

    # --- Encoding ---

    def save_image(
        self,
        context: Any,
        image: ProcessedImage,
        path: str | Path,
        file_format: ImageFileFormat,
    ) -> EngineResult[None]:
        """Encode and write an image to ``path``."""
        ...
