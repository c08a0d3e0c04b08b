"""Per-camera frame buffers: geometry, allocation and blending setup."""

import logging
from dataclasses import dataclass
from typing import Any, Iterator

import numpy as np

from .config import ColorMethod, PipelineConfig
from .engine.protocol import ImagingEngine, PixelFormat
from .errors import FatalInitError

logger = logging.getLogger(__name__)

# Linear reduction of each dimension per color-processing method.
DOWNSAMPLE_DIVISORS = {
    ColorMethod.DOWNSAMPLE4: 2,
    ColorMethod.DOWNSAMPLE16: 4,
}

CHANNELS = 4


@dataclass(frozen=True)
class TextureGeometry:
    """Size and layout of one camera buffer.

    Attributes:
        width: Buffer width in pixels.
        height: Buffer height in pixels.
        bytes_per_pixel: 4 for 8-bit BGRU, 8 for 16-bit BGRU16.
    """

    width: int
    height: int
    bytes_per_pixel: int

    @property
    def pixel_format(self) -> PixelFormat:
        return PixelFormat.BGRU16 if self.bytes_per_pixel == 8 else PixelFormat.BGRU

    @property
    def nbytes(self) -> int:
        """Size of one buffer in bytes."""
        return self.width * self.height * self.bytes_per_pixel

    @property
    def shape(self) -> tuple[int, int, int]:
        return (self.height, self.width, CHANNELS)


def compute_texture_geometry(
    width: int, height: int, method: ColorMethod, high_bit_depth: bool
) -> TextureGeometry:
    """Derive buffer geometry from the probe frame and processing settings.

    Args:
        width: Native per-camera width of the probe frame.
        height: Native per-camera height of the probe frame.
        method: Color-processing method (the downsampling family shrinks
            the buffers).
        high_bit_depth: Whether the native format is 12/16-bit.

    Returns:
        TextureGeometry for every camera buffer.

    Raises:
        ValueError: If the resulting size is not positive.
    """
    divisor = DOWNSAMPLE_DIVISORS.get(method, 1)
    tex_width = width // divisor
    tex_height = height // divisor
    if tex_width <= 0 or tex_height <= 0:
        raise ValueError(
            f"Frame size {width}x{height} is too small for {method.value}"
        )
    return TextureGeometry(
        width=tex_width,
        height=tex_height,
        bytes_per_pixel=8 if high_bit_depth else 4,
    )


class CameraBufferSet:
    """Fixed set of per-camera pixel buffers, reused for every frame.

    Holds exactly ``num_cameras`` arrays of shape (height, width, 4). The
    contents are overwritten in place by each conversion; nothing from
    earlier frames is retained.
    """

    def __init__(self, geometry: TextureGeometry, buffers: list[np.ndarray]):
        for buf in buffers:
            if buf.shape != geometry.shape or buf.nbytes != geometry.nbytes:
                raise ValueError(
                    f"Buffer of shape {buf.shape} does not match geometry {geometry}"
                )
        self._geometry = geometry
        self._buffers = list(buffers)
        self._released = False

    @property
    def geometry(self) -> TextureGeometry:
        return self._geometry

    @property
    def pixel_format(self) -> PixelFormat:
        return self._geometry.pixel_format

    @property
    def released(self) -> bool:
        return self._released

    def __len__(self) -> int:
        return len(self._buffers)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.views())

    def camera(self, index: int) -> np.ndarray:
        """Buffer of camera ``index`` (0-based)."""
        if self._released:
            raise RuntimeError("Camera buffers have been released")
        if not 0 <= index < len(self._buffers):
            raise IndexError(
                f"Camera index {index} out of range [0, {len(self._buffers)})"
            )
        return self._buffers[index]

    def views(self) -> list[np.ndarray]:
        """All camera buffers, in camera order."""
        if self._released:
            raise RuntimeError("Camera buffers have been released")
        return list(self._buffers)

    def release(self) -> None:
        """Drop all buffers. Safe to call more than once."""
        self._buffers.clear()
        self._released = True


def allocate_buffers(geometry: TextureGeometry, num_cameras: int) -> CameraBufferSet:
    """Allocate one buffer per camera.

    Args:
        geometry: Buffer geometry shared by every camera.
        num_cameras: Number of physical cameras.

    Returns:
        CameraBufferSet with ``num_cameras`` zeroed buffers.

    Raises:
        FatalInitError: If any allocation fails. Buffers allocated before the
            failure are released.
    """
    if num_cameras <= 0:
        raise FatalInitError(f"Invalid camera count {num_cameras}")

    dtype = geometry.pixel_format.dtype
    buffers: list[np.ndarray] = []
    for cam in range(num_cameras):
        try:
            buffers.append(np.zeros(geometry.shape, dtype=dtype))
        except MemoryError as e:
            buffers.clear()
            raise FatalInitError(
                f"Failed to allocate texture buffer for camera {cam} "
                f"({geometry.nbytes} bytes)"
            ) from e

    logger.info(
        "Allocated %d texture buffers of %dx%d (%d bytes/pixel)",
        num_cameras,
        geometry.width,
        geometry.height,
        geometry.bytes_per_pixel,
    )
    return CameraBufferSet(geometry, buffers)


def configure_blending(
    engine: ImagingEngine,
    context: Any,
    geometry: TextureGeometry,
    config: PipelineConfig,
) -> list[str]:
    """Negotiate blending, alpha masking and corrections with the engine.

    None of these are required for usable output, so every failure is logged
    as a warning and setup continues.

    Returns:
        Warning messages for the steps that failed.
    """
    warnings = []

    def _check(result, what: str) -> None:
        if not result.ok:
            logger.warning("Could not %s: %s", what, result.describe())
            warnings.append(f"Could not {what}: {result.describe()}")

    _check(
        engine.set_blending_width(context, config.blending_width),
        "set blending params",
    )

    logger.info("Initializing alpha masks (this may take some time)...")
    _check(
        engine.initialize_alpha_masks(context, geometry.width, geometry.height),
        "initialize alpha masks",
    )
    _check(engine.set_alpha_masking(context, True), "enable alpha masking")

    if config.falloff_enabled:
        _check(
            engine.set_falloff_correction(context, True, config.falloff_value),
            "enable falloff correction",
        )

    _check(
        engine.set_render_options(
            context,
            config.software_rendering,
            config.anti_aliasing,
            config.stabilization,
        ),
        "set render options",
    )
    return warnings
