"""Imaging engine backed by OpenCV and NumPy.

Reads streams stored either as a video file or as a directory of frame
images, where every frame stacks the images of all cameras vertically. An
optional YAML sidecar (``<stream>.yaml`` next to a video file, or
``stream.yaml`` inside an image directory) plays the role of the stream's
embedded configuration and header:

.. code-block:: yaml

    num_cameras: 6
    data_format: RAW8        # any DataFormat name
    bayer_pattern: BG        # OpenCV Bayer code suffix: BG, GB, RG or GR
    serial_base: 0
    serial_head: 0
    frame_rate: 15.0
    stream_version: 7
    ring_cameras: [0, 1, 2, 3, 4]

Single-channel frames are treated as Bayer mosaics and demosaiced with
``cv2.cvtColor``; three-channel frames are used as already colour-processed.
The panoramic render is a cylindrical strip of the ring cameras with a linear
cross-fade over the blending width, not a calibrated mesh projection.
"""

import logging
import math
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import cv2
import numpy as np
import yaml

from ..config import ColorMethod, ImageFileFormat
from ..io import ImageDirectoryReader, VideoFileReader, detect_input_type
from .protocol import (
    DEFAULT_NUM_CAMERAS,
    DataFormat,
    EngineResult,
    EngineStatus,
    OutputType,
    PixelFormat,
    ProcessedImage,
    RawFrame,
    StreamHeader,
)

logger = logging.getLogger(__name__)

SIDECAR_NAME = "stream.yaml"
VALID_BAYER_PATTERNS = ("BG", "GB", "RG", "GR")
DEFAULT_FRAME_RATE = 15.0
DEFAULT_STREAM_VERSION = 7
JPEG_QUALITY = 95

# Linear downscale applied after demosaicing.
DOWNSAMPLE_DIVISORS = {
    ColorMethod.DOWNSAMPLE4: 2,
    ColorMethod.DOWNSAMPLE16: 4,
}

ENGINE_ERRORS = (cv2.error, OSError, ValueError, yaml.YAMLError)


@dataclass
class OpenCVContext:
    """Processing state held between engine calls."""

    color_method: ColorMethod = ColorMethod.HQ_LINEAR
    bayer_pattern: str = "BG"
    ring_cameras: list[int] = field(default_factory=lambda: [0, 1, 2, 3, 4])
    blending_width: int = 100
    alpha_mask: np.ndarray | None = None
    alpha_masking: bool = False
    anti_aliasing: bool = False
    output_type: OutputType | None = None
    output_camera: int | None = None
    canvas_size: tuple[int, int] | None = None
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    textures: list[np.ndarray] | None = None


@dataclass
class OpenCVStream:
    """Open stream handle."""

    path: Path
    reader: ImageDirectoryReader | VideoFileReader
    sidecar: dict[str, Any]
    sidecar_path: Path | None
    num_cameras: int
    position: int = 0


def sidecar_path_for(path: str | Path) -> Path:
    """Location of the YAML sidecar for a stream path."""
    path = Path(path)
    if path.is_dir():
        return path / SIDECAR_NAME
    return path.with_suffix(".yaml")


def _to_bgr8(pixels: np.ndarray) -> np.ndarray:
    """First three channels as 8-bit BGR."""
    bgr = pixels[..., :3]
    if bgr.dtype == np.uint16:
        return (bgr >> 8).astype(np.uint8)
    return bgr.astype(np.uint8, copy=False)


class OpenCVEngine:
    """ImagingEngine implementation using OpenCV for decode, debayer and encode."""

    # --- Lifecycle ---

    def create_context(self) -> EngineResult[OpenCVContext]:
        return EngineResult.success(OpenCVContext())

    def destroy_context(self, context: OpenCVContext) -> EngineResult[None]:
        context.textures = None
        context.alpha_mask = None
        return EngineResult.success()

    def open_stream(self, path: str | Path) -> EngineResult[OpenCVStream]:
        path = Path(path)
        try:
            input_type = detect_input_type(path)
        except FileNotFoundError as e:
            return EngineResult.failure(EngineStatus.NOT_FOUND, str(e))

        sidecar_path = sidecar_path_for(path)
        sidecar: dict[str, Any] = {}
        try:
            if sidecar_path.is_file():
                with open(sidecar_path) as f:
                    sidecar = yaml.safe_load(f) or {}
                if not isinstance(sidecar, dict):
                    return EngineResult.failure(
                        EngineStatus.INVALID_ARGUMENT,
                        f"Stream sidecar {sidecar_path} is not a mapping",
                    )
            else:
                sidecar_path = None

            if input_type == "images":
                reader = ImageDirectoryReader(path)
            else:
                reader = VideoFileReader(path)
        except (RuntimeError, *ENGINE_ERRORS) as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))

        num_cameras = int(sidecar.get("num_cameras", DEFAULT_NUM_CAMERAS))
        if num_cameras <= 0:
            reader.close()
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT,
                f"num_cameras must be positive, got {num_cameras}",
            )

        return EngineResult.success(
            OpenCVStream(
                path=path,
                reader=reader,
                sidecar=sidecar,
                sidecar_path=sidecar_path,
                num_cameras=num_cameras,
            )
        )

    def close_stream(self, stream: OpenCVStream) -> EngineResult[None]:
        stream.reader.close()
        return EngineResult.success()

    # --- Stream configuration and header ---

    def extract_config(
        self, stream: OpenCVStream, dest: str | Path
    ) -> EngineResult[None]:
        if stream.sidecar_path is None:
            return EngineResult.failure(
                EngineStatus.NOT_FOUND, f"No configuration embedded in {stream.path}"
            )
        try:
            shutil.copyfile(stream.sidecar_path, dest)
        except OSError as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))
        return EngineResult.success()

    def load_config(self, context: OpenCVContext, path: str | Path) -> EngineResult[None]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))

        if not isinstance(data, dict):
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT, f"Configuration {path} is not a mapping"
            )

        pattern = str(data.get("bayer_pattern", context.bayer_pattern)).upper()
        if pattern not in VALID_BAYER_PATTERNS:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT,
                f"Invalid bayer_pattern {pattern!r}, expected one of {VALID_BAYER_PATTERNS}",
            )
        context.bayer_pattern = pattern

        if "ring_cameras" in data:
            try:
                context.ring_cameras = [int(c) for c in data["ring_cameras"]]
            except (TypeError, ValueError):
                return EngineResult.failure(
                    EngineStatus.INVALID_ARGUMENT, "ring_cameras must be a list of ints"
                )
        return EngineResult.success()

    def read_header(self, stream: OpenCVStream) -> EngineResult[StreamHeader]:
        sidecar = stream.sidecar
        try:
            data_format = DataFormat(str(sidecar.get("data_format", "RAW8")).upper())
            version = int(sidecar.get("stream_version", DEFAULT_STREAM_VERSION))
            frame_rate = float(
                sidecar.get("frame_rate", stream.reader.fps or DEFAULT_FRAME_RATE)
            )
            # Older containers only store an integer frame rate.
            if version < 7:
                frame_rate = float(int(frame_rate))
            header = StreamHeader(
                serial_base=int(sidecar.get("serial_base", 0)),
                serial_head=int(sidecar.get("serial_head", 0)),
                frame_rate=frame_rate,
                data_format=data_format,
                resolution=str(sidecar.get("resolution", "unknown")),
                stream_version=version,
                num_cameras=stream.num_cameras,
                total_frames=stream.reader.frame_count,
            )
        except (TypeError, ValueError) as e:
            return EngineResult.failure(EngineStatus.INVALID_ARGUMENT, str(e))
        return EngineResult.success(header)

    # --- Frame access ---

    def seek(self, stream: OpenCVStream, index: int) -> EngineResult[None]:
        if not 0 <= index < stream.reader.frame_count:
            return EngineResult.failure(
                EngineStatus.OUT_OF_RANGE,
                f"Frame {index} outside [0, {stream.reader.frame_count - 1}]",
            )
        stream.position = index
        return EngineResult.success()

    def read_frame(self, stream: OpenCVStream) -> EngineResult[RawFrame]:
        index = stream.position
        if index >= stream.reader.frame_count:
            return EngineResult.failure(EngineStatus.END_OF_STREAM)
        stream.position += 1

        try:
            data = stream.reader.read(index)
        except cv2.error as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))
        if data is None:
            return EngineResult.failure(
                EngineStatus.FAILED, f"Could not decode frame {index}"
            )

        total_rows = data.shape[0]
        if total_rows % stream.num_cameras != 0:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT,
                f"Frame height {total_rows} is not a multiple of "
                f"{stream.num_cameras} cameras",
            )

        try:
            data_format = DataFormat(
                str(stream.sidecar.get("data_format", "RAW8")).upper()
            )
        except ValueError as e:
            return EngineResult.failure(EngineStatus.INVALID_ARGUMENT, str(e))
        return EngineResult.success(
            RawFrame(
                index=index,
                data=data,
                cols=data.shape[1],
                rows=total_rows // stream.num_cameras,
                data_format=data_format,
            )
        )

    # --- Color processing ---

    def set_color_method(
        self, context: OpenCVContext, method: ColorMethod
    ) -> EngineResult[None]:
        context.color_method = ColorMethod(method)
        return EngineResult.success()

    def _demosaic(self, context: OpenCVContext, tile: np.ndarray) -> np.ndarray:
        """Colour-process one camera tile to 3-channel BGR at output size."""
        method = context.color_method
        pattern = context.bayer_pattern

        if tile.ndim == 3 and tile.shape[2] >= 3:
            bgr = tile[..., :3]
            if method == ColorMethod.MONO:
                gray = cv2.cvtColor(np.ascontiguousarray(bgr), cv2.COLOR_BGR2GRAY)
                bgr = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
        else:
            mosaic = tile if tile.ndim == 2 else tile[..., 0]
            mosaic = np.ascontiguousarray(mosaic)
            if method == ColorMethod.MONO:
                gray = cv2.cvtColor(mosaic, getattr(cv2, f"COLOR_Bayer{pattern}2GRAY"))
                bgr = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
            elif method == ColorMethod.HQ_LINEAR and mosaic.dtype == np.uint8:
                bgr = cv2.cvtColor(mosaic, getattr(cv2, f"COLOR_Bayer{pattern}2BGR_VNG"))
            elif method == ColorMethod.EDGE_SENSING:
                bgr = cv2.cvtColor(mosaic, getattr(cv2, f"COLOR_Bayer{pattern}2BGR_EA"))
            else:
                bgr = cv2.cvtColor(mosaic, getattr(cv2, f"COLOR_Bayer{pattern}2BGR"))

        divisor = DOWNSAMPLE_DIVISORS.get(method)
        if divisor:
            rows, cols = tile.shape[:2]
            bgr = cv2.resize(
                np.ascontiguousarray(bgr),
                (cols // divisor, rows // divisor),
                interpolation=cv2.INTER_AREA,
            )
        return bgr

    def convert_frame(
        self,
        context: OpenCVContext,
        frame: RawFrame,
        buffers: Sequence[np.ndarray],
        pixel_format: PixelFormat,
    ) -> EngineResult[None]:
        if pixel_format not in (PixelFormat.BGRU, PixelFormat.BGRU16):
            return EngineResult.failure(
                EngineStatus.NOT_SUPPORTED, f"Cannot convert to {pixel_format.value}"
            )
        num_cameras = frame.data.shape[0] // frame.rows
        if len(buffers) != num_cameras:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT,
                f"Expected {num_cameras} buffers, got {len(buffers)}",
            )

        max_value = np.iinfo(pixel_format.dtype).max
        try:
            for cam, buffer in enumerate(buffers):
                tile = frame.data[cam * frame.rows : (cam + 1) * frame.rows]
                bgr = self._demosaic(context, tile)
                if bgr.shape[:2] != buffer.shape[:2]:
                    return EngineResult.failure(
                        EngineStatus.INVALID_ARGUMENT,
                        f"Camera {cam}: converted size {bgr.shape[1]}x{bgr.shape[0]} "
                        f"does not match buffer {buffer.shape[1]}x{buffer.shape[0]}",
                    )

                if buffer.dtype == np.uint16 and bgr.dtype == np.uint8:
                    bgr = bgr.astype(np.uint16) * 257
                elif buffer.dtype == np.uint8 and bgr.dtype == np.uint16:
                    bgr = (bgr >> 8).astype(np.uint8)
                buffer[..., :3] = bgr

                if context.alpha_masking and context.alpha_mask is not None:
                    buffer[..., 3] = (context.alpha_mask * max_value).astype(buffer.dtype)
                else:
                    buffer[..., 3] = max_value
        except ENGINE_ERRORS as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))
        return EngineResult.success()

    # --- Blending, masking, corrections ---

    def set_blending_width(self, context: OpenCVContext, width: int) -> EngineResult[None]:
        if width < 0:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT, f"Blending width must be >= 0, got {width}"
            )
        context.blending_width = width
        return EngineResult.success()

    def initialize_alpha_masks(
        self, context: OpenCVContext, width: int, height: int
    ) -> EngineResult[None]:
        if width <= 0 or height <= 0:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT, f"Invalid mask size {width}x{height}"
            )
        # Linear feather at the left and right edges, where neighbours overlap.
        feather = min(context.blending_width, width // 2)
        row = np.ones(width, dtype=np.float32)
        if feather > 0:
            ramp = np.linspace(0.0, 1.0, feather, endpoint=False, dtype=np.float32)
            row[:feather] = ramp
            row[width - feather :] = ramp[::-1]
        context.alpha_mask = np.tile(row, (height, 1))
        return EngineResult.success()

    def set_alpha_masking(self, context: OpenCVContext, enabled: bool) -> EngineResult[None]:
        if enabled and context.alpha_mask is None:
            return EngineResult.failure(
                EngineStatus.NOT_INITIALIZED, "Alpha masks have not been initialized"
            )
        context.alpha_masking = enabled
        return EngineResult.success()

    def set_falloff_correction(
        self, context: OpenCVContext, enabled: bool, value: float
    ) -> EngineResult[None]:
        if enabled:
            return EngineResult.failure(
                EngineStatus.NOT_SUPPORTED,
                "Falloff correction requires lens calibration data",
            )
        return EngineResult.success()

    def set_render_options(
        self,
        context: OpenCVContext,
        software_rendering: bool,
        anti_aliasing: bool,
        stabilization: bool,
    ) -> EngineResult[None]:
        # Rendering is always in software here; stabilization has no effect.
        context.anti_aliasing = anti_aliasing
        return EngineResult.success()

    # --- Panoramic rendering ---

    def configure_output(
        self, context: OpenCVContext, output_type: OutputType, camera: int | None = None
    ) -> EngineResult[None]:
        if output_type == OutputType.RECTIFIED and (camera is None or camera < 0):
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT, "Rectified output needs a camera index"
            )
        if output_type in (OutputType.DOME, OutputType.SPHERICAL):
            logger.warning(
                "%s output is rendered as a panoramic strip by OpenCVEngine",
                output_type.value,
            )
        context.output_type = output_type
        context.output_camera = camera
        return EngineResult.success()

    def set_offscreen_size(
        self, context: OpenCVContext, width: int, height: int
    ) -> EngineResult[None]:
        if width <= 0 or height <= 0:
            return EngineResult.failure(
                EngineStatus.INVALID_ARGUMENT, f"Invalid canvas size {width}x{height}"
            )
        context.canvas_size = (width, height)
        return EngineResult.success()

    def set_rotation(
        self, context: OpenCVContext, rot_x: float, rot_y: float, rot_z: float
    ) -> EngineResult[None]:
        if rot_z != 0.0:
            return EngineResult.failure(
                EngineStatus.NOT_SUPPORTED, "Roll rotation is not supported"
            )
        context.rotation = (rot_x, rot_y, rot_z)
        return EngineResult.success()

    def update_textures(
        self,
        context: OpenCVContext,
        buffers: Sequence[np.ndarray],
        pixel_format: PixelFormat,
    ) -> EngineResult[None]:
        if not buffers:
            return EngineResult.failure(EngineStatus.INVALID_ARGUMENT, "No buffers")
        context.textures = [_to_bgr8(np.asarray(b)).copy() for b in buffers]
        return EngineResult.success()

    def render_offscreen(
        self, context: OpenCVContext, pixel_format: PixelFormat
    ) -> EngineResult[ProcessedImage]:
        if pixel_format != PixelFormat.BGR:
            return EngineResult.failure(
                EngineStatus.NOT_SUPPORTED, f"Cannot render {pixel_format.value}"
            )
        if context.output_type is None or context.canvas_size is None:
            return EngineResult.failure(
                EngineStatus.NOT_INITIALIZED, "Off-screen output is not configured"
            )
        if not context.textures:
            return EngineResult.failure(
                EngineStatus.NOT_INITIALIZED, "No textures have been uploaded"
            )

        width, height = context.canvas_size
        interpolation = cv2.INTER_AREA if context.anti_aliasing else cv2.INTER_LINEAR
        try:
            if context.output_type == OutputType.RECTIFIED:
                if context.output_camera >= len(context.textures):
                    return EngineResult.failure(
                        EngineStatus.OUT_OF_RANGE,
                        f"Camera {context.output_camera} does not exist",
                    )
                image = cv2.resize(
                    context.textures[context.output_camera],
                    (width, height),
                    interpolation=interpolation,
                )
            else:
                image = self._render_strip(context, width, height, interpolation)
        except ENGINE_ERRORS as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))

        return EngineResult.success(
            ProcessedImage(data=image, cols=width, rows=height, pixel_format=PixelFormat.BGR)
        )

    def _render_strip(
        self, context: OpenCVContext, width: int, height: int, interpolation: int
    ) -> np.ndarray:
        """Cross-faded horizontal strip of the ring cameras, wrapping at 360 degrees."""
        cameras = [c for c in context.ring_cameras if 0 <= c < len(context.textures)]
        if not cameras:
            cameras = list(range(len(context.textures)))

        n = len(cameras)
        tile_w = max(1, math.ceil(width / n))
        total_w = tile_w * n
        blend = min(context.blending_width, tile_w // 2) if n > 1 else 0

        accum = np.zeros((height, total_w, 3), dtype=np.float32)
        weights = np.zeros((height, total_w, 1), dtype=np.float32)

        span = tile_w + blend
        x = np.arange(span, dtype=np.float32)
        column_weight = np.minimum(1.0, np.minimum(x + 1, span - x) / (blend + 1))
        column_weight = column_weight[np.newaxis, :, np.newaxis]

        for k, cam in enumerate(cameras):
            tile = cv2.resize(
                context.textures[cam], (span, height), interpolation=interpolation
            ).astype(np.float32)
            cols = (np.arange(span) + k * tile_w - blend // 2) % total_w
            accum[:, cols] += tile * column_weight
            weights[:, cols] += column_weight

        strip = accum / np.maximum(weights, 1e-6)
        if total_w != width:
            strip = cv2.resize(strip, (width, height), interpolation=interpolation)

        rot_x, rot_y, _ = context.rotation
        # Yaw wraps horizontally around the full circle.
        shift_x = int(round(rot_y / (2.0 * math.pi) * width))
        if shift_x:
            strip = np.roll(strip, shift_x, axis=1)
        # Pitch shifts the view vertically over a 180 degree field.
        shift_y = int(round(rot_x / math.pi * height))
        if shift_y:
            matrix = np.float32([[1, 0, 0], [0, 1, -shift_y]])
            strip = cv2.warpAffine(
                strip, matrix, (width, height), borderMode=cv2.BORDER_REPLICATE
            )

        return np.clip(strip, 0, 255).astype(np.uint8)

    # --- Encoding ---

    def save_image(
        self,
        context: OpenCVContext,
        image: ProcessedImage,
        path: str | Path,
        file_format: ImageFileFormat,
    ) -> EngineResult[None]:
        data = image.data
        if image.pixel_format in (PixelFormat.BGRU, PixelFormat.BGRU16):
            data = data[..., :3]
        # JPEG and BMP are 8-bit only.
        if data.dtype == np.uint16 and file_format in (
            ImageFileFormat.JPG,
            ImageFileFormat.BMP,
        ):
            data = (data >> 8).astype(np.uint8)

        params: list[int] = []
        if file_format == ImageFileFormat.JPG:
            params = [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY]

        try:
            written = cv2.imwrite(str(path), np.ascontiguousarray(data), params)
        except cv2.error as e:
            return EngineResult.failure(EngineStatus.FAILED, str(e))
        if not written:
            return EngineResult.failure(EngineStatus.FAILED, f"Could not write {path}")
        return EngineResult.success()
