"""Shared pytest fixtures for LBExport tests."""

from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np
import pytest
import yaml

from lbexport.config import ColorMethod, ImageFileFormat
from lbexport.engine.protocol import (
    DataFormat,
    EngineResult,
    EngineStatus,
    OutputType,
    PixelFormat,
    ProcessedImage,
    RawFrame,
    StreamHeader,
)


class FakeEngine:
    """Scripted in-memory ImagingEngine for pipeline tests.

    Every call is recorded in ``calls``. ``fail`` maps a method name to the
    status it should return instead of OK. ``fail_read_frames`` lists frame
    indices whose read fails without advancing the stream, and
    ``fail_save_names`` lists output filenames whose save fails. Saved images
    are written as empty files, so saving into a missing directory fails
    just like a real encoder would.
    """

    def __init__(
        self,
        num_frames: int = 5,
        num_cameras: int = 6,
        cols: int = 32,
        rows: int = 24,
        data_format: DataFormat = DataFormat.RAW8,
        fail: dict[str, EngineStatus] | None = None,
        fail_read_frames: set[int] | None = None,
        fail_save_names: set[str] | None = None,
        with_config: bool = True,
    ):
        self.num_frames = num_frames
        self.num_cameras = num_cameras
        self.cols = cols
        self.rows = rows
        self.data_format = data_format
        self.fail = fail or {}
        self.fail_read_frames = fail_read_frames or set()
        self.fail_save_names = fail_save_names or set()
        self.with_config = with_config

        self.calls: list[tuple[str, tuple]] = []
        self.frames_read: list[int] = []
        self.saved: list[Path] = []
        self.position = 0
        self.contexts_destroyed = 0
        self.streams_closed = 0
        self.config_paths: list[Path] = []

    def _record(self, name: str, *args) -> EngineResult | None:
        self.calls.append((name, args))
        if name in self.fail:
            return EngineResult.failure(self.fail[name], f"{name} failed")
        return None

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def create_context(self):
        return self._record("create_context") or EngineResult.success(
            SimpleNamespace(textures=None, canvas=None, rotation=None)
        )

    def destroy_context(self, context):
        self.contexts_destroyed += 1
        return self._record("destroy_context") or EngineResult.success()

    def open_stream(self, path):
        return self._record("open_stream", path) or EngineResult.success(
            SimpleNamespace(path=path)
        )

    def close_stream(self, stream):
        self.streams_closed += 1
        return self._record("close_stream") or EngineResult.success()

    def extract_config(self, stream, dest):
        failed = self._record("extract_config", dest)
        if failed:
            return failed
        if not self.with_config:
            return EngineResult.failure(EngineStatus.NOT_FOUND, "no config")
        Path(dest).write_text("bayer_pattern: BG\n")
        return EngineResult.success()

    def load_config(self, context, path):
        self.config_paths.append(Path(path))
        failed = self._record("load_config", path)
        if failed:
            return failed
        assert Path(path).exists()
        return EngineResult.success()

    def read_header(self, stream):
        return self._record("read_header") or EngineResult.success(
            StreamHeader(
                serial_base=1234,
                serial_head=5678,
                frame_rate=15.0,
                data_format=self.data_format,
                resolution="test",
                stream_version=7,
                num_cameras=self.num_cameras,
                total_frames=self.num_frames,
            )
        )

    def seek(self, stream, index):
        failed = self._record("seek", index)
        if failed:
            return failed
        if not 0 <= index < self.num_frames:
            return EngineResult.failure(EngineStatus.OUT_OF_RANGE)
        self.position = index
        return EngineResult.success()

    def read_frame(self, stream):
        index = self.position
        failed = self._record("read_frame", index)
        if failed:
            return failed
        if index >= self.num_frames:
            return EngineResult.failure(EngineStatus.END_OF_STREAM)
        if index in self.fail_read_frames:
            return EngineResult.failure(EngineStatus.FAILED, f"corrupt frame {index}")
        self.position += 1
        self.frames_read.append(index)
        dtype = np.uint16 if self.data_format.is_high_bit_depth else np.uint8
        data = np.full((self.rows * self.num_cameras, self.cols), index, dtype=dtype)
        return EngineResult.success(
            RawFrame(
                index=index,
                data=data,
                cols=self.cols,
                rows=self.rows,
                data_format=self.data_format,
            )
        )

    def set_color_method(self, context, method: ColorMethod):
        return self._record("set_color_method", method) or EngineResult.success()

    def convert_frame(self, context, frame, buffers, pixel_format):
        failed = self._record("convert_frame", frame.index, pixel_format)
        if failed:
            return failed
        for cam, buf in enumerate(buffers):
            buf[...] = (frame.index * 10 + cam) % 256
        return EngineResult.success()

    def set_blending_width(self, context, width):
        return self._record("set_blending_width", width) or EngineResult.success()

    def initialize_alpha_masks(self, context, width, height):
        return (
            self._record("initialize_alpha_masks", width, height)
            or EngineResult.success()
        )

    def set_alpha_masking(self, context, enabled):
        return self._record("set_alpha_masking", enabled) or EngineResult.success()

    def set_falloff_correction(self, context, enabled, value):
        return (
            self._record("set_falloff_correction", enabled, value)
            or EngineResult.success()
        )

    def set_render_options(self, context, software_rendering, anti_aliasing, stabilization):
        return (
            self._record(
                "set_render_options", software_rendering, anti_aliasing, stabilization
            )
            or EngineResult.success()
        )

    def configure_output(self, context, output_type: OutputType, camera=None):
        return self._record("configure_output", output_type, camera) or EngineResult.success()

    def set_offscreen_size(self, context, width, height):
        failed = self._record("set_offscreen_size", width, height)
        if failed:
            return failed
        context.canvas = (width, height)
        return EngineResult.success()

    def set_rotation(self, context, rot_x, rot_y, rot_z):
        failed = self._record("set_rotation", rot_x, rot_y, rot_z)
        if failed:
            return failed
        context.rotation = (rot_x, rot_y, rot_z)
        return EngineResult.success()

    def update_textures(self, context, buffers, pixel_format):
        failed = self._record("update_textures", pixel_format)
        if failed:
            return failed
        context.textures = [b.copy() for b in buffers]
        return EngineResult.success()

    def render_offscreen(self, context, pixel_format):
        failed = self._record("render_offscreen", pixel_format)
        if failed:
            return failed
        width, height = context.canvas
        return EngineResult.success(
            ProcessedImage(
                data=np.zeros((height, width, 3), dtype=np.uint8),
                cols=width,
                rows=height,
                pixel_format=PixelFormat.BGR,
            )
        )

    def save_image(self, context, image, path, file_format: ImageFileFormat):
        path = Path(path)
        failed = self._record("save_image", path, file_format)
        if failed:
            return failed
        if path.name in self.fail_save_names:
            return EngineResult.failure(EngineStatus.FAILED, f"disk full: {path.name}")
        if not path.parent.is_dir():
            return EngineResult.failure(EngineStatus.NOT_FOUND, f"no directory {path.parent}")
        path.write_bytes(b"")
        self.saved.append(path)
        return EngineResult.success()


@pytest.fixture
def fake_engine():
    """FakeEngine with 5 frames of 6 cameras at 32x24."""
    return FakeEngine()


def write_stream_dir(
    stream_dir: Path,
    num_frames: int,
    num_cameras: int = 6,
    cols: int = 40,
    rows: int = 30,
    sidecar: dict | None = None,
    dtype=np.uint8,
) -> Path:
    """Write a PNG image-directory stream with vertically stacked cameras.

    Frame ``f`` camera ``c`` is a Bayer mosaic filled with a gradient offset
    by ``f`` and ``c`` so frames differ.
    """
    stream_dir.mkdir(parents=True, exist_ok=True)
    max_value = np.iinfo(dtype).max
    for f in range(num_frames):
        tiles = []
        for c in range(num_cameras):
            base = np.linspace(0, max_value, cols, dtype=np.float64)
            tile = np.tile(base, (rows, 1)) * (0.5 + 0.05 * c) + f
            tiles.append(np.clip(tile, 0, max_value).astype(dtype))
        cv2.imwrite(str(stream_dir / f"frame_{f:04d}.png"), np.vstack(tiles))
    if sidecar is not None:
        with open(stream_dir / "stream.yaml", "w") as fh:
            yaml.safe_dump(sidecar, fh)
    return stream_dir


@pytest.fixture
def stream_dir(tmp_path):
    """A 3-frame, 6-camera 8-bit Bayer stream stored as PNGs."""
    return write_stream_dir(
        tmp_path / "stream",
        num_frames=3,
        sidecar={"num_cameras": 6, "data_format": "RAW8", "serial_base": 42},
    )


@pytest.fixture
def make_engine():
    """Factory for FakeEngine instances with custom scripting."""
    return FakeEngine


@pytest.fixture
def make_stream_dir():
    """Factory writing PNG image-directory streams."""
    return write_stream_dir
