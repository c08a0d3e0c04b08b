"""Tests for OpenCVEngine against small on-disk streams."""

import math

import cv2
import numpy as np
import pytest
import yaml

from lbexport.config import ColorMethod, ImageFileFormat
from lbexport.engine import (
    DataFormat,
    EngineStatus,
    OpenCVEngine,
    OutputType,
    PixelFormat,
    ProcessedImage,
)


@pytest.fixture
def engine():
    return OpenCVEngine()


@pytest.fixture
def context(engine):
    return engine.create_context().value


@pytest.fixture
def opened(engine, stream_dir):
    """Stream handle for the 3-frame fixture stream."""
    stream = engine.open_stream(stream_dir).value
    yield stream
    engine.close_stream(stream)


def _buffers(num, width, height, dtype=np.uint8):
    return [np.zeros((height, width, 4), dtype=dtype) for _ in range(num)]


class TestOpenStream:
    def test_missing_path(self, engine, tmp_path):
        result = engine.open_stream(tmp_path / "nothing.avi")
        assert result.status == EngineStatus.NOT_FOUND

    def test_header_from_sidecar(self, engine, opened):
        header = engine.read_header(opened).value
        assert header.total_frames == 3
        assert header.num_cameras == 6
        assert header.serial_base == 42
        assert header.data_format == DataFormat.RAW8
        assert header.stream_version == 7

    def test_defaults_without_sidecar(self, engine, make_stream_dir, tmp_path):
        stream_dir = make_stream_dir(tmp_path / "bare", num_frames=1)
        stream = engine.open_stream(stream_dir).value

        header = engine.read_header(stream).value
        assert header.num_cameras == 6
        assert header.data_format == DataFormat.RAW8
        assert engine.extract_config(stream, tmp_path / "cfg").status == (
            EngineStatus.NOT_FOUND
        )

    def test_old_stream_version_truncates_frame_rate(
        self, engine, make_stream_dir, tmp_path
    ):
        stream_dir = make_stream_dir(
            tmp_path / "old",
            num_frames=1,
            sidecar={"stream_version": 5, "frame_rate": 15.7},
        )
        header = engine.read_header(engine.open_stream(stream_dir).value).value
        assert header.frame_rate == 15.0

    def test_invalid_camera_count(self, engine, make_stream_dir, tmp_path):
        stream_dir = make_stream_dir(
            tmp_path / "s", num_frames=1, sidecar={"num_cameras": 0}
        )
        result = engine.open_stream(stream_dir)
        assert result.status == EngineStatus.INVALID_ARGUMENT


class TestConfig:
    def test_extract_and_load(self, engine, context, opened, tmp_path):
        dest = tmp_path / "cfg.cal"
        assert engine.extract_config(opened, dest).ok
        assert yaml.safe_load(dest.read_text())["serial_base"] == 42
        assert engine.load_config(context, dest).ok
        assert context.bayer_pattern == "BG"

    def test_invalid_bayer_pattern(self, engine, context, tmp_path):
        path = tmp_path / "cfg.cal"
        path.write_text("bayer_pattern: XY\n")
        result = engine.load_config(context, path)
        assert result.status == EngineStatus.INVALID_ARGUMENT


class TestFrameAccess:
    def test_sequential_reads(self, engine, opened):
        first = engine.read_frame(opened).value
        second = engine.read_frame(opened).value
        assert (first.index, second.index) == (0, 1)
        assert (first.cols, first.rows) == (40, 30)
        assert first.data.shape == (180, 40)

    def test_seek(self, engine, opened):
        assert engine.seek(opened, 2).ok
        assert engine.read_frame(opened).value.index == 2
        assert engine.read_frame(opened).status == EngineStatus.END_OF_STREAM

    def test_seek_out_of_range(self, engine, opened):
        assert engine.seek(opened, 3).status == EngineStatus.OUT_OF_RANGE
        assert engine.seek(opened, -1).status == EngineStatus.OUT_OF_RANGE

    def test_frame_not_divisible_by_cameras(self, engine, make_stream_dir, tmp_path):
        stream_dir = make_stream_dir(
            tmp_path / "s", num_frames=1, sidecar={"num_cameras": 7}
        )
        stream = engine.open_stream(stream_dir).value
        result = engine.read_frame(stream)
        assert result.status == EngineStatus.INVALID_ARGUMENT


class TestConvertFrame:
    @pytest.mark.parametrize(
        "method",
        [
            ColorMethod.HQ_LINEAR,
            ColorMethod.EDGE_SENSING,
            ColorMethod.NEAREST_NEIGHBOR_FAST,
            ColorMethod.MONO,
        ],
    )
    def test_full_size(self, engine, context, opened, method):
        engine.set_color_method(context, method)
        frame = engine.read_frame(opened).value
        buffers = _buffers(6, 40, 30)

        assert engine.convert_frame(context, frame, buffers, PixelFormat.BGRU).ok
        assert all((b[..., 3] == 255).all() for b in buffers)
        assert any(b[..., :3].any() for b in buffers)

    def test_mono_is_gray(self, engine, context, opened):
        engine.set_color_method(context, ColorMethod.MONO)
        frame = engine.read_frame(opened).value
        buffers = _buffers(6, 40, 30)
        engine.convert_frame(context, frame, buffers, PixelFormat.BGRU)
        bgr = buffers[0][..., :3]
        assert (bgr[..., 0] == bgr[..., 1]).all()
        assert (bgr[..., 1] == bgr[..., 2]).all()

    def test_downsample(self, engine, context, opened):
        engine.set_color_method(context, ColorMethod.DOWNSAMPLE4)
        frame = engine.read_frame(opened).value
        buffers = _buffers(6, 20, 15)
        assert engine.convert_frame(context, frame, buffers, PixelFormat.BGRU).ok

    def test_size_mismatch(self, engine, context, opened):
        frame = engine.read_frame(opened).value
        result = engine.convert_frame(
            context, frame, _buffers(6, 10, 10), PixelFormat.BGRU
        )
        assert result.status == EngineStatus.INVALID_ARGUMENT

    def test_wrong_buffer_count(self, engine, context, opened):
        frame = engine.read_frame(opened).value
        result = engine.convert_frame(
            context, frame, _buffers(5, 40, 30), PixelFormat.BGRU
        )
        assert result.status == EngineStatus.INVALID_ARGUMENT

    def test_8bit_into_16bit_buffers(self, engine, context, opened):
        frame = engine.read_frame(opened).value
        buffers = _buffers(6, 40, 30, dtype=np.uint16)
        assert engine.convert_frame(context, frame, buffers, PixelFormat.BGRU16).ok
        assert (buffers[0][..., 3] == 65535).all()

    def test_alpha_mask_applied(self, engine, context, opened):
        engine.set_blending_width(context, 10)
        engine.initialize_alpha_masks(context, 40, 30)
        assert engine.set_alpha_masking(context, True).ok
        frame = engine.read_frame(opened).value
        buffers = _buffers(6, 40, 30)

        engine.convert_frame(context, frame, buffers, PixelFormat.BGRU)

        alpha = buffers[0][..., 3]
        assert alpha[0, 0] == 0
        assert alpha[0, 20] == 255


class TestBlendingAndRenderSetup:
    def test_alpha_masking_requires_masks(self, engine, context):
        result = engine.set_alpha_masking(context, True)
        assert result.status == EngineStatus.NOT_INITIALIZED

    def test_falloff_not_supported(self, engine, context):
        assert engine.set_falloff_correction(context, False, 1.0).ok
        result = engine.set_falloff_correction(context, True, 1.0)
        assert result.status == EngineStatus.NOT_SUPPORTED

    def test_negative_blending_width(self, engine, context):
        assert not engine.set_blending_width(context, -1).ok

    def test_roll_not_supported(self, engine, context):
        assert engine.set_rotation(context, 0.1, 0.2, 0.0).ok
        assert not engine.set_rotation(context, 0.0, 0.0, 0.3).ok

    def test_rectified_needs_camera(self, engine, context):
        assert not engine.configure_output(context, OutputType.RECTIFIED).ok
        assert engine.configure_output(context, OutputType.RECTIFIED, 2).ok


class TestRender:
    def _prepared(self, engine, context, output_type=OutputType.PANORAMIC, camera=None):
        engine.configure_output(context, output_type, camera)
        engine.set_offscreen_size(context, 120, 60)
        textures = []
        for cam in range(6):
            buf = np.zeros((30, 40, 4), dtype=np.uint8)
            buf[..., :3] = 40 * cam
            textures.append(buf)
        assert engine.update_textures(context, textures, PixelFormat.BGRU).ok

    def test_panorama_size(self, engine, context):
        self._prepared(engine, context)
        result = engine.render_offscreen(context, PixelFormat.BGR)
        assert result.ok
        assert result.value.data.shape == (60, 120, 3)
        assert result.value.data.dtype == np.uint8

    def test_yaw_rolls_panorama(self, engine, context):
        self._prepared(engine, context)
        base = engine.render_offscreen(context, PixelFormat.BGR).value.data
        engine.set_rotation(context, 0.0, math.pi / 2, 0.0)
        rotated = engine.render_offscreen(context, PixelFormat.BGR).value.data
        assert np.array_equal(rotated, np.roll(base, 30, axis=1))

    def test_rectified_single_camera(self, engine, context):
        self._prepared(engine, context, OutputType.RECTIFIED, 3)
        image = engine.render_offscreen(context, PixelFormat.BGR).value.data
        assert (image == 120).all()

    def test_not_configured(self, engine, context):
        result = engine.render_offscreen(context, PixelFormat.BGR)
        assert result.status == EngineStatus.NOT_INITIALIZED

    def test_only_bgr(self, engine, context):
        self._prepared(engine, context)
        result = engine.render_offscreen(context, PixelFormat.BGRU)
        assert result.status == EngineStatus.NOT_SUPPORTED


class TestSaveImage:
    def test_writes_bgru_as_color(self, engine, context, tmp_path):
        data = np.zeros((8, 8, 4), dtype=np.uint8)
        data[..., 2] = 200
        image = ProcessedImage(data=data, cols=8, rows=8, pixel_format=PixelFormat.BGRU)
        path = tmp_path / "cam.png"

        assert engine.save_image(context, image, path, ImageFileFormat.PNG).ok
        loaded = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        assert loaded.shape == (8, 8, 3)
        assert (loaded[..., 2] == 200).all()

    def test_16bit_png_keeps_depth(self, engine, context, tmp_path):
        data = np.full((8, 8, 4), 1000, dtype=np.uint16)
        image = ProcessedImage(
            data=data, cols=8, rows=8, pixel_format=PixelFormat.BGRU16
        )
        path = tmp_path / "cam.png"
        assert engine.save_image(context, image, path, ImageFileFormat.PNG).ok
        assert cv2.imread(str(path), cv2.IMREAD_UNCHANGED).dtype == np.uint16

    def test_16bit_jpg_is_reduced(self, engine, context, tmp_path):
        data = np.full((8, 8, 4), 1000, dtype=np.uint16)
        image = ProcessedImage(
            data=data, cols=8, rows=8, pixel_format=PixelFormat.BGRU16
        )
        path = tmp_path / "cam.jpg"
        assert engine.save_image(context, image, path, ImageFileFormat.JPG).ok
        assert path.exists()

    def test_missing_directory_fails(self, engine, context, tmp_path):
        image = ProcessedImage(
            data=np.zeros((8, 8, 3), dtype=np.uint8),
            cols=8,
            rows=8,
            pixel_format=PixelFormat.BGR,
        )
        result = engine.save_image(
            context, image, tmp_path / "missing" / "x.jpg", ImageFileFormat.JPG
        )
        assert result.status == EngineStatus.FAILED
