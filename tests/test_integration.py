"""End-to-end export runs with the OpenCV engine on small PNG streams."""

from pathlib import Path

import cv2
import numpy as np
import pytest

from lbexport import Pipeline, PipelineConfig, run_pipeline
from lbexport.cli import main
from lbexport.config import ColorMethod, ExportMode, FrameSelection, ImageFileFormat


def test_multi_camera_export(stream_dir: Path, tmp_path: Path):
    """Three frames of six cameras produce eighteen files."""
    out = tmp_path / "out"
    config = PipelineConfig(
        source_path=str(stream_dir),
        output_prefix=str(out),
        export_mode=ExportMode.MULTI_CAMERA,
        file_format=ImageFileFormat.PNG,
    )

    summary = run_pipeline(config, progress=False)

    assert summary.complete
    names = sorted(p.name for p in out.iterdir())
    assert len(names) == 18
    assert names[0] == "000000_cam0.png"
    assert names[-1] == "000002_cam5.png"
    image = cv2.imread(str(out / "000001_cam3.png"), cv2.IMREAD_UNCHANGED)
    assert image.shape == (30, 40, 3)


def test_panorama_export(stream_dir: Path, tmp_path: Path):
    out = tmp_path / "pano"
    config = PipelineConfig(
        source_path=str(stream_dir),
        output_prefix=str(out),
        output_width=160,
        output_height=80,
        rotation_down=30.0,
    )

    summary = Pipeline(config).run(progress=False)

    assert summary.complete
    assert sorted(p.name for p in out.iterdir()) == [
        "000000.jpg",
        "000001.jpg",
        "000002.jpg",
    ]
    image = cv2.imread(str(out / "000002.jpg"))
    assert image.shape == (80, 160, 3)


def test_downsampled_frame_range(stream_dir: Path, tmp_path: Path):
    out = tmp_path / "down"
    config = PipelineConfig(
        source_path=str(stream_dir),
        output_prefix=str(out),
        export_mode=ExportMode.MULTI_CAMERA,
        file_format=ImageFileFormat.PNG,
        color_method=ColorMethod.DOWNSAMPLE4,
        frame_range=FrameSelection(start=1, end=1),
    )

    summary = run_pipeline(config, progress=False)

    assert [r.frame_idx for r in summary.results] == [1]
    image = cv2.imread(str(out / "000001_cam0.png"))
    assert image.shape == (15, 20, 3)


def test_16bit_stream_keeps_depth(make_stream_dir, tmp_path: Path):
    stream = make_stream_dir(
        tmp_path / "deep",
        num_frames=1,
        num_cameras=6,
        dtype=np.uint16,
        sidecar={"data_format": "RAW16"},
    )
    out = tmp_path / "out"
    config = PipelineConfig(
        source_path=str(stream),
        output_prefix=str(out),
        export_mode=ExportMode.MULTI_CAMERA,
        file_format=ImageFileFormat.PNG,
    )

    run_pipeline(config, progress=False)

    image = cv2.imread(str(out / "000000_cam0.png"), cv2.IMREAD_UNCHANGED)
    assert image.dtype == np.uint16


def test_cli_end_to_end(stream_dir: Path, tmp_path: Path):
    out = tmp_path / "cli_out"
    with pytest.raises(SystemExit) as exc_info:
        main(["-i", str(stream_dir), "-o", str(out), "-x", "6processed", "-r", "0-1"])

    assert exc_info.value.code == 0
    assert len(list(out.glob("*_cam*.jpg"))) == 12


def test_cli_missing_stream(tmp_path: Path, capsys):
    out = tmp_path / "never"
    with pytest.raises(SystemExit) as exc_info:
        main(["-i", str(tmp_path / "missing.avi"), "-o", str(out)])

    assert exc_info.value.code == 1
    assert "Failed to initialize" in capsys.readouterr().err
    assert not out.exists()
