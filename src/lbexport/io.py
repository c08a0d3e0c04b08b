"""Filesystem helpers: output directories and frame sources for stream files."""

import logging
from pathlib import Path

import cv2
import numpy as np

from .errors import FatalInitError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.bmp", "*.pgm")


def ensure_output_directory(path: str | Path) -> Path:
    """Create ``path`` and any missing parents.

    Idempotent: an existing directory is not an error. The path is always
    treated as a directory, never as a filename stem.

    Args:
        path: Output directory.

    Returns:
        The directory as a Path.

    Raises:
        FatalInitError: If the path exists as a non-directory or cannot be
            created.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError) as e:
        raise FatalInitError(
            f"Output path exists and is not a directory: {path}"
        ) from e
    except OSError as e:
        raise FatalInitError(f"Could not create output directory {path}: {e}") from e

    logger.debug("Output directory ready: %s", path)
    return path


def detect_input_type(path: str | Path) -> str:
    """Detect whether a stream path is an image directory or a video file.

    Args:
        path: Stream path.

    Returns:
        "images" for a directory, "video" for a file.

    Raises:
        FileNotFoundError: If the path does not exist.
    """
    path = Path(path)
    if path.is_dir():
        return "images"
    if path.is_file():
        return "video"
    raise FileNotFoundError(f"Stream not found: {path}")


class ImageDirectoryReader:
    """Random-access frame reader over a directory of frame images.

    Frames are the image files in the directory sorted by filename. Images
    are read unchanged, so 16-bit PNG/TIFF frames keep their depth.

    Args:
        image_dir: Directory containing one image per frame.

    Raises:
        ValueError: If the directory contains no images.
    """

    def __init__(self, image_dir: str | Path):
        self.image_dir = Path(image_dir)

        files: list[Path] = []
        for ext in IMAGE_EXTENSIONS:
            files.extend(self.image_dir.glob(ext))
        if not files:
            raise ValueError(f"No images found in directory: {self.image_dir}")

        self.frame_files = sorted(set(files), key=lambda p: p.name)
        logger.info(
            "Detected %d frames in %s (image directory input)",
            len(self.frame_files),
            self.image_dir,
        )

    @property
    def frame_count(self) -> int:
        """Total number of frames available."""
        return len(self.frame_files)

    @property
    def fps(self) -> float | None:
        """Image directories carry no frame rate."""
        return None

    def read(self, index: int) -> np.ndarray | None:
        """Read frame ``index``, or None if it cannot be decoded."""
        if not 0 <= index < len(self.frame_files):
            return None
        img_path = self.frame_files[index]
        img = cv2.imread(str(img_path), cv2.IMREAD_UNCHANGED)
        if img is None:
            logger.warning("Failed to read image: %s (frame %d)", img_path, index)
        return img

    def close(self) -> None:
        """No resources to release."""


class VideoFileReader:
    """Random-access frame reader over a video file via cv2.VideoCapture.

    Sequential reads avoid seeking; a read at any other index seeks first.

    Args:
        video_path: Video file path.

    Raises:
        RuntimeError: If the video cannot be opened.
    """

    def __init__(self, video_path: str | Path):
        self.video_path = Path(video_path)
        self._cap = cv2.VideoCapture(str(self.video_path))
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open video: {self.video_path}")

        self._frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self._fps = float(self._cap.get(cv2.CAP_PROP_FPS))
        self._next_index = 0
        logger.info(
            "Opened %s: %d frames @ %.1f fps",
            self.video_path.name,
            self._frame_count,
            self._fps,
        )

    @property
    def frame_count(self) -> int:
        """Total number of frames reported by the container."""
        return self._frame_count

    @property
    def fps(self) -> float | None:
        return self._fps or None

    def read(self, index: int) -> np.ndarray | None:
        """Read frame ``index``, or None if it cannot be decoded."""
        if not 0 <= index < self._frame_count:
            return None
        if index != self._next_index:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, index)
        ok, frame = self._cap.read()
        if not ok:
            logger.warning("Failed to decode frame %d of %s", index, self.video_path)
            self._next_index = -1
            return None
        self._next_index = index + 1
        return frame

    def close(self) -> None:
        """Release the capture handle."""
        self._cap.release()
