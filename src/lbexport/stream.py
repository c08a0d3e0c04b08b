"""Stream session: owns the engine context, stream handle and seek position."""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .engine.protocol import EngineResult, ImagingEngine, RawFrame, StreamHeader
from .errors import FatalInitError

logger = logging.getLogger(__name__)

CONFIG_TEMP_PREFIX = "lb_cfg_"


@contextmanager
def extracted_config(engine: ImagingEngine, stream: Any) -> Iterator[Path | None]:
    """Extract the stream's embedded configuration to a temporary file.

    The file is removed when the block exits, on success or failure.

    Yields:
        Path of the extracted file, or None if the stream carries no
        configuration or no temporary file could be created (logged as a
        warning).
    """
    try:
        fd, name = tempfile.mkstemp(prefix=CONFIG_TEMP_PREFIX, suffix=".cal")
    except OSError as e:
        logger.warning("Could not create temporary config file: %s", e)
        yield None
        return

    os.close(fd)
    path = Path(name)
    try:
        result = engine.extract_config(stream, path)
        if result.ok:
            yield path
        else:
            logger.warning("Could not extract config file: %s", result.describe())
            yield None
    finally:
        path.unlink(missing_ok=True)


class StreamSession:
    """Open stream plus the engine context that processes it.

    Created with ``open()``, which performs every fatal initialization step
    up to and including the header read. Use as a context manager to make
    sure the stream and context are released.

    Attributes:
        engine: Imaging engine the session talks to.
        context: Engine processing context.
        stream: Engine stream handle.
        header: Static stream header.
        position: Index of the frame the next read returns, or None after a
            failed read until the next seek.
    """

    def __init__(
        self, engine: ImagingEngine, context: Any, stream: Any, header: StreamHeader
    ):
        self.engine = engine
        self.context = context
        self.stream = stream
        self.header = header
        self.position: int | None = 0
        self._closed = False

    @classmethod
    def open(cls, engine: ImagingEngine, source_path: str | Path) -> "StreamSession":
        """Create a context, open the stream and load its header.

        Raises:
            FatalInitError: If any step fails. Resources acquired before the
                failure are released.
        """
        logger.info("Initializing imaging engine...")
        result = engine.create_context()
        if not result.ok:
            raise FatalInitError(f"Could not create context: {result.describe()}")
        context = result.value

        stream = None
        try:
            logger.info("Opening stream file: %s", source_path)
            result = engine.open_stream(source_path)
            if not result.ok:
                raise FatalInitError(
                    f"Could not open stream {source_path}: {result.describe()}"
                )
            stream = result.value

            with extracted_config(engine, stream) as config_path:
                if config_path is not None:
                    result = engine.load_config(context, config_path)
                    if not result.ok:
                        raise FatalInitError(
                            f"Could not load stream config: {result.describe()}"
                        )

            result = engine.read_header(stream)
            if not result.ok:
                raise FatalInitError(
                    f"Could not read stream header: {result.describe()}"
                )
            header = result.value
        except BaseException:
            if stream is not None:
                engine.close_stream(stream)
            engine.destroy_context(context)
            raise

        session = cls(engine, context, stream, header)
        session.log_header()
        return session

    @property
    def total_frames(self) -> int:
        return self.header.total_frames

    @property
    def high_bit_depth(self) -> bool:
        return self.header.data_format.is_high_bit_depth

    def log_header(self) -> None:
        """Log the stream information block."""
        header = self.header
        logger.info("--- Stream Information ---")
        logger.info("Base S/N: %d", header.serial_base)
        logger.info("Head S/N: %d", header.serial_head)
        logger.info("Frame rate: %.2f", header.frame_rate)
        logger.info("Data format: %s", header.data_format.value)
        logger.info("Resolution: %s", header.resolution)
        logger.info("Stream version: %d", header.stream_version)
        logger.info("Cameras: %d, frames: %d", header.num_cameras, header.total_frames)
        if self.high_bit_depth:
            logger.info("Detected high bit depth format (12/16-bit)")

    def seek(self, index: int) -> EngineResult[None]:
        """Position the stream at frame ``index``."""
        result = self.engine.seek(self.stream, index)
        if result.ok:
            self.position = index
        else:
            self.position = None
        return result

    def read_next(self) -> EngineResult[RawFrame]:
        """Read the frame at the current position.

        On success the position advances by one. On failure it becomes
        unknown (None) until the next seek.
        """
        result = self.engine.read_frame(self.stream)
        if result.ok:
            self.position = result.value.index + 1
        else:
            self.position = None
        return result

    def close(self) -> None:
        """Close the stream and destroy the context. Idempotent."""
        if self._closed:
            return
        self._closed = True
        result = self.engine.close_stream(self.stream)
        if not result.ok:
            logger.warning("Could not close stream: %s", result.describe())
        result = self.engine.destroy_context(self.context)
        if not result.ok:
            logger.warning("Could not destroy context: %s", result.describe())

    def __enter__(self) -> "StreamSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
