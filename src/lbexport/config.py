"""Configuration resolution for the LBExport pipeline.

Raw option strings (as they arrive from the command line) are turned into an
immutable, validated ``PipelineConfig``. Each parser either yields a typed
value or falls back to the documented default with a logged warning. The only
fatal condition at this stage is a missing source path.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PREFIX = "ladybugImageOutput"
DEFAULT_OUTPUT_WIDTH = 2048
DEFAULT_OUTPUT_HEIGHT = 1024
DEFAULT_BLENDING_WIDTH = 100

VALID_RENDER_TYPES = [
    "pano",
    "dome",
    "spherical",
    "rectify-0",
    "rectify-1",
    "rectify-2",
    "rectify-3",
    "rectify-4",
    "rectify-5",
]

# Case-insensitive; the value may follow directly after arbitrary text.
FRONT_PATTERN = re.compile(r"Front\s+(-?\d+\.?\d*)", re.IGNORECASE)
# The optional leading '-' belongs to the token, not to the value.
DOWN_PATTERN = re.compile(r"-?Down\s+(-?\d+\.?\d*)", re.IGNORECASE)


class ExportMode(str, Enum):
    """What gets written for each frame."""

    PANORAMA = "panorama"
    MULTI_CAMERA = "multi_camera"


class ColorMethod(str, Enum):
    """Debayering algorithms understood by the imaging engine.

    The downsampling family shrinks the output buffers: DOWNSAMPLE4 halves
    each dimension and DOWNSAMPLE16 quarters it.
    """

    HQ_LINEAR = "hq_linear"
    EDGE_SENSING = "edge_sensing"
    NEAREST_NEIGHBOR_FAST = "nearest_neighbor_fast"
    DOWNSAMPLE4 = "downsample4"
    DOWNSAMPLE16 = "downsample16"
    MONO = "mono"


class ImageFileFormat(str, Enum):
    """Output image encodings. The value doubles as the file extension."""

    BMP = "bmp"
    JPG = "jpg"
    TIFF = "tiff"
    PNG = "png"

    @property
    def extension(self) -> str:
        return self.value


COLOR_METHOD_TOKENS = {
    "hq": ColorMethod.HQ_LINEAR,
    "hq-gpu": ColorMethod.HQ_LINEAR,
    "edge": ColorMethod.EDGE_SENSING,
    "near": ColorMethod.NEAREST_NEIGHBOR_FAST,
    "near-f": ColorMethod.NEAREST_NEIGHBOR_FAST,
    "down4": ColorMethod.DOWNSAMPLE4,
    "down16": ColorMethod.DOWNSAMPLE16,
    "mono": ColorMethod.MONO,
}

FILE_FORMAT_TOKENS = {
    "bmp": ImageFileFormat.BMP,
    "jpg": ImageFileFormat.JPG,
    "jpeg": ImageFileFormat.JPG,
    "tiff": ImageFileFormat.TIFF,
    "png": ImageFileFormat.PNG,
}

MULTI_CAMERA_TOKEN = "6processed"


class FrameSelection(BaseModel):
    """Explicit inclusive, 0-based frame range requested by the user.

    Attributes:
        start: First frame index to export.
        end: Last frame index to export (inclusive).
    """

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)


@dataclass(frozen=True)
class FrameRange:
    """Frame range resolved against the stream length.

    Both ends lie in ``[0, total_frames - 1]``. ``start > end`` means there is
    nothing to export.
    """

    start: int
    end: int

    @property
    def count(self) -> int:
        return max(0, self.end - self.start + 1)

    def __iter__(self):
        return iter(range(self.start, self.end + 1))


def resolve_frame_range(
    selection: FrameSelection | None, total_frames: int
) -> FrameRange:
    """Clamp a frame selection to the stream's available frames.

    Args:
        selection: Requested range, or None to export every frame.
        total_frames: Number of frames in the stream (must be positive).

    Returns:
        FrameRange with both ends clamped to ``[0, total_frames - 1]``.

    Raises:
        ValueError: If total_frames is not positive.
    """
    if total_frames <= 0:
        raise ValueError(f"total_frames must be positive, got {total_frames}")

    last = total_frames - 1
    if selection is None:
        return FrameRange(start=0, end=last)

    start = min(selection.start, last)
    end = min(selection.end, last)
    if selection.start > last:
        logger.warning(
            "Requested start frame %d beyond stream end, clamping to %d",
            selection.start,
            last,
        )
    if selection.end > last:
        logger.info(
            "Requested end frame %d beyond stream end, clamping to %d",
            selection.end,
            last,
        )
    if start > end:
        logger.warning(
            "Frame range %d-%d is empty after clamping to stream length %d",
            selection.start,
            selection.end,
            total_frames,
        )
    return FrameRange(start=start, end=end)


class PipelineConfig(BaseModel):
    """Immutable configuration for one export run.

    Attributes:
        source_path: Path to the recorded multi-camera stream.
        output_prefix: Output directory. Files are written directly inside it.
        frame_range: Explicit frame selection, or None for all frames.
        output_width: Panoramic canvas width in pixels.
        output_height: Panoramic canvas height in pixels.
        export_mode: Panorama (stitched) or MultiCamera (one file per camera).
        render_type: Off-screen render type for panorama mode.
        file_format: Output image encoding.
        color_method: Debayering method.
        blending_width: Stitching overlap width in pixels.
        rotation_front: Mesh pitch in degrees ("Front").
        rotation_down: Mesh yaw in degrees ("Down").
        falloff_enabled: Enable light falloff correction.
        falloff_value: Falloff correction attenuation value.
        software_rendering: Render off-screen images in software.
        anti_aliasing: Enable anti-aliasing when rendering.
        stabilization: Enable image stabilization.

    Output dimensions, render type and rotation only apply to panorama mode.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    source_path: str
    output_prefix: str = DEFAULT_OUTPUT_PREFIX
    frame_range: FrameSelection | None = None

    output_width: int = Field(default=DEFAULT_OUTPUT_WIDTH, gt=0)
    output_height: int = Field(default=DEFAULT_OUTPUT_HEIGHT, gt=0)
    export_mode: ExportMode = ExportMode.PANORAMA
    render_type: str = "pano"
    file_format: ImageFileFormat = ImageFileFormat.JPG
    color_method: ColorMethod = ColorMethod.HQ_LINEAR

    blending_width: int = Field(default=DEFAULT_BLENDING_WIDTH, ge=0)
    rotation_front: float = 0.0
    rotation_down: float = 0.0

    falloff_enabled: bool = False
    falloff_value: float = 1.0
    software_rendering: bool = False
    anti_aliasing: bool = False
    stabilization: bool = False

    @field_validator("source_path")
    @classmethod
    def validate_source_path(cls, v: str) -> str:
        """Reject an empty source path."""
        if not v or not v.strip():
            raise ValueError("source_path must not be empty")
        return v

    @field_validator("render_type")
    @classmethod
    def validate_render_type(cls, v: str) -> str:
        """Validate that render_type is known."""
        if v not in VALID_RENDER_TYPES:
            raise ValueError(
                f"Invalid render type: {v!r}. Valid types: {VALID_RENDER_TYPES}"
            )
        return v

    @model_validator(mode="after")
    def warn_ignored_fields(self) -> "PipelineConfig":
        """Warn about unknown keys and settings the export mode ignores."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PipelineConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        if self.export_mode == ExportMode.MULTI_CAMERA and (
            self.rotation_front != 0.0 or self.rotation_down != 0.0
        ):
            logger.warning(
                "Rotation (Front %.1f, Down %.1f) is ignored in multi-camera mode",
                self.rotation_front,
                self.rotation_down,
            )
        return self

    @property
    def output_dir(self) -> Path:
        """The output prefix interpreted as a directory."""
        return Path(self.output_prefix)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML file.

        Returns:
            Validated PipelineConfig.

        Raises:
            ConfigError: If the file is not a mapping or fails validation.
        """
        data = load_config_mapping(path)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(
                f"Configuration validation failed:\n{format_validation_errors(e)}"
            ) from None

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file, defaults included.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def load_config_mapping(path: str | Path) -> dict[str, Any]:
    """Read a YAML config file as an unvalidated mapping.

    The mapping may be partial; it is validated once merged with the
    command-line options.

    Raises:
        ConfigError: If the file does not contain a YAML mapping.
    """
    path = Path(path)
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file {path} is not valid YAML: {e}") from None

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a YAML mapping")
    return data


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with dotted field paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        One line per error, ``  path: message``.
    """
    lines = []
    for err in error.errors():
        path = ".".join(str(part) for part in err["loc"])
        lines.append(f"  {path}: {err['msg']}")
    return "\n".join(lines)


# --- Option value parsers ---


def parse_resolution(text: str) -> tuple[int, int] | None:
    """Parse a ``"WIDTHxHEIGHT"`` string.

    Splits on the first ``x`` (falling back to the first ``X``).

    Returns:
        (width, height) with both positive, or None if malformed.
    """
    pos = text.find("x")
    if pos < 0:
        pos = text.find("X")
    if pos < 0:
        return None

    try:
        width = int(text[:pos])
        height = int(text[pos + 1 :])
    except ValueError:
        return None

    if width <= 0 or height <= 0:
        return None
    return width, height


def parse_frame_range(text: str) -> FrameSelection | None:
    """Parse a ``"start-end"`` frame range.

    Returns:
        FrameSelection, or None if either half is not a non-negative integer.
    """
    pos = text.find("-")
    if pos < 0:
        return None

    try:
        start = int(text[:pos])
        end = int(text[pos + 1 :])
    except ValueError:
        return None

    if start < 0 or end < 0:
        return None
    return FrameSelection(start=start, end=end)


def parse_rotation(text: str) -> tuple[float, float]:
    """Parse a ``"Front <deg> -Down <deg>"`` rotation string.

    Lenient: each component is searched for independently and a missing
    component is 0.0. Text that matches neither token yields (0.0, 0.0).

    Returns:
        (front, down) in degrees.
    """
    front = 0.0
    down = 0.0

    match = FRONT_PATTERN.search(text)
    if match:
        front = float(match.group(1))

    match = DOWN_PATTERN.search(text)
    if match:
        down = float(match.group(1))

    return front, down


def parse_bool(text: str) -> bool:
    """True iff the value begins with ``true`` (case-insensitive)."""
    return text[:4].lower() == "true"


def resolve_color_method(token: str) -> ColorMethod:
    """Map a color-processing token to a ColorMethod (default: HQ linear)."""
    method = COLOR_METHOD_TOKENS.get(token.lower())
    if method is None:
        logger.warning(
            "Unknown color processing method '%s', using high quality linear",
            token,
        )
        return ColorMethod.HQ_LINEAR
    return method


def resolve_file_format(token: str) -> ImageFileFormat:
    """Map a format token to an ImageFileFormat (default: JPEG)."""
    file_format = FILE_FORMAT_TOKENS.get(token.lower())
    if file_format is None:
        logger.warning("Unknown output format '%s', using jpg", token)
        return ImageFileFormat.JPG
    return file_format


def resolve_export_mode(token: str) -> ExportMode:
    """Map an export-type token to an ExportMode (default: panorama)."""
    if token[: len(MULTI_CAMERA_TOKEN)].lower() == MULTI_CAMERA_TOKEN:
        return ExportMode.MULTI_CAMERA
    if token:
        logger.warning(
            "Unknown export type '%s'. Use '%s'.", token, MULTI_CAMERA_TOKEN
        )
    return ExportMode.PANORAMA


def resolve_render_type(token: str) -> str:
    """Validate a render type token (default: pano)."""
    if token in VALID_RENDER_TYPES:
        return token
    logger.warning("Unknown render type '%s', using pano", token)
    return "pano"


@dataclass
class RawOptions:
    """Unparsed option values, one field per command-line flag.

    None means the option was not given.
    """

    source_path: str | None = None  # -i
    output_prefix: str | None = None  # -o
    frame_range: str | None = None  # -r
    resolution: str | None = None  # -w
    render_type: str | None = None  # -t
    file_format: str | None = None  # -f
    color_method: str | None = None  # -c
    blending_width: str | None = None  # -b
    software_rendering: str | None = None  # -s
    anti_aliasing: str | None = None  # -k
    falloff_enabled: str | None = None  # -a
    stabilization: str | None = None  # -z
    export_type: str | None = None  # -x
    rotation: str | None = None  # -q
    falloff_value: str | None = None  # -v


def resolve_config(
    raw: RawOptions, base: dict[str, Any] | None = None
) -> PipelineConfig:
    """Resolve raw option strings into a PipelineConfig.

    Malformed values keep the default (or the base value) and log a warning.
    The merged values are validated exactly once.

    Args:
        raw: Unparsed option values.
        base: Optional partial config mapping (e.g. from
            load_config_mapping()) supplying values for options not given.

    Returns:
        Validated, immutable PipelineConfig.

    Raises:
        ConfigError: If no source path is given, or the result fails
            validation.
    """
    values: dict[str, Any] = dict(base) if base is not None else {}

    source_path = raw.source_path if raw.source_path is not None else str(
        values.get("source_path") or ""
    )
    if not source_path.strip():
        raise ConfigError("Input file not specified. Use -i <file>")
    values["source_path"] = source_path

    if raw.output_prefix:
        values["output_prefix"] = raw.output_prefix
    elif not values.get("output_prefix"):
        values["output_prefix"] = DEFAULT_OUTPUT_PREFIX

    if raw.frame_range is not None:
        selection = parse_frame_range(raw.frame_range)
        if selection is None:
            logger.warning(
                "Invalid frame range '%s'. Processing all frames.", raw.frame_range
            )
        values["frame_range"] = selection

    if raw.resolution is not None:
        size = parse_resolution(raw.resolution)
        if size is None:
            logger.warning("Invalid resolution '%s'. Using default.", raw.resolution)
        else:
            values["output_width"], values["output_height"] = size

    if raw.render_type is not None:
        values["render_type"] = resolve_render_type(raw.render_type)
    if raw.file_format is not None:
        values["file_format"] = resolve_file_format(raw.file_format)
    if raw.color_method is not None:
        values["color_method"] = resolve_color_method(raw.color_method)

    if raw.blending_width is not None:
        try:
            width = int(raw.blending_width)
        except ValueError:
            width = -1
        if width < 0:
            logger.warning(
                "Invalid blending width '%s'. Using default.", raw.blending_width
            )
        else:
            values["blending_width"] = width

    if raw.falloff_value is not None:
        try:
            values["falloff_value"] = float(raw.falloff_value)
        except ValueError:
            logger.warning(
                "Invalid falloff value '%s'. Using default.", raw.falloff_value
            )

    for field in ("software_rendering", "anti_aliasing", "falloff_enabled", "stabilization"):
        text = getattr(raw, field)
        if text is not None:
            values[field] = parse_bool(text)

    if raw.export_type is not None:
        values["export_mode"] = resolve_export_mode(raw.export_type)

    if raw.rotation is not None:
        values["rotation_front"], values["rotation_down"] = parse_rotation(
            raw.rotation
        )

    try:
        return PipelineConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigError(
            f"Configuration validation failed:\n{format_validation_errors(e)}"
        ) from None
