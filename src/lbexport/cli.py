"""Command-line interface for LBExport.

Flags follow ladybugProcessStream: every option takes exactly one value,
malformed values fall back to their defaults with a warning, and unknown
flags are reported and skipped.
"""

import argparse
import logging
import sys
from pathlib import Path

from lbexport.config import (
    DEFAULT_OUTPUT_PREFIX,
    ExportMode,
    PipelineConfig,
    RawOptions,
    load_config_mapping,
    resolve_config,
)
from lbexport.errors import ConfigError, LBExportError
from lbexport.export import ExportStatus

logger = logging.getLogger(__name__)

EXAMPLES = """\
examples:
  lbexport -i stream.pgr -o output -t pano -f jpg -c hq
        Process stream and export panoramic JPG images.

  lbexport -i stream.pgr -o output -x 6processed -f jpg -c hq
        Export all 6 processed camera images as JPG.

  lbexport -i stream.pgr -o output -t pano -q "Front 5 -Down 0" -f jpg
        Export panorama with Front=5 degrees pitch rotation.
"""


class _OptionParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors as configuration errors."""

    def error(self, message):
        raise ConfigError(message)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = _OptionParser(
        prog="lbexport",
        description="Export panoramic or per-camera images from a recorded multi-camera stream.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "-?", "-h", "--help", action="help", help="Show this help message and exit"
    )
    parser.add_argument(
        "-i", dest="source_path", metavar="STREAM_PATH", help="Stream file to process"
    )
    parser.add_argument(
        "-o",
        dest="output_prefix",
        metavar="OUTPUT_PATH",
        help=f"Output directory (default: {DEFAULT_OUTPUT_PREFIX})",
    )
    parser.add_argument(
        "-r",
        dest="frame_range",
        metavar="NNN-NNN",
        help="Frame range to process; the first frame is 0 (default: all frames)",
    )
    parser.add_argument(
        "-w",
        dest="resolution",
        metavar="WxH",
        help="Output image size in pixels (default: 2048x1024)",
    )
    parser.add_argument(
        "-t",
        dest="render_type",
        metavar="RENDER_TYPE",
        help="pano (default), dome, spherical, rectify-0 .. rectify-5",
    )
    parser.add_argument(
        "-f", dest="file_format", metavar="FORMAT", help="bmp, jpg (default), tiff, png"
    )
    parser.add_argument(
        "-c",
        dest="color_method",
        metavar="COLOR_PROCESS",
        help="hq (default), hq-gpu, edge, near, near-f, down4, down16, mono",
    )
    parser.add_argument(
        "-b", dest="blending_width", metavar="NNN", help="Blending width in pixels (default: 100)"
    )
    parser.add_argument(
        "-s", dest="software_rendering", metavar="true/false", help="Software rendering"
    )
    parser.add_argument("-k", dest="anti_aliasing", metavar="true/false", help="Anti-aliasing")
    parser.add_argument(
        "-a", dest="falloff_enabled", metavar="true/false", help="Falloff correction"
    )
    parser.add_argument(
        "-v", dest="falloff_value", metavar="VALUE", help="Falloff correction value"
    )
    parser.add_argument("-z", dest="stabilization", metavar="true/false", help="Stabilization")
    parser.add_argument(
        "-x",
        dest="export_type",
        metavar="EXPORT_TYPE",
        help="6processed: export every processed camera image instead of a panorama",
    )
    parser.add_argument(
        "-q",
        dest="rotation",
        metavar="ROTATION",
        help='Panorama rotation "Front X -Down Y" in degrees '
        "(Front = pitch, Down = yaw)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config providing defaults for options not given on the command line",
    )
    parser.add_argument(
        "--save-config",
        type=Path,
        default=None,
        help="Write the resolved configuration to this YAML file",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose (DEBUG) logging"
    )
    return parser


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def warn_unknown_arguments(extras: list[str]) -> None:
    """Warn about every argument the parser did not recognize."""
    for arg in extras:
        if arg.startswith("-") and len(arg) >= 2:
            logger.warning("Unknown option '%s' ignored.", arg)
        else:
            logger.warning("Unknown argument '%s' ignored.", arg)


def split_unknown_options(
    parser: argparse.ArgumentParser, argv: list[str]
) -> tuple[list[str], list[str]]:
    """Separate option tokens that are not registered flags.

    argparse would otherwise read an unknown single-dash token such as
    ``-verbose`` as ``-v erbose``. Only exact option strings (or
    ``--long=value``) are kept; anything else starting with ``-`` is set
    aside without consuming the token after it.

    Returns:
        (tokens for the parser, unknown option tokens)
    """
    actions = parser._option_string_actions
    known: list[str] = []
    unknown: list[str] = []
    i = 0
    while i < len(argv):
        token = argv[i]
        i += 1
        name = token.split("=", 1)[0] if token.startswith("--") else token
        action = actions.get(name)
        if action is not None:
            known.append(token)
            # Keep the value even if it looks like an option ("-1", "-Down 5").
            if action.nargs != 0 and name == token and i < len(argv):
                known.append(argv[i])
                i += 1
        elif token.startswith("-") and len(token) > 1:
            unknown.append(token)
        else:
            known.append(token)
    return known, unknown


def raw_options_from_args(args: argparse.Namespace) -> RawOptions:
    """Collect the raw option strings from parsed arguments."""
    return RawOptions(
        source_path=args.source_path,
        output_prefix=args.output_prefix,
        frame_range=args.frame_range,
        resolution=args.resolution,
        render_type=args.render_type,
        file_format=args.file_format,
        color_method=args.color_method,
        blending_width=args.blending_width,
        software_rendering=args.software_rendering,
        anti_aliasing=args.anti_aliasing,
        falloff_enabled=args.falloff_enabled,
        stabilization=args.stabilization,
        export_type=args.export_type,
        rotation=args.rotation,
        falloff_value=args.falloff_value,
    )


def log_config_summary(config: PipelineConfig) -> None:
    """Log the settings that shape the export."""
    if config.export_mode == ExportMode.MULTI_CAMERA:
        logger.info("Export type: processed camera images")
    else:
        logger.info(
            "Export type: panoramic (%dx%d)", config.output_width, config.output_height
        )
        if config.rotation_front != 0.0 or config.rotation_down != 0.0:
            logger.info(
                "Rotation: Front %.1f, Down %.1f degrees",
                config.rotation_front,
                config.rotation_down,
            )
    logger.info("Output format: %s", config.file_format.value)
    logger.info("Color processing: %s", config.color_method.value)
    logger.info("Output directory: %s", config.output_dir)


def export_command(args: argparse.Namespace, extras: list[str]) -> int:
    """Resolve the configuration and run the export.

    Returns:
        Process exit code: 0 on completion (even with per-frame failures),
        1 on a fatal configuration or initialization error.
    """
    warn_unknown_arguments(extras)

    try:
        base = load_config_mapping(args.config) if args.config else None
        config = resolve_config(raw_options_from_args(args), base)
    except OSError as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.save_config is not None:
        try:
            config.to_yaml(args.save_config)
        except OSError as e:
            print(f"Error: Failed to save config: {e}", file=sys.stderr)
            return 1
        logger.info("Config saved to %s", args.save_config)

    log_config_summary(config)

    from lbexport.pipeline import run_pipeline

    try:
        summary = run_pipeline(config)
    except LBExportError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Failed to initialize export pipeline.", file=sys.stderr)
        return 1

    if not summary.complete:
        logger.warning(
            "%d of %d frames did not export cleanly",
            summary.frames_requested - summary.count(ExportStatus.SUCCESS),
            summary.frames_requested,
        )
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the LBExport CLI."""
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    if not argv:
        print("Error: No arguments provided.", file=sys.stderr)
        parser.print_help(sys.stderr)
        sys.exit(1)

    tokens, unknown = split_unknown_options(parser, argv)
    try:
        args, extras = parser.parse_known_args(tokens)
        extras = unknown + extras
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        sys.exit(1)

    configure_logging(args.verbose)
    sys.exit(export_command(args, extras))
