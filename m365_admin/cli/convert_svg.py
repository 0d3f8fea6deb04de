"""Convert an SVG file with Inkscape."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from loguru import logger

from m365_admin.cli.common import add_common_arguments, bootstrap, bounded_number
from m365_admin.services.external_tools import (
    SVG_EXPORT_FORMATS,
    ExternalToolError,
    ExternalToolNotFoundError,
    convert_svg,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m365-convert-svg", description="Convert an SVG file using Inkscape.")
    parser.add_argument("source", type=Path, help="SVG file to convert.")
    parser.add_argument("--output", type=Path, default=None, help="Output file (defaults next to the source).")
    parser.add_argument("--format", dest="export_format", choices=SVG_EXPORT_FORMATS, default="png")
    parser.add_argument("--width", type=bounded_number(int, 1, 65535), default=None, help="Output width in pixels.")
    parser.add_argument("--height", type=bounded_number(int, 1, 65535), default=None, help="Output height in pixels.")
    parser.add_argument("--dpi", type=bounded_number(int, 1, 2400), default=None, help="Export resolution.")
    parser.add_argument("--background", default=None, help="Background colour, e.g. '#ffffff'.")
    parser.add_argument("--overwrite", action="store_true", help="Replace an existing output file.")
    parser.add_argument("--inkscape-path", default=None, help="Explicit path to the Inkscape executable.")
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    bootstrap(args)

    try:
        result = convert_svg(
            args.source,
            args.output,
            export_format=args.export_format,
            width=args.width,
            height=args.height,
            dpi=args.dpi,
            background=args.background,
            overwrite=args.overwrite,
            inkscape_path=args.inkscape_path,
        )
    except (ExternalToolNotFoundError, ExternalToolError, FileNotFoundError, FileExistsError, ValueError) as exc:
        logger.error(str(exc))
        return 1

    print(result.artifact)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
