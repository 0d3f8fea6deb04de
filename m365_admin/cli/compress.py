"""Compress a directory with 7-Zip."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from loguru import logger

from m365_admin.cli.common import add_common_arguments, bootstrap
from m365_admin.services.external_tools import (
    ARCHIVE_FORMATS,
    COMPRESSION_LEVELS,
    ExternalToolError,
    ExternalToolNotFoundError,
    compress_directory,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m365-compress", description="Compress a directory using 7-Zip.")
    parser.add_argument("source", type=Path, help="Directory whose contents are archived.")
    parser.add_argument("--archive", type=Path, default=None, help="Archive path (defaults next to the directory).")
    parser.add_argument("--format", dest="archive_format", choices=ARCHIVE_FORMATS, default="7z")
    parser.add_argument("--level", type=int, choices=COMPRESSION_LEVELS, default=5, help="Compression level.")
    parser.add_argument("--overwrite", action="store_true", help="Replace an existing archive.")
    parser.add_argument("--7zip-path", dest="seven_zip_path", default=None, help="Explicit path to 7z.exe.")
    add_common_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    bootstrap(args)

    try:
        result = compress_directory(
            args.source,
            args.archive,
            archive_format=args.archive_format,
            level=args.level,
            overwrite=args.overwrite,
            seven_zip_path=args.seven_zip_path,
        )
    except (
        ExternalToolNotFoundError,
        ExternalToolError,
        NotADirectoryError,
        FileExistsError,
        ValueError,
    ) as exc:
        logger.error(str(exc))
        return 1

    print(result.artifact)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
