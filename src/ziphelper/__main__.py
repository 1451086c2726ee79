"""Command-line interface for ziphelper."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import ExistingFileMode, ZipHelperError, __version__, create, format_size


def cmd_create(args: argparse.Namespace) -> int:
    """Handle the create command."""
    output = Path(args.output)
    root = Path(args.root)

    if not root.is_dir():
        print(f"Error: '{root}' is not a directory", file=sys.stderr)
        return 1

    mode = ExistingFileMode.SKIP if args.skip_existing else ExistingFileMode.OVERWRITE

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="  %(message)s")
        print(f"Creating archive: {output}")
        print(f"  Backend: {'streaming' if args.stream else 'buffered'}")
        print(f"  Existing entries: {mode.value}")
        print()

    try:
        create(
            output,
            root,
            stream=args.stream,
            existing_file_mode=mode,
            uncompressed=args.store,
        )
    except (ZipHelperError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print()
        print(f"Created {output.name}: {format_size(output.stat().st_size)}")

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="ziphelper",
        description="Assemble a folder tree into a ZIP archive.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    create_parser = subparsers.add_parser(
        "create",
        help="Create a ZIP archive from a folder",
        description="Create a ZIP archive holding every file below ROOT.",
    )
    create_parser.add_argument(
        "-o", "--output",
        required=True,
        help="Output archive path (e.g., book.epub)",
    )
    create_parser.add_argument(
        "root",
        help="Folder to archive; entry names are relative to it",
    )
    create_parser.add_argument(
        "-0", "--store",
        action="append",
        default=[],
        metavar="LOCAL_PATH",
        help="Add this file first, without compression (repeatable)",
    )
    create_parser.add_argument(
        "--stream",
        action="store_true",
        help="Write directly to the output instead of through a temporary archive",
    )
    create_parser.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip entries already in the archive instead of overwriting them",
    )
    create_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show each entry as it is added",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "create":
        return cmd_create(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
