"""
Command-line interface for chunked motion correction.

Provides the ``pymotioncorr`` command.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from pymotioncorr.core import list_backends
from pymotioncorr.errors import ConfigurationError, MotionCorrectionError
from pymotioncorr.motion_correction import MCOptions, MotionCorrection
from pymotioncorr.stack import ImageStack


def _parse_value(raw: str) -> Any:
    """
    Coerce an override value.

    JSON literals (numbers, ``true``/``false``/``null``, lists, objects) are
    decoded, ``none`` maps to None and anything else stays a string.
    """
    text = raw.strip()
    if text.lower() == "none":
        return None
    if text.lower() in ("true", "false", "null"):
        text = text.lower()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return raw


def _parse_overrides(params: Optional[list[str]]) -> Dict[str, Any]:
    """
    Dotted ``KEY=VALUE`` pairs to an override dict.

    Raises
    ------
    ConfigurationError
        If an item has no ``=`` or an empty key.
    """
    overrides: Dict[str, Any] = {}
    for item in params or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Malformed override '{item}', expected KEY=VALUE")
        overrides[key.strip()] = _parse_value(value)
    return overrides


def build_options(args: argparse.Namespace) -> MCOptions:
    """Options from the optional config file, CLI overrides and flags."""
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            raise FileNotFoundError(f"configuration file not found: {config_path}")
        options = MCOptions.from_file(config_path)
    else:
        options = MCOptions()

    overrides = _parse_overrides(args.params)
    overrides["output_path"] = args.output
    if args.verbose:
        overrides["verbose"] = True
    return options.with_overrides(overrides)


def cmd_run(args: argparse.Namespace) -> None:
    """Handle the ``run`` subcommand."""
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: input file not found: {input_path}")
        sys.exit(1)

    try:
        options = build_options(args)
        stack = ImageStack.from_file(input_path, args.axes)
        completed = MotionCorrection(stack, options).run()
    except (MotionCorrectionError, FileNotFoundError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not completed:
        print("Motion correction was cancelled before completion")
        sys.exit(1)
    print(f"Motion corrected output written to {Path(args.output) / 'motion_corrected'}")


def cmd_backends(args: argparse.Namespace) -> None:
    """Handle the ``backends`` subcommand."""
    for name in list_backends():
        print(name)


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Chunked motion correction of image stacks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Correct a stack with default options
  pymotioncorr run --input recording.tif --output results

  # Use a config file and recast the corrected stack to 8 bit
  pymotioncorr run -i recording.tif -o results --config mc.toml --params Export.OutputDataType=uint8

  # Select the backend and chunk size
  pymotioncorr run -i recording.npy -o results --axes TCYX --params Registration.toolbox=ecc General.framesPerPart=200
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run motion correction")
    run_parser.add_argument("--input", "-i", required=True, help="Source stack (.tif/.tiff/.npy)")
    run_parser.add_argument("--output", "-o", required=True, help="Output directory")
    run_parser.add_argument(
        "--axes",
        "-a",
        default=None,
        help="Dimension arrangement of the source, e.g. TYX or TCYX (default: from file)",
    )
    run_parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to options file (.toml/.yaml/.yml/.json)",
    )
    run_parser.add_argument(
        "--params",
        nargs="*",
        metavar="KEY=VALUE",
        help="Override options, e.g. General.correctDrift=false",
    )
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Print progress")
    run_parser.set_defaults(func=cmd_run)

    backends_parser = subparsers.add_parser("backends", help="List registration backends")
    backends_parser.set_defaults(func=cmd_backends)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)
    args.func(args)


if __name__ == "__main__":
    main()
