"""Command line interface for binary-flattener."""

import argparse
import logging
import pathlib
import sys

from binary_flattener.builder import build_launcher, extract_to_file
from binary_flattener.target import (
    LanguageTarget,
    TargetConfig,
    TargetResolutionError,
    resolve_language,
    resolve_target_config,
)


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the binary-flattener logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("binary_flattener")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _add_logging_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )


def main(argv: list[str] | None = None) -> int:
    """Run the binary-flattener CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="binary-flattener",
        description="Embed a compiled executable into a single self-launching source file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_embed = subparsers.add_parser(
        "embed",
        help="Generate launcher source that embeds an executable.",
    )
    p_embed.add_argument(
        "input",
        type=pathlib.Path,
        help="Path to the already-built executable.",
    )
    p_embed.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        default=None,
        help="Output filename (defaults to main.rs or main.py depending on --language).",
    )
    p_embed.add_argument(
        "--language",
        type=str,
        default="Rust",
        help="Output language [Rust|Python] (case-insensitive).",
    )
    p_embed.add_argument(
        "--target",
        type=str,
        default="x86_64-unknown-linux-gnu",
        help=(
            "Target triple the launcher will run on (e.g. x86_64-pc-windows-msvc). "
            "Use 'native' for the current host."
        ),
    )
    compression = p_embed.add_mutually_exclusive_group()
    compression.add_argument(
        "--compress",
        action="store_true",
        help="Compress the executable (zlib) before embedding it.",
    )
    compression.add_argument(
        "--compressed",
        action="store_true",
        help="The input is already a zlib stream produced by an external tool.",
    )
    p_embed.add_argument(
        "--compresslevel",
        type=int,
        default=9,
        help="zlib compression level used with --compress (0-9).",
    )
    p_embed.add_argument(
        "--source",
        type=pathlib.Path,
        default=None,
        help="Source file of the executable, embedded as a trailing comment.",
    )
    _add_logging_flags(p_embed)

    p_extract = subparsers.add_parser(
        "extract",
        help="Recover the executable embedded in a generated launcher.",
    )
    p_extract.add_argument(
        "launcher",
        type=pathlib.Path,
        help="Path to a launcher generated by binary-flattener.",
    )
    p_extract.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        required=True,
        help="Output path for the recovered executable.",
    )
    _add_logging_flags(p_extract)

    ns = parser.parse_args(argv)
    if ns.command == "embed":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            language: LanguageTarget = resolve_language(ns.language)
            target_cfg: TargetConfig = resolve_target_config(target=ns.target)
        except TargetResolutionError as exc:
            parser.error(str(exc))

        output: pathlib.Path = ns.output if ns.output is not None else pathlib.Path(language.default_output)
        build_launcher(
            input_path=ns.input,
            output_path=output,
            language=language,
            target=target_cfg,
            compress=ns.compress,
            precompressed=ns.compressed,
            source_path=ns.source,
            logger=logger,
            compresslevel=ns.compresslevel,
        )
        return 0

    if ns.command == "extract":
        logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        extract_to_file(launcher_path=ns.launcher, output_path=ns.output, logger=logger)
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
