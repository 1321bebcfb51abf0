from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import load_config
from .errors import PxfBuildError
from .graph import ModuleGraph
from .layout import BuildLayout
from .pipeline import ReleaseContext, ReleasePipeline, describe_targets

logger = logging.getLogger("pxfbuild")

HELP_TARGET = "help"


def _target_descriptions() -> dict[str, str]:
    descriptions = describe_targets(ModuleGraph().names())
    descriptions[HELP_TARGET] = "print this list of targets"
    return descriptions


def cmd_help(args: argparse.Namespace) -> int:
    print()
    print("Possible targets")
    for name, text in _target_descriptions().items():
        print(f"  - {name} - {text}")
    return 0


def _load_pipeline(args: argparse.Namespace) -> ReleasePipeline:
    source_root = Path(args.source_root)
    config = load_config(source_root, config_path=args.config)
    layout = BuildLayout(source_root, args.build_root, package_dir_name=config.package_dir)
    return ReleasePipeline(ReleaseContext(layout=layout, config=config))


def cmd_target(args: argparse.Namespace) -> int:
    try:
        pipeline = _load_pipeline(args)
        result = pipeline.run(args.command)
    except PxfBuildError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    if not result.ok:
        logger.error("%s failed", args.command)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pxf-build", description="Build, test and package PXF releases")
    parser.add_argument(
        "--source-root",
        default=".",
        help="Repository root containing the module directories, package/ and the version file.",
    )
    parser.add_argument(
        "--build-root",
        default=None,
        help="Directory for staged trees and artifacts (defaults to <source-root>/build).",
    )
    parser.add_argument("--config", default=None, help="Optional YAML or JSON configuration file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, text in _target_descriptions().items():
        target_parser = subparsers.add_parser(name, help=text)
        target_parser.set_defaults(func=cmd_help if name == HELP_TARGET else cmd_target)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
