"""raisecheck command-line interface."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from .dsl import grammar
from .effects import checker, reporters
from .telemetry import logger as log_config
from .utils.config import AnalysisConfig, load_analysis_config

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "analysis.yaml"

_FORMAT_CHOICES = ("text", "json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="raisecheck", description="Check typed raising effects in DSL sources"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None,
        help="Optional path to an analysis configuration YAML file.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        metavar="KEY=VALUE",
        help="Override configuration values using dot notation (e.g. analysis.policy=precise).",
    )
    parser.add_argument(
        "--policy",
        choices=("compatibility", "precise"),
        help="Closure inference policy; shorthand for --set analysis.policy=...",
    )
    parser.add_argument(
        "--log-config", type=Path, help="Optional logging configuration YAML file."
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase logging verbosity"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Report effect diagnostics for source files")
    check.add_argument("sources", type=Path, nargs="+", help="DSL source files")
    check.add_argument("--format", choices=_FORMAT_CHOICES, default="text", help="Output format")

    effects = subparsers.add_parser("effects", help="Print the resolved effect of every function")
    effects.add_argument("source", type=Path, help="DSL source file")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.log_config is not None:
        log_config.configure(args.log_config, force=True)
    if args.verbose:
        log_config.set_level(log_config.level_for_verbosity(args.verbose))

    try:
        config = _load_config(args)
        if args.command == "check":
            return _cmd_check(args, config)
        if args.command == "effects":
            return _cmd_effects(args, config)
    except (grammar.DSLParseError, FileNotFoundError, ValueError) as exc:
        print(f"[raisecheck] error: {exc}", file=sys.stderr)
        return 2

    parser.print_help()
    return 2


def _load_config(args: argparse.Namespace) -> AnalysisConfig:
    overrides = list(args.overrides or [])
    if args.policy:
        overrides.append(f"analysis.policy={args.policy}")
    return load_analysis_config(args.config, overrides=overrides)


# ---------------------------------------------------------------------------
# Command implementations


def _cmd_check(args: argparse.Namespace, config: AnalysisConfig) -> int:
    failed = False
    reports = []
    for source in args.sources:
        result = _check_file(source, config)
        failed = failed or not result.ok
        if args.format == "json":
            reports.append(reporters.build_report(result, filename=str(source)))
        else:
            print(reporters.format_text(result, filename=str(source)))
    if args.format == "json":
        print(json.dumps(reports if len(reports) > 1 else reports[0], indent=2))
    return 1 if failed else 0


def _cmd_effects(args: argparse.Namespace, config: AnalysisConfig) -> int:
    result = _check_file(args.source, config)
    width = max((len(name) for name in result.effects), default=0)
    for name, effect in result.effects.items():
        print(f"{name.ljust(width)}  {effect}")
    return 0 if result.ok else 1


def _check_file(path: Path, config: AnalysisConfig) -> checker.CheckResult:
    if not path.exists():
        raise FileNotFoundError(f"source file not found: {path}")
    source = path.read_text(encoding="utf-8")
    return checker.check_source(source, filename=str(path), config=config)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
