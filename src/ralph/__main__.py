from __future__ import annotations

import argparse
import sys

from ralph.config import _resolve_tool_root, build_loop_config
from ralph.constants import DEFAULT_MAX_ITERATIONS, EXIT_FAILURE, EXIT_INTERRUPTED
from ralph.loop import run_loop
from ralph.models import ConfigError
from ralph.utils import _append_log

_EPILOG = """\
examples:
  ralph                 run with defaults (10 iterations)
  ralph -n 20           run up to 20 iterations
  ralph -t 3            stop after attempting task 3
  ralph -n 20 -t 5      stop after task 5, max 20 iterations
"""


class _RalphArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(message)


def _positive_int(raw: str) -> int:
    value = str(raw).strip()
    if not value.isdigit() or int(value) <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{raw}'")
    return int(value)


def _build_parser() -> argparse.ArgumentParser:
    parser = _RalphArgumentParser(
        prog="ralph",
        description="Long-running AI agent loop",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-n",
        "--iterations",
        dest="max_iterations",
        type=_positive_int,
        default=None,
        help=f"Maximum iterations (default: {DEFAULT_MAX_ITERATIONS})",
    )
    parser.add_argument(
        "-t",
        "--task",
        dest="stop_at_task",
        type=_positive_int,
        default=None,
        help="Stop at task number (exit 0 if passes, exit 1 if fails)",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Directory holding prd.json, progress.txt and prompt.md "
        "(default: $RALPH_HOME, else the launching script's directory; "
        "required for the installed console script)",
    )
    parser.add_argument(
        "legacy_iterations",
        nargs="?",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Shorthand for --iterations N",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
        max_iterations = args.max_iterations or args.legacy_iterations or DEFAULT_MAX_ITERATIONS
        root = _resolve_tool_root(args.root)
        config = build_loop_config(
            root,
            max_iterations=max_iterations,
            stop_at_task=args.stop_at_task,
        )
    except ConfigError as exc:
        print(f"ralph: ERROR {exc}", file=sys.stderr)
        print("Use -h for help", file=sys.stderr)
        return EXIT_FAILURE

    try:
        outcome = run_loop(config)
    except KeyboardInterrupt:
        _append_log(config.paths.root, "loop interrupted by operator")
        print("\nralph: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    return int(outcome.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
