import argparse
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .harness import HarnessConfig, run_harness


class _Parser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit with status 1."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _non_negative_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected an integer >= 0, got {n}")
    return n


def _positive_int(value: str) -> int:
    n = _non_negative_int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected an integer >= 1, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    defaults = HarnessConfig(script_path=os.getenv("MILL_SCRIPT_PATH") or os.path.expanduser(
        "~/dev/script/BashMill/TheGrain.sh"
    ))
    parser = _Parser(
        prog="mill-testbench",
        description="Test bench for infrastructure scripts in a disposable LXD container.",
    )
    parser.add_argument(
        "--script-path",
        default=defaults.script_path,
        help="Script under test (default: %(default)s, or MILL_SCRIPT_PATH env var)",
    )
    parser.add_argument(
        "--max-attempts",
        type=_positive_int,
        default=defaults.max_attempts,
        help="Maximum attempts (default: %(default)s)",
    )
    parser.add_argument(
        "--delay",
        type=_non_negative_int,
        default=int(defaults.retry_delay),
        help="Delay between attempts in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        default=int(defaults.timeout),
        help="Per-attempt timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Keep the container after a successful run",
    )
    parser.add_argument(
        "--container-name",
        default=os.getenv("MILL_CONTAINER_NAME", defaults.container_name),
        help="Name of the test container (default: %(default)s)",
    )
    parser.add_argument(
        "--image",
        default=os.getenv("MILL_IMAGE", defaults.image),
        help="Base image (default: %(default)s)",
    )
    parser.add_argument(
        "--log-dir",
        default=os.getenv("MILL_LOG_DIR"),
        help="Directory for run logs and reports (default: <script dir>/log or ~/lxd-test-logs)",
    )
    parser.add_argument(
        "--script-arg",
        action="append",
        dest="script_args",
        help=(
            "Argument passed to the script under test, repeatable "
            f"(default: {' '.join(defaults.script_args)})"
        ),
    )
    return parser


def config_from_args(args: argparse.Namespace) -> HarnessConfig:
    kwargs = {}
    if args.script_args is not None:
        kwargs["script_args"] = tuple(args.script_args)
    return HarnessConfig(
        script_path=args.script_path,
        max_attempts=args.max_attempts,
        retry_delay=args.delay,
        timeout=args.timeout,
        interactive=args.interactive,
        container_name=args.container_name,
        image=args.image,
        log_dir=args.log_dir,
        **kwargs,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI.

    Loads environment variables from .env, parses command-line arguments,
    builds the HarnessConfig and runs the test bench. Returns the process
    exit code: 0 on success, 1 on any failure.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)
    cfg = config_from_args(args)
    outcome = run_harness(cfg)
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
