"""Run logging for the test bench.

Two sinks per run:
    - a human-readable text log (tagged console lines mirrored to a file,
      plus the full captured output of every attempt)
    - a JSONL file of structured events
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional, TextIO

from .clock import Clock

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
CYAN = "\033[0;36m"
NC = "\033[0m"


def ensure_dir(path: str) -> None:
    """Ensure that a directory exists."""
    os.makedirs(path, exist_ok=True)


def write_jsonl(
    path: str,
    record: Dict[str, Any],
    *,
    clock: Optional[Clock] = None,
    ts: Optional[float] = None,
) -> None:
    """Append a record to a JSONL file.

    Args:
        path: File to append to. Its directory is created if needed.
        record: Arbitrary JSON-serializable dictionary to write.
    """
    ensure_dir(os.path.dirname(path) or ".")
    entry = dict(record)
    if ts is not None:
        entry["ts"] = float(ts)
    elif clock is not None:
        entry["ts"] = float(clock.time())
    else:
        raise ValueError("write_jsonl requires either ts or clock")
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")


def resolve_log_dir(log_dir: Optional[str], script_dir: str) -> str:
    """Pick the directory for run logs.

    An explicit directory wins, then a ``log`` directory next to the script
    under test, then ``~/lxd-test-logs``.
    """
    if log_dir:
        return os.path.abspath(os.path.expanduser(log_dir))
    beside_script = os.path.join(script_dir, "log")
    if os.path.isdir(beside_script):
        return beside_script
    return os.path.join(os.path.expanduser("~"), "lxd-test-logs")


class RunLog:
    """Tagged console logger mirrored to a per-run log file."""

    def __init__(
        self,
        log_dir: str,
        stem: str,
        clock: Clock,
        *,
        stream: Optional[TextIO] = None,
        err_stream: Optional[TextIO] = None,
        color: Optional[bool] = None,
    ):
        ensure_dir(log_dir)
        self.log_dir = log_dir
        self.stem = stem
        self.clock = clock
        self.path = os.path.join(log_dir, f"{stem}.log")
        self.events_path = os.path.join(log_dir, f"{stem}.jsonl")
        self.stream = stream or sys.stdout
        self.err_stream = err_stream or sys.stderr
        if color is None:
            color = bool(getattr(self.stream, "isatty", lambda: False)())
        self.color = color

        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"Log start - {clock.now_utc().isoformat()}\n")
        os.chmod(self.path, 0o600)

    @classmethod
    def for_script(cls, log_dir: str, script_name: str, clock: Clock, **kwargs: Any) -> "RunLog":
        stamp = clock.now_utc().strftime("%Y%m%d-%H%M%S")
        return cls(log_dir, f"test-{script_name}-{stamp}", clock, **kwargs)

    def _append(self, text: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(text)

    def _emit(self, tag: str, color: str, message: str, *, error: bool = False) -> None:
        plain = f"[{tag}] {message}"
        shown = f"{color}[{tag}]{NC} {message}" if self.color else plain
        print(shown, file=self.err_stream if error else self.stream)
        self._append(plain + "\n")

    def info(self, message: str) -> None:
        self._emit("INFO", YELLOW, message)

    def warn(self, message: str) -> None:
        self._emit("WARN", YELLOW, message)

    def error(self, message: str) -> None:
        self._emit("ERROR", RED, message, error=True)

    def success(self, message: str) -> None:
        self._emit("OK", GREEN, message)

    def step(self, title: str) -> None:
        plain = f"--- {title} ---"
        print("\n" + (f"{CYAN}{plain}{NC}" if self.color else plain), file=self.stream)
        self._append("\n" + plain + "\n")

    def raw(self, text: str) -> None:
        """Write text to the log file only (captured script output)."""
        if text and not text.endswith("\n"):
            text += "\n"
        self._append(text)

    def tail(self, output: str, lines: int) -> None:
        """Print the last lines of a captured output as a diagnostic block."""
        self.info(f"Last {lines} lines of output:")
        block: List[str] = ["=" * 36 + " LOG TAIL " + "=" * 34]
        block.extend(f"  | {line}" for line in output.splitlines()[-lines:])
        block.append("=" * 34 + " END LOG TAIL " + "=" * 32)
        text = "\n".join(block)
        print(text, file=self.stream)
        self._append(text + "\n")

    def event(self, record: Dict[str, Any]) -> None:
        write_jsonl(self.events_path, record, clock=self.clock)
