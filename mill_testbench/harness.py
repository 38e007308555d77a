"""The test bench run.

This module ties the pieces together: it checks prerequisites, prepares a
fresh container with the script mounted, takes the baseline snapshot, runs
the attempt loop and finally disposes of the container. Disposition runs
exactly once, from a ``finally`` block, whatever path the run took.
"""

from __future__ import annotations

import os
import traceback
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .clock import Clock, SystemClock, make_run_id
from .cycle import INITIAL_SNAPSHOT, Attempt, TestCycleRunner
from .disposition import Disposition, DispositionPolicy, DispositionResult
from .errors import HarnessError, RestoreError, SetupError, SnapshotError
from .executor import Executor
from .lifecycle import ContainerLifecycle
from .log import RunLog, resolve_log_dir
from .report import ReportConfig, ReportWriter
from .retry import RetryPolicy
from .runtime import ContainerRuntime, LxdRuntime

VERSION = "v4.7"

DEFAULT_REQUIRED_PATTERNS: Tuple[str, ...] = (
    "Installation terminée avec succès",
    "Docker et son écosystème sont prêts",
)


@dataclass(frozen=True)
class HarnessConfig:
    """Configuration for a test bench run. Built once, never mutated."""

    script_path: str
    max_attempts: int = 2
    retry_delay: float = 10
    timeout: float = 900
    interactive: bool = False
    container_name: str = "debian-test-rig"
    image: str = "images:debian/12"
    storage_pool: Optional[str] = "default"
    guest_script_dir: str = "/opt/scripts"
    script_args: Tuple[str, ...] = ("--user", "admin")
    required_patterns: Tuple[str, ...] = DEFAULT_REQUIRED_PATTERNS
    log_dir: Optional[str] = None
    network_probe: Tuple[str, ...] = ("apt-get", "-qq", "update")
    network_attempts: int = 5
    network_delay: float = 3
    restore_settle: float = 2
    destroy_retry_delay: float = 2
    log_tail_lines: int = 20

    def __post_init__(self) -> None:
        if not self.script_path:
            raise ValueError("script_path is required")
        if int(self.max_attempts) < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if float(self.retry_delay) < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if float(self.timeout) <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if int(self.network_attempts) < 1:
            raise ValueError(f"network_attempts must be >= 1, got {self.network_attempts}")

    @property
    def script_name(self) -> str:
        return os.path.basename(self.script_path)

    @property
    def script_dir(self) -> str:
        return os.path.realpath(os.path.dirname(os.path.abspath(self.script_path)))

    @property
    def guest_script_path(self) -> str:
        return f"{self.guest_script_dir.rstrip('/')}/{self.script_name}"


class RunStatus(Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    SETUP_FAILED = "setup_failed"
    SNAPSHOT_FAILED = "snapshot_failed"
    RESTORE_FAILED = "restore_failed"
    ABORTED = "aborted"


_STATUS_FOR_ERROR = {
    SetupError: RunStatus.SETUP_FAILED,
    SnapshotError: RunStatus.SNAPSHOT_FAILED,
    RestoreError: RunStatus.RESTORE_FAILED,
}


@dataclass(frozen=True)
class RunOutcome:
    """Aggregate result of a run."""

    succeeded: bool
    status: RunStatus
    attempts: Tuple[Attempt, ...] = ()
    disposition: Disposition = Disposition.ABSENT
    error: Optional[str] = None
    log_file: Optional[str] = None
    diff_report: Optional[str] = None
    summary_file: Optional[str] = None
    run_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "succeeded": self.succeeded,
            "status": self.status.value,
            "attempts": [a.to_dict() for a in self.attempts],
            "disposition": self.disposition.value,
            "error": self.error,
            "log_file": self.log_file,
            "diff_report": self.diff_report,
            **self.extra,
        }


def check_requirements(cfg: HarnessConfig, runtime: ContainerRuntime, log: RunLog) -> None:
    """Fail before touching any container if the run cannot work."""
    log.step("Checking prerequisites")
    problems = list(runtime.check_requirements())
    if not os.path.isfile(cfg.script_path):
        problems.append(f"Script under test not found: {cfg.script_path}")
    for p in problems:
        log.error(p)
    if problems:
        raise SetupError("; ".join(problems))
    log.success("Prerequisites satisfied.")


def run_harness(
    cfg: HarnessConfig,
    runtime: Optional[ContainerRuntime] = None,
    clock: Optional[Clock] = None,
    log: Optional[RunLog] = None,
) -> RunOutcome:
    """Validate the script under test in a disposable container.

    Args:
        cfg: The run configuration.
        runtime: Container runtime (LXD when omitted).
        clock: Time source used for every wait (system clock when omitted).
        log: Run log (a fresh one in the resolved log directory when omitted).

    Returns:
        The RunOutcome. Fatal errors and unexpected exceptions are reported
        through ``status`` and ``error`` rather than raised.
    """
    runtime = runtime or LxdRuntime()
    clock = clock or SystemClock()
    log_dir = resolve_log_dir(cfg.log_dir, cfg.script_dir)
    log = log or RunLog.for_script(log_dir, cfg.script_name, clock)
    run_id = make_run_id(clock=clock, seed_material={
        "script": cfg.script_path,
        "container": cfg.container_name,
        "image": cfg.image,
    })

    lifecycle = ContainerLifecycle(
        runtime,
        log,
        clock,
        guest_script_dir=cfg.guest_script_dir,
        storage_pool=cfg.storage_pool,
        network_probe=cfg.network_probe,
        network_retry=RetryPolicy(cfg.network_attempts, cfg.network_delay),
        settle_delay=cfg.restore_settle,
        destroy_retry_delay=cfg.destroy_retry_delay,
    )
    reports = ReportWriter(ReportConfig(output_dir=log.log_dir), clock)
    policy = DispositionPolicy(lifecycle, reports, log)
    runner = TestCycleRunner(
        lifecycle=lifecycle,
        executor=Executor(runtime, clock),
        log=log,
        clock=clock,
        retry=RetryPolicy(cfg.max_attempts, cfg.retry_delay),
        timeout=cfg.timeout,
        required_patterns=tuple(cfg.required_patterns),
        script_args=tuple(cfg.script_args),
        tail_lines=cfg.log_tail_lines,
    )

    status = RunStatus.ABORTED
    error: Optional[str] = None
    disposed: Optional[DispositionResult] = None

    log.step(f"LXD TEST BENCH {VERSION}")
    log.info(f"Script under test: {cfg.script_path}")
    log.info(f"Run log: {log.path}")
    log.event({"phase": "run_header", "run_id": run_id, "cfg": cfg.__dict__})

    try:
        check_requirements(cfg, runtime, log)

        log.step("Preparing the test environment")
        container = lifecycle.prepare(cfg.container_name, cfg.image, cfg.script_dir, cfg.script_name)
        lifecycle.snapshot(container, INITIAL_SNAPSHOT)
        log.success("Test environment ready.")

        runner.run(container, cfg.guest_script_path)
        status = RunStatus.SUCCEEDED if runner.succeeded else RunStatus.EXHAUSTED
    except HarnessError as e:
        status = _STATUS_FOR_ERROR.get(type(e), RunStatus.ABORTED)
        error = str(e)
        log.error(f"{e.category.upper()} failure: {e}")
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        log.error(f"Unexpected failure: {error}")
        log.raw(traceback.format_exc())
    finally:
        disposed = policy.apply(
            lifecycle.container,
            succeeded=status is RunStatus.SUCCEEDED,
            interactive=cfg.interactive,
        )

    succeeded = status is RunStatus.SUCCEEDED
    if succeeded:
        log.success("=== TEST PASSED ===")
    else:
        if status is RunStatus.EXHAUSTED:
            error = f"No successful attempt out of {len(runner.attempts)}."
        log.error(f"=== TEST FAILED ({status.value}) ===")

    outcome = RunOutcome(
        succeeded=succeeded,
        status=status,
        attempts=tuple(runner.attempts),
        disposition=disposed.disposition,
        error=error,
        log_file=log.path,
        diff_report=disposed.diff_report,
        run_id=run_id,
        extra={"cleanup_ok": disposed.cleanup_ok},
    )
    summary = reports.write_summary(log.stem, outcome.to_dict())
    log.event({"phase": "run_end", "status": status.value, "summary": summary})
    return replace(outcome, summary_file=summary)
