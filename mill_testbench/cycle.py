"""The attempt/retry state machine.

Each attempt runs the script under test, then classifies the result. Every
attempt after the first starts from the baseline snapshot, so a failed
attempt can never leak state into the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .clock import Clock
from .executor import Executor
from .lifecycle import Container, ContainerLifecycle
from .log import RunLog
from .retry import RetryPolicy
from .validator import ValidationResult, validate_output

INITIAL_SNAPSHOT = "initial"


class CycleState(Enum):
    """States of the test cycle."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    VALIDATING = "validating"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    """Terminal: one attempt exited 0 with every marker present."""

    EXHAUSTED = "exhausted"
    """Terminal: the attempt bound was reached without success."""


class AttemptStatus(Enum):
    PASSED = "passed"
    MISSING_MARKERS = "missing_markers"
    TIMED_OUT = "timed_out"
    SCRIPT_ERROR = "script_error"


@dataclass(frozen=True)
class Attempt:
    """One recorded execution of the script under test."""

    index: int
    exit_code: Optional[int]
    timed_out: bool
    output: str
    validation: ValidationResult
    status: AttemptStatus
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status is AttemptStatus.PASSED

    def to_dict(self, include_output: bool = False) -> dict:
        d = {
            "index": self.index,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "status": self.status.value,
            "missing": list(self.validation.missing),
            "duration": self.duration,
        }
        if include_output:
            d["output"] = self.output
        return d


@dataclass(frozen=True)
class CycleTransition:
    from_state: CycleState
    to_state: CycleState
    attempt: int = 0
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "attempt": self.attempt,
            "reason": self.reason,
        }


def classify(exit_code: Optional[int], timed_out: bool, validation: ValidationResult) -> AttemptStatus:
    """Success needs both a zero exit code and every marker present."""
    if timed_out:
        return AttemptStatus.TIMED_OUT
    if exit_code != 0:
        return AttemptStatus.SCRIPT_ERROR
    if not validation.passed:
        return AttemptStatus.MISSING_MARKERS
    return AttemptStatus.PASSED


@dataclass
class TestCycleRunner:
    """Runs attempts until one succeeds or the retry policy is used up.

    A ``RestoreError`` from the lifecycle propagates out of ``run`` and no
    further attempt executes; ``attempts`` still holds what ran before it.
    """

    __test__ = False  # not a pytest test class

    lifecycle: ContainerLifecycle
    executor: Executor
    log: RunLog
    clock: Clock
    retry: RetryPolicy
    timeout: float
    required_patterns: Tuple[str, ...]
    script_args: Tuple[str, ...] = ()
    tail_lines: int = 20
    snapshot_label: str = INITIAL_SNAPSHOT
    state: CycleState = CycleState.IDLE
    attempts: List[Attempt] = field(default_factory=list)
    transitions: List[CycleTransition] = field(default_factory=list)

    def _move(self, to_state: CycleState, attempt: int = 0, reason: str = "") -> None:
        t = CycleTransition(self.state, to_state, attempt, reason)
        self.transitions.append(t)
        self.state = to_state
        self.log.event({"phase": "cycle", **t.to_dict()})

    @property
    def succeeded(self) -> bool:
        return self.state is CycleState.SUCCEEDED

    def run(self, container: Container, guest_script_path: str) -> Sequence[Attempt]:
        total = self.retry.max_attempts

        def waiting(_n: int, delay: float) -> None:
            self.log.info(f"Next attempt in {delay:g} seconds...")

        for n in self.retry.attempts(self.clock, on_wait=waiting):
            self.log.step(f"Test run - ATTEMPT #{n}/{total}")
            if n > 1:
                self.lifecycle.restore(container, self.snapshot_label)

            self._move(CycleState.ATTEMPTING, n)
            self.log.info(f"Running the script with a {self.timeout:g}s timeout...")
            result = self.executor.run(container, guest_script_path, self.script_args, self.timeout)
            self.log.raw(result.output)

            if result.timed_out:
                self._move(CycleState.TIMED_OUT, n, "timeout")
            elif result.exit_code != 0:
                self._move(CycleState.ERRORED, n, f"exit code {result.exit_code}")
            else:
                self._move(CycleState.VALIDATING, n)

            validation = self._validate(result.output, verbose=self.state is CycleState.VALIDATING)
            status = classify(result.exit_code, result.timed_out, validation)
            attempt = Attempt(
                index=n,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                output=result.output,
                validation=validation,
                status=status,
                duration=result.duration,
            )
            self.attempts.append(attempt)
            self.log.event({"phase": "attempt", **attempt.to_dict()})

            if attempt.passed:
                self._move(CycleState.SUCCEEDED, n)
                return tuple(self.attempts)

            self._report_failure(attempt)
            if n == total:
                break
            self._move(CycleState.RETRYING, n, status.value)

        self._move(CycleState.EXHAUSTED, len(self.attempts))
        return tuple(self.attempts)

    def _validate(self, output: str, verbose: bool) -> ValidationResult:
        validation = validate_output(output, self.required_patterns)
        if not verbose:
            return validation
        self.log.info("Checking output for success markers...")
        for pattern in validation.found:
            self.log.info(f"  [x] Success marker found: '{pattern}'")
        for pattern in validation.missing:
            self.log.warn(f"  [ ] Success marker missing: '{pattern}'")
        return validation

    def _report_failure(self, attempt: Attempt) -> None:
        if attempt.status is AttemptStatus.TIMED_OUT:
            self.log.error(f"Execution failed: TIMEOUT. The script ran longer than {self.timeout:g}s.")
        elif attempt.status is AttemptStatus.SCRIPT_ERROR:
            self.log.error(f"Execution failed: the script reported error code {attempt.exit_code}.")
        else:
            self.log.error(
                "Validation failed: the script exited cleanly but the success markers are missing."
            )
        self.log.tail(attempt.output, self.tail_lines)
