"""Runs the script under test inside the container under a wall-clock bound."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .clock import Clock
from .lifecycle import Container, ContainerState
from .runtime import ContainerRuntime

# Exit statuses of coreutils ``timeout`` once it had to stop the command:
# 124 after TERM, 128 + 9 when the KILL sent by --kill-after was needed.
GUEST_TIMEOUT_CODES = (124, 137)


@dataclass(frozen=True)
class ExecutionResult:
    """Exit code and combined output of one script run.

    ``exit_code`` is None when the run hit the deadline; a timeout is never
    reported as an exit code.
    """

    exit_code: Optional[int]
    output: str
    timed_out: bool = False
    duration: float = 0.0


class Executor:
    """Runs ``<interpreter> <script> <args>`` in the container.

    The deadline is enforced inside the container by ``timeout``, so the
    script is stopped there and cannot keep changing files after the attempt
    is over. The local client gets a longer bound as a backstop in case the
    container stops answering.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        clock: Clock,
        interpreter: str = "bash",
        kill_after: float = 5,
        client_grace: float = 10,
    ):
        self.runtime = runtime
        self.clock = clock
        self.interpreter = interpreter
        self.kill_after = kill_after
        self.client_grace = client_grace

    def command(self, guest_script_path: str, args: Sequence[str], timeout: float) -> List[str]:
        return [
            "timeout",
            f"--kill-after={self.kill_after:g}",
            f"{timeout:g}",
            self.interpreter,
            guest_script_path,
            *args,
        ]

    def run(
        self,
        container: Container,
        guest_script_path: str,
        args: Sequence[str],
        timeout: float,
    ) -> ExecutionResult:
        argv = self.command(guest_script_path, args, timeout)
        container.state = ContainerState.EXECUTING
        started = self.clock.monotonic()
        try:
            r = self.runtime.execute(
                container.name, argv, timeout=timeout + self.kill_after + self.client_grace
            )
        finally:
            container.state = ContainerState.READY
        duration = self.clock.monotonic() - started
        if r.timed_out or r.exit_code in GUEST_TIMEOUT_CODES:
            return ExecutionResult(exit_code=None, output=r.output, timed_out=True, duration=duration)
        # A client that could not start at all has no exit code; report it as 127.
        exit_code = r.exit_code if r.exit_code is not None else 127
        return ExecutionResult(exit_code=exit_code, output=r.output, duration=duration)
