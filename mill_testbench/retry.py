"""Bounded retry with a fixed delay.

The same primitive drives the network-readiness probe and the attempt loop,
with different limits.
"""

from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from .clock import Clock


@dataclass(frozen=True)
class RetryPolicy:
    """At most ``max_attempts`` tries, ``delay`` seconds apart."""

    max_attempts: int
    delay: float = 0.0

    def __post_init__(self) -> None:
        if int(self.max_attempts) < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if float(self.delay) < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    def attempts(
        self,
        clock: Clock,
        on_wait: Optional[Callable[[int, float], None]] = None,
    ) -> Iterator[int]:
        """Yield attempt numbers 1..max_attempts.

        The delay is slept only when the consumer asks for the next attempt,
        so breaking out of the loop never waits.
        """
        for n in range(1, int(self.max_attempts) + 1):
            if n > 1:
                if on_wait is not None:
                    on_wait(n, float(self.delay))
                clock.sleep(float(self.delay))
            yield n


def retry_until(
    policy: RetryPolicy,
    clock: Clock,
    probe: Callable[[int], bool],
    on_failure: Optional[Callable[[int], None]] = None,
) -> bool:
    """Call ``probe`` until it returns True or the policy is used up."""
    for n in policy.attempts(clock):
        if probe(n):
            return True
        if on_failure is not None:
            on_failure(n)
    return False
