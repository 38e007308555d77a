"""Error taxonomy for the test bench.

Only the fatal kinds are exceptions. A failed attempt is recorded as an
``AttemptStatus`` and retried; running out of attempts is the
``RunStatus.EXHAUSTED`` outcome.
"""


class HarnessError(Exception):
    """Base class for fatal harness errors."""

    category = "harness"


class SetupError(HarnessError):
    """Runtime, image, network or script mount not usable."""

    category = "setup"


class SnapshotError(HarnessError):
    """The baseline snapshot could not be taken."""

    category = "snapshot"


class RestoreError(HarnessError):
    """The container could not be rolled back to its baseline snapshot."""

    category = "restore"


class CleanupFailure(HarnessError):
    """The container could not be deleted. Logged, never escalated."""

    category = "cleanup"
