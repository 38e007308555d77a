"""What happens to the container once the run is over."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .cycle import INITIAL_SNAPSHOT
from .lifecycle import Container, ContainerLifecycle
from .log import RunLog
from .report import ReportWriter


class Disposition(Enum):
    DESTROYED = "destroyed"
    PRESERVED = "preserved"
    ABSENT = "absent"
    """No container was ever launched, so there was nothing to act on."""


@dataclass(frozen=True)
class DispositionResult:
    disposition: Disposition
    diff_report: Optional[str] = None
    cleanup_ok: bool = True


def decide_disposition(succeeded: bool, interactive: bool) -> Disposition:
    """Destroy only a successful, non-interactive run; keep everything else."""
    if succeeded and not interactive:
        return Disposition.DESTROYED
    return Disposition.PRESERVED


class DispositionPolicy:
    def __init__(
        self,
        lifecycle: ContainerLifecycle,
        reports: ReportWriter,
        log: RunLog,
        snapshot_label: str = INITIAL_SNAPSHOT,
    ):
        self.lifecycle = lifecycle
        self.reports = reports
        self.log = log
        self.snapshot_label = snapshot_label

    def apply(self, container: Optional[Container], succeeded: bool, interactive: bool) -> DispositionResult:
        if container is None:
            self.log.info("No container was created, nothing to clean up.")
            result = DispositionResult(Disposition.ABSENT)
        elif decide_disposition(succeeded, interactive) is Disposition.DESTROYED:
            result = self._destroy(container)
        else:
            result = self._preserve(container, succeeded)
        self.log.event({
            "phase": "disposition",
            "disposition": result.disposition.value,
            "diff_report": result.diff_report,
            "cleanup_ok": result.cleanup_ok,
        })
        return result

    def _destroy(self, container: Container) -> DispositionResult:
        self.log.info(f"Cleaning up container '{container.name}'...")
        ok = self.lifecycle.destroy(container)
        if ok:
            self.log.success("Container deleted.")
        return DispositionResult(Disposition.DESTROYED, cleanup_ok=ok)

    def _preserve(self, container: Container, succeeded: bool) -> DispositionResult:
        if succeeded:
            self.log.info(f"Interactive mode: container '{container.name}' is kept.")
        else:
            self.log.warn(f"The test failed. Container '{container.name}' is kept for debugging.")
        diff_text = self.lifecycle.diff(container, self.snapshot_label)
        path = self.reports.write_diff(container.name, diff_text)
        self.log.info(f"Change report written to: {path}")
        self.log.info("Useful inspection commands:")
        self.log.info(f"  Shell access: {self.lifecycle.runtime.inspection_hint(container.name)}")
        return DispositionResult(Disposition.PRESERVED, diff_report=path)
