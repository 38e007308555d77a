"""Lifecycle of the single named test container.

Create it fresh, take the baseline snapshot, roll back between attempts,
diff against the baseline for forensics, and delete it at the end.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .clock import Clock
from .errors import CleanupFailure, RestoreError, SetupError, SnapshotError
from .log import RunLog
from .retry import RetryPolicy, retry_until
from .runtime import ContainerRuntime

SCRIPTS_DEVICE = "scripts"


class ContainerState(Enum):
    ABSENT = "absent"
    LAUNCHING = "launching"
    READY = "ready"
    EXECUTING = "executing"
    RESTORING = "restoring"
    DISPOSED = "disposed"


@dataclass
class Container:
    name: str
    image: str
    state: ContainerState = ContainerState.ABSENT


@dataclass(frozen=True)
class Snapshot:
    container: str
    label: str


class ContainerLifecycle:
    """Owns exactly one named container for the duration of a run."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        log: RunLog,
        clock: Clock,
        *,
        guest_script_dir: str = "/opt/scripts",
        storage_pool: Optional[str] = "default",
        network_probe: Sequence[str] = ("apt-get", "-qq", "update"),
        network_retry: RetryPolicy = RetryPolicy(max_attempts=5, delay=3),
        probe_timeout: float = 120,
        settle_delay: float = 2,
        destroy_retry_delay: float = 2,
    ):
        self.runtime = runtime
        self.log = log
        self.clock = clock
        self.guest_script_dir = guest_script_dir
        self.storage_pool = storage_pool
        self.network_probe = tuple(network_probe)
        self.network_retry = network_retry
        self.probe_timeout = probe_timeout
        self.settle_delay = settle_delay
        self.destroy_retry_delay = destroy_retry_delay
        self.container: Optional[Container] = None

    def guest_path(self, script_name: str) -> str:
        return posixpath.join(self.guest_script_dir, script_name)

    def prepare(self, name: str, image: str, host_script_dir: str, script_name: str) -> Container:
        """Launch a fresh container with the script directory mounted.

        Raises:
            SetupError: launch, network readiness or mount verification failed.
        """
        stale = False
        if self.runtime.exists(name):
            self.log.info(f"Removing leftover container '{name}' from a previous run...")
            if not self.destroy(Container(name=name, image=image, state=ContainerState.READY)):
                stale = True
                self.log.warn(f"Leftover container '{name}' could not be removed, continuing.")
            self.clock.sleep(1)

        container = Container(name=name, image=image, state=ContainerState.LAUNCHING)
        self.log.info(f"Creating container '{name}' from {image}...")
        r = self.runtime.launch(image, name, storage_pool=self.storage_pool)
        self.log.raw(r.output)
        if not r.ok:
            # A half-created container may still be there; let disposition see it.
            # A leftover that survived removal belongs to another run.
            if not stale and self.runtime.exists(name):
                self.container = container
            raise SetupError(f"Could not launch container '{name}' from {image}: {r.output.strip()}")
        self.container = container

        self.log.info("Checking network connectivity...")

        def probe(_n: int) -> bool:
            return self.runtime.execute(name, self.network_probe, timeout=self.probe_timeout).ok

        def waiting(n: int) -> None:
            self.log.info(f"Waiting for network (attempt {n}/{self.network_retry.max_attempts})...")

        if not retry_until(self.network_retry, self.clock, probe, on_failure=waiting):
            raise SetupError("Network unreachable from inside the container.")
        self.log.success("Network connectivity confirmed.")

        self.log.info(f"Mounting script directory: {host_script_dir} -> {self.guest_script_dir}")
        m = self.runtime.mount(name, SCRIPTS_DEVICE, host_script_dir, self.guest_script_dir)
        self.log.raw(m.output)
        if not m.ok:
            raise SetupError(f"Could not mount {host_script_dir} into '{name}': {m.output.strip()}")
        guest = self.guest_path(script_name)
        if not self.runtime.execute(name, ["test", "-f", guest], timeout=self.probe_timeout).ok:
            raise SetupError(f"Script not visible in the container at {guest}.")

        container.state = ContainerState.READY
        return container

    def snapshot(self, container: Container, label: str) -> Snapshot:
        self.log.info(f"Creating snapshot '{label}'...")
        r = self.runtime.snapshot(container.name, label)
        self.log.raw(r.output)
        if not r.ok:
            raise SnapshotError(f"Snapshot '{label}' of '{container.name}' failed: {r.output.strip()}")
        return Snapshot(container=container.name, label=label)

    def restore(self, container: Container, label: str) -> None:
        self.log.info(f"Restoring container to snapshot '{label}'...")
        container.state = ContainerState.RESTORING
        r = self.runtime.restore(container.name, label)
        self.log.raw(r.output)
        if not r.ok:
            raise RestoreError(f"Restore of '{container.name}' to '{label}' failed: {r.output.strip()}")
        self.clock.sleep(self.settle_delay)
        container.state = ContainerState.READY

    def diff(self, container: Container, label: str) -> str:
        try:
            r = self.runtime.diff(container.name, label)
        except Exception as e:
            self.log.warn(f"Diff against '{label}' could not be produced: {e}")
            return ""
        if not r.ok:
            self.log.warn(f"Diff against '{label}' could not be produced: {r.output.strip()}")
        return r.output

    def destroy(self, container: Container) -> bool:
        """Delete the container, retrying once. Never raises."""
        try:
            self._destroy(container)
        except CleanupFailure as e:
            self.log.error(str(e))
            return False
        container.state = ContainerState.DISPOSED
        return True

    def _delete_once(self, name: str) -> bool:
        try:
            r = self.runtime.destroy(name)
        except Exception as e:
            self.log.raw(f"Delete of '{name}' raised {type(e).__name__}: {e}")
            return False
        self.log.raw(r.output)
        return r.ok

    def _destroy(self, container: Container) -> None:
        if self._delete_once(container.name):
            return
        self.clock.sleep(self.destroy_retry_delay)
        if not self._delete_once(container.name):
            raise CleanupFailure(
                f"Could not delete container '{container.name}'; it may still be present."
            )
