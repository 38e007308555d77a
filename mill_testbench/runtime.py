"""Container runtime contract and its LXD binding.

The harness only talks to the runtime through ``ContainerRuntime``. The
``LxdRuntime`` binding drives the ``lxc`` client. Every command is an
argument list handed to ``subprocess`` without a shell.
"""

from __future__ import annotations

import grp
import os
import pwd
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence


@dataclass
class RuntimeResult:
    """Result from a runtime command."""
    ok: bool
    exit_code: Optional[int]
    output: str
    timed_out: bool = False


class ContainerRuntime(Protocol):
    """What the harness needs from a container runtime."""

    def check_requirements(self) -> List[str]:
        ...

    def exists(self, name: str) -> bool:
        ...

    def launch(self, image: str, name: str, storage_pool: Optional[str] = None) -> RuntimeResult:
        ...

    def execute(self, name: str, argv: Sequence[str], timeout: Optional[float] = None) -> RuntimeResult:
        ...

    def mount(self, name: str, device: str, host_path: str, guest_path: str) -> RuntimeResult:
        ...

    def snapshot(self, name: str, label: str) -> RuntimeResult:
        ...

    def restore(self, name: str, label: str) -> RuntimeResult:
        ...

    def diff(self, name: str, label: str) -> RuntimeResult:
        ...

    def destroy(self, name: str) -> RuntimeResult:
        ...

    def inspection_hint(self, name: str) -> str:
        ...


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_command(argv: Sequence[str], timeout: Optional[float] = None) -> RuntimeResult:
    """Run a command, merging stderr into stdout in write order.

    On timeout the child is killed and whatever it wrote so far is kept.

    Args:
        argv: Program and arguments.
        timeout: Wall-clock bound in seconds, or None for no bound.

    Returns:
        RuntimeResult. ``exit_code`` is None when the command timed out or
        could not be started.
    """
    try:
        p = subprocess.run(
            list(argv),
            shell=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        return RuntimeResult(
            ok=False,
            exit_code=None,
            output=_decode(e.output),
            timed_out=True,
        )
    except FileNotFoundError:
        return RuntimeResult(
            ok=False,
            exit_code=None,
            output=f"Command not found: {argv[0]}",
        )
    except OSError as e:
        return RuntimeResult(
            ok=False,
            exit_code=None,
            output=f"Could not run {argv[0]}: {e}",
        )
    return RuntimeResult(
        ok=p.returncode == 0,
        exit_code=p.returncode,
        output=_decode(p.stdout),
    )


class LxdRuntime:
    """ContainerRuntime backed by the ``lxc`` command-line client."""

    def __init__(self, lxc: str = "lxc", command_timeout: float = 600):
        self.lxc = lxc
        self.command_timeout = command_timeout

    def _lxc(self, *args: str, timeout: Optional[float] = None) -> RuntimeResult:
        return run_command([self.lxc, *args], timeout=timeout or self.command_timeout)

    def check_requirements(self) -> List[str]:
        problems = []
        if shutil.which(self.lxc) is None:
            problems.append(f"Missing required command: {self.lxc}")
        user = pwd.getpwuid(os.getuid()).pw_name
        if user != "root" and not _user_in_group(user, "lxd"):
            problems.append(f"User '{user}' is not in the lxd group.")
        return problems

    def exists(self, name: str) -> bool:
        return self._lxc("info", name, timeout=60).ok

    def launch(self, image: str, name: str, storage_pool: Optional[str] = None) -> RuntimeResult:
        args = ["launch", image, name]
        if storage_pool:
            args += ["--storage", storage_pool]
        return self._lxc(*args)

    def execute(self, name: str, argv: Sequence[str], timeout: Optional[float] = None) -> RuntimeResult:
        # timeout=None here means unbounded, so bypass the client default.
        return run_command([self.lxc, "exec", name, "--", *argv], timeout=timeout)

    def mount(self, name: str, device: str, host_path: str, guest_path: str) -> RuntimeResult:
        return self._lxc(
            "config", "device", "add", name, device, "disk",
            f"source={host_path}", f"path={guest_path}",
        )

    def snapshot(self, name: str, label: str) -> RuntimeResult:
        return self._lxc("snapshot", name, label)

    def restore(self, name: str, label: str) -> RuntimeResult:
        return self._lxc("restore", name, label)

    def diff(self, name: str, label: str) -> RuntimeResult:
        return self._lxc("diff", name, label)

    def destroy(self, name: str) -> RuntimeResult:
        return self._lxc("delete", name, "--force")

    def inspection_hint(self, name: str) -> str:
        return f"lxc exec {name} -- bash"


def _user_in_group(user: str, group: str) -> bool:
    try:
        g = grp.getgrnam(group)
    except KeyError:
        return False
    if user in g.gr_mem:
        return True
    return pwd.getpwnam(user).pw_gid == g.gr_gid
