"""Scripted in-memory container runtime for tests."""

from typing import List, Optional, Sequence

from mill_testbench.runtime import RuntimeResult


def ok(output: str = "") -> RuntimeResult:
    return RuntimeResult(ok=True, exit_code=0, output=output)


def failed(output: str = "", exit_code: int = 1) -> RuntimeResult:
    return RuntimeResult(ok=False, exit_code=exit_code, output=output)


def script(exit_code: int, output: str) -> RuntimeResult:
    return RuntimeResult(ok=exit_code == 0, exit_code=exit_code, output=output)


def timed_out(output: str = "") -> RuntimeResult:
    return RuntimeResult(ok=False, exit_code=None, output=output, timed_out=True)


class FakeRuntime:
    """Records every call and answers from scripted results.

    Script runs (argv holding ``bash``) consume ``script_results`` in order and repeat
    the last one once the list is down to a single entry. Restore and destroy
    consume their boolean lists the same way and succeed by default.
    ``destroy_error`` and ``diff_error`` are raised from those calls when set.
    """

    def __init__(
        self,
        script_results: Optional[Sequence[RuntimeResult]] = None,
        *,
        problems: Optional[List[str]] = None,
        leftover: bool = False,
        launch_ok: bool = True,
        probe_failures: int = 0,
        mount_ok: bool = True,
        script_visible: bool = True,
        snapshot_ok: bool = True,
        restore_results: Optional[Sequence[bool]] = None,
        destroy_results: Optional[Sequence[bool]] = None,
        diff_result: Optional[RuntimeResult] = None,
        destroy_error: Optional[Exception] = None,
        diff_error: Optional[Exception] = None,
    ):
        self.script_results = list(script_results or [script(0, "")])
        self.problems = list(problems or [])
        self.present = leftover
        self.launch_ok = launch_ok
        self.probe_failures = probe_failures
        self.mount_ok = mount_ok
        self.script_visible = script_visible
        self.snapshot_ok = snapshot_ok
        self.restore_results = list(restore_results or [])
        self.destroy_results = list(destroy_results or [])
        self.diff_result = diff_result or ok("C /etc/hostname\nA /opt/app\n")
        self.destroy_error = destroy_error
        self.diff_error = diff_error
        self.calls: List[tuple] = []

    @staticmethod
    def _next(results: list, default):
        if not results:
            return default
        if len(results) == 1:
            return results[0]
        return results.pop(0)

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    def script_runs(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "execute" and "bash" in c[2]]

    def methods(self) -> List[str]:
        return [c[0] for c in self.calls]

    def check_requirements(self) -> List[str]:
        return list(self.problems)

    def exists(self, name: str) -> bool:
        self.calls.append(("exists", name))
        return self.present

    def launch(self, image: str, name: str, storage_pool: Optional[str] = None) -> RuntimeResult:
        self.calls.append(("launch", image, name, storage_pool))
        if not self.launch_ok:
            return failed("Error: Failed instance creation")
        self.present = True
        return ok(f"Launching {name}")

    def execute(self, name: str, argv: Sequence[str], timeout: Optional[float] = None) -> RuntimeResult:
        argv = tuple(argv)
        self.calls.append(("execute", name, argv, timeout))
        if argv[:1] == ("apt-get",):
            if self.probe_failures > 0:
                self.probe_failures -= 1
                return failed("Temporary failure resolving 'deb.debian.org'", 100)
            return ok()
        if argv[:1] == ("test",):
            return ok() if self.script_visible else failed()
        return self._next(self.script_results, script(0, ""))

    def mount(self, name: str, device: str, host_path: str, guest_path: str) -> RuntimeResult:
        self.calls.append(("mount", name, device, host_path, guest_path))
        return ok() if self.mount_ok else failed("Error: Invalid devices")

    def snapshot(self, name: str, label: str) -> RuntimeResult:
        self.calls.append(("snapshot", name, label))
        return ok() if self.snapshot_ok else failed("Error: snapshot failed")

    def restore(self, name: str, label: str) -> RuntimeResult:
        self.calls.append(("restore", name, label))
        return ok() if self._next(self.restore_results, True) else failed("Error: restore failed")

    def diff(self, name: str, label: str) -> RuntimeResult:
        self.calls.append(("diff", name, label))
        if self.diff_error is not None:
            raise self.diff_error
        return self.diff_result

    def destroy(self, name: str) -> RuntimeResult:
        self.calls.append(("destroy", name))
        if self.destroy_error is not None:
            raise self.destroy_error
        if self._next(self.destroy_results, True):
            self.present = False
            return ok()
        return failed("Error: device or resource busy")

    def inspection_hint(self, name: str) -> str:
        return f"fake exec {name}"
