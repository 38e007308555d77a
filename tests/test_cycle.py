"""Tests for the attempt/retry state machine."""

import pytest

from _fakes import FakeRuntime, script, timed_out
from mill_testbench.cycle import (
    AttemptStatus,
    CycleState,
    TestCycleRunner,
    classify,
)
from mill_testbench.errors import RestoreError
from mill_testbench.executor import Executor
from mill_testbench.lifecycle import Container, ContainerLifecycle, ContainerState
from mill_testbench.retry import RetryPolicy
from mill_testbench.validator import validate_output

GUEST = "/opt/scripts/TheGrain.sh"


def make_runner(runtime, run_log, clock, max_attempts=3, delay=10, timeout=60, patterns=("OK",)):
    lifecycle = ContainerLifecycle(runtime, run_log, clock, settle_delay=0)
    return TestCycleRunner(
        lifecycle=lifecycle,
        executor=Executor(runtime, clock),
        log=run_log,
        clock=clock,
        retry=RetryPolicy(max_attempts, delay),
        timeout=timeout,
        required_patterns=tuple(patterns),
        script_args=("--user", "admin"),
    )


def ready():
    return Container("rig", "img", ContainerState.READY)


class TestClassify:

    def test_both_conditions_required(self):
        passing = validate_output("OK", ["OK"])
        failing = validate_output("FAIL", ["OK"])
        assert classify(0, False, passing) is AttemptStatus.PASSED
        assert classify(0, False, failing) is AttemptStatus.MISSING_MARKERS
        assert classify(1, False, passing) is AttemptStatus.SCRIPT_ERROR
        assert classify(None, True, passing) is AttemptStatus.TIMED_OUT


class TestAttemptBounds:

    @pytest.mark.parametrize("n", [1, 2, 3, 5])
    def test_all_failing_runs_exactly_n_attempts(self, run_log, clock, n):
        rt = FakeRuntime([script(1, "E: failed")])
        runner = make_runner(rt, run_log, clock, max_attempts=n)
        attempts = runner.run(ready(), GUEST)
        assert len(attempts) == n
        assert len(rt.script_runs()) == n
        assert runner.state is CycleState.EXHAUSTED
        assert not runner.succeeded

    @pytest.mark.parametrize("n", [1, 2, 4])
    def test_restore_between_attempts_only(self, run_log, clock, n):
        rt = FakeRuntime([script(0, "FAIL")])
        runner = make_runner(rt, run_log, clock, max_attempts=n)
        runner.run(ready(), GUEST)
        assert rt.count("restore") == n - 1
        methods = [m for m in rt.methods() if m in ("restore", "execute")]
        assert methods[0] == "execute"
        for i, m in enumerate(methods[1:], start=1):
            if m == "restore":
                assert methods[i - 1] == "execute"
                assert methods[i + 1] == "execute"

    def test_delay_between_attempts_only(self, run_log, clock):
        rt = FakeRuntime([script(2, "")])
        make_runner(rt, run_log, clock, max_attempts=3, delay=10).run(ready(), GUEST)
        assert clock.slept == 20

    def test_success_stops_the_loop(self, run_log, clock):
        rt = FakeRuntime([script(1, "E"), script(0, "FAIL"), script(0, "OK done"), script(0, "OK")])
        runner = make_runner(rt, run_log, clock, max_attempts=5)
        attempts = runner.run(ready(), GUEST)
        assert [a.status for a in attempts] == [
            AttemptStatus.SCRIPT_ERROR,
            AttemptStatus.MISSING_MARKERS,
            AttemptStatus.PASSED,
        ]
        assert len(rt.script_runs()) == 3
        assert rt.count("restore") == 2
        assert runner.succeeded

    def test_first_attempt_success(self, run_log, clock):
        rt = FakeRuntime([script(0, "OK done")])
        runner = make_runner(rt, run_log, clock)
        attempts = runner.run(ready(), GUEST)
        assert len(attempts) == 1
        assert attempts[0].index == 1
        assert rt.count("restore") == 0
        assert clock.slept == 0


class TestFailureKinds:

    def test_markers_printed_with_nonzero_exit_is_failure(self, run_log, clock):
        rt = FakeRuntime([script(1, "OK but crashed")])
        runner = make_runner(rt, run_log, clock, max_attempts=1)
        attempts = runner.run(ready(), GUEST)
        assert attempts[0].status is AttemptStatus.SCRIPT_ERROR
        assert runner.state is CycleState.EXHAUSTED
        assert "reported error code 1" in run_log.err_stream.getvalue()

    def test_clean_exit_without_markers(self, run_log, clock):
        runner = make_runner(FakeRuntime([script(0, "FAIL")]), run_log, clock, max_attempts=1)
        attempts = runner.run(ready(), GUEST)
        assert attempts[0].status is AttemptStatus.MISSING_MARKERS
        assert attempts[0].validation.missing == ("OK",)
        assert "success markers are missing" in run_log.err_stream.getvalue()

    def test_timeout_is_distinct_and_consumes_one_attempt(self, run_log, clock):
        rt = FakeRuntime([timed_out("still installing..."), script(0, "OK")])
        runner = make_runner(rt, run_log, clock, max_attempts=3, timeout=5)
        attempts = runner.run(ready(), GUEST)
        first = attempts[0]
        assert first.status is AttemptStatus.TIMED_OUT
        assert first.exit_code is None
        assert first.timed_out
        assert rt.script_runs()[0][2][:3] == ("timeout", "--kill-after=5", "5")
        errors = run_log.err_stream.getvalue()
        assert "TIMEOUT" in errors
        assert "reported error code" not in errors
        assert len(attempts) == 2
        assert runner.succeeded

    def test_restore_failure_aborts_remaining_attempts(self, run_log, clock):
        rt = FakeRuntime([script(1, "E")], restore_results=[False])
        runner = make_runner(rt, run_log, clock, max_attempts=5)
        with pytest.raises(RestoreError):
            runner.run(ready(), GUEST)
        assert len(rt.script_runs()) == 1
        assert len(runner.attempts) == 1
        assert rt.count("restore") == 1


class TestRecords:

    def test_transitions_for_a_retry_then_success(self, run_log, clock):
        rt = FakeRuntime([timed_out(), script(0, "OK")])
        runner = make_runner(rt, run_log, clock)
        runner.run(ready(), GUEST)
        assert [t.to_state for t in runner.transitions] == [
            CycleState.ATTEMPTING,
            CycleState.TIMED_OUT,
            CycleState.RETRYING,
            CycleState.ATTEMPTING,
            CycleState.VALIDATING,
            CycleState.SUCCEEDED,
        ]
        assert runner.transitions[0].from_state is CycleState.IDLE

    def test_full_output_of_every_attempt_is_logged(self, run_log, clock):
        rt = FakeRuntime([script(1, "first attempt output"), script(0, "second attempt output OK")])
        make_runner(rt, run_log, clock).run(ready(), GUEST)
        with open(run_log.path, encoding="utf-8") as f:
            text = f.read()
        assert "first attempt output" in text
        assert "second attempt output OK" in text

    def test_attempts_are_immutable(self, run_log, clock):
        attempts = make_runner(FakeRuntime([script(0, "OK")]), run_log, clock).run(ready(), GUEST)
        with pytest.raises(AttributeError):
            attempts[0].exit_code = 5
