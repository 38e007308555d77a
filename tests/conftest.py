import io
from datetime import datetime, timezone

import pytest

from mill_testbench.clock import FrozenClock
from mill_testbench.log import RunLog


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def run_log(tmp_path, clock):
    return RunLog(
        str(tmp_path / "logs"),
        "test-run",
        clock,
        stream=io.StringIO(),
        err_stream=io.StringIO(),
        color=False,
    )


@pytest.fixture
def script_file(tmp_path):
    path = tmp_path / "scripts" / "TheGrain.sh"
    path.parent.mkdir()
    path.write_text("#!/usr/bin/env bash\necho ok\n")
    return path
