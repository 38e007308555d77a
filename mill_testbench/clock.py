import hashlib
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Protocol


class Clock(Protocol):
    def now_utc(self) -> datetime:
        ...

    def time(self) -> float:
        ...

    def monotonic(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


@dataclass
class FrozenClock:
    """Clock that only advances when slept on. Used by tests."""

    start_time_utc: datetime
    _elapsed: float = 0.0

    def now_utc(self) -> datetime:
        return self.start_time_utc + timedelta(seconds=self._elapsed)

    def time(self) -> float:
        return float(self.now_utc().timestamp())

    def monotonic(self) -> float:
        return float(self._elapsed)

    def sleep(self, seconds: float) -> None:
        self._elapsed += max(float(seconds), 0.0)

    @property
    def slept(self) -> float:
        return float(self._elapsed)


@dataclass
class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def time(self) -> float:
        return float(time.time())

    def monotonic(self) -> float:
        return float(time.monotonic())

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def _stable_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_run_id(
    *,
    clock: Clock,
    seed_material: Dict[str, Any],
) -> str:
    dt = clock.now_utc()
    ts = dt.strftime("%Y%m%d_%H%M%S")
    h = hashlib.sha256(_stable_json(seed_material).encode("utf-8", errors="ignore")).hexdigest()[:8]
    return f"run_{ts}_{h}"
