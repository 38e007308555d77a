"""Forensic artifacts written next to the run log.

- diff_<container>_<HHMMSS>.txt (filesystem changes since the baseline
  snapshot, only when the container is preserved)
- summary_<stem>.json (outcome, attempts, disposition)
"""

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .clock import Clock
from .log import ensure_dir


@dataclass
class ReportConfig:
    """Configuration for report export."""

    output_dir: str
    include_summary: bool = True


class ReportWriter:
    """Writes per-run report files."""

    def __init__(self, config: ReportConfig, clock: Clock):
        self.config = config
        self.clock = clock

    def write_diff(self, container_name: str, diff_text: str) -> str:
        """Persist a diff report and return its path.

        The file is written even when the diff is empty so that every
        preserved run leaves a report behind.
        """
        ensure_dir(self.config.output_dir)
        stamp = self.clock.now_utc().strftime("%H%M%S")
        path = os.path.join(self.config.output_dir, f"diff_{container_name}_{stamp}.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write(diff_text or "")
        return path

    def write_summary(self, stem: str, summary: Dict[str, Any]) -> Optional[str]:
        """Persist the run summary as JSON.

        Args:
            stem: Run log stem, reused so the summary pairs with its log.
            summary: JSON-serializable outcome description.

        Returns:
            Path to the summary file, or None when summaries are disabled.
        """
        if not self.config.include_summary:
            return None
        ensure_dir(self.config.output_dir)
        path = os.path.join(self.config.output_dir, f"summary_{stem}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, default=str)
        return path
