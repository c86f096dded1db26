"""Pass reports and the JSON-lines progress log."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from globecrawl.errors import PersistenceError
from globecrawl.models import Region

REGION_FAILURES = frozenset({"connection_failed", "session_failed"})


@dataclass
class PassReport:
    """Outcome of one ids/titles/thumbnails pass."""

    pass_name: str
    regions_processed: list[Region] = field(default_factory=list)
    regions_skipped: dict[Region, str] = field(default_factory=dict)
    units_saved: int = 0
    units_failed: int = 0
    no_name: int = 0
    completed: bool = False

    @property
    def healthy(self) -> bool:
        """Completed, and every selected region was either crawled or had nothing to do."""

        return self.completed and not any(
            reason in REGION_FAILURES for reason in self.regions_skipped.values()
        )

    def summary(self) -> str:
        skipped = ", ".join(f"{region}={reason}" for region, reason in self.regions_skipped.items())
        return (
            f"pass={self.pass_name} processed={len(self.regions_processed)} "
            f"skipped=[{skipped}] saved={self.units_saved} failed={self.units_failed} "
            f"no_name={self.no_name} completed={self.completed}"
        )


@dataclass
class ProgressLog:
    """Appends structured crawl events to a JSON-lines file."""

    run_id: str
    log_path: Path

    def __post_init__(self) -> None:
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create progress log directory {self.log_path.parent}: {exc}") from exc

    def record(self, event_type: str, pass_name: str, **details: Any) -> None:
        entry = {
            "ts": time.time(),
            "run_id": self.run_id,
            "pass": pass_name,
            "event": event_type,
            "details": details,
        }
        try:
            with self.log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as exc:
            raise PersistenceError(f"Cannot append to progress log {self.log_path}: {exc}") from exc
