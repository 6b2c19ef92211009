"""Single-flight run state shared between the ingest task and status pollers.

The current `CrawlRun` is an immutable snapshot; writers replace it under a
lock, readers just take the reference, so a poller never sees a half-written
update.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class CrawlRun:
    state: RunState = RunState.IDLE
    progress: int = 0
    message: str = ""
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "progress": self.progress,
            "message": self.message,
            "result": self.result,
        }


class IngestionStatusTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._run = CrawlRun()

    def snapshot(self) -> CrawlRun:
        return self._run

    @property
    def running(self) -> bool:
        return self._run.state is RunState.RUNNING

    def try_start(self, message: str = "Starting crawl...") -> Tuple[bool, CrawlRun]:
        """Claim the run slot. Returns (False, current snapshot) if one is in flight."""
        with self._lock:
            if self._run.state is RunState.RUNNING:
                return False, self._run
            self._run = CrawlRun(state=RunState.RUNNING, progress=0, message=message)
            return True, self._run

    def update(self, *, progress: Optional[int] = None, message: Optional[str] = None) -> CrawlRun:
        with self._lock:
            if self._run.state is not RunState.RUNNING:
                return self._run
            changes: Dict[str, Any] = {}
            if progress is not None:
                changes["progress"] = max(0, min(100, int(progress)))
            if message is not None:
                changes["message"] = message
            self._run = replace(self._run, **changes)
            return self._run

    def complete(self, result: Dict[str, Any], message: str = "Crawl and save completed") -> CrawlRun:
        with self._lock:
            self._run = CrawlRun(state=RunState.COMPLETED, progress=100, message=message, result=result)
            return self._run

    def fail(self, error: str, message: str = "Crawl failed") -> CrawlRun:
        with self._lock:
            self._run = CrawlRun(state=RunState.ERROR, progress=0, message=message, result={"error": error})
            return self._run
