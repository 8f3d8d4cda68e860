"""
Cost tracking for provider calls.

Events are queued and written by a background daemon thread to a JSON-lines
file; ``track`` never blocks and the engine never waits for a write. A
failed write is logged and dropped.

Usage:
    from adstitch.cost_tracking import get_cost_tracker

    get_cost_tracker().track("video-generation", 0.15, {"segmentId": 0})
"""

import json
import queue
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .config import get_settings
from .logger import logger

# Approximate unit costs (USD)
COST_VIDEO_GENERATION = 0.15
COST_VOICE_SYNTHESIS = 0.05
COST_CONTINUITY_RECUT = 0.03


@dataclass
class CostEvent:
    operation: str
    amount: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class CostTracker:
    """Fire-and-forget cost event sink with a single writer thread."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or get_settings().paths.data_dir / "costs.jsonl")
        self._queue: "queue.Queue[CostEvent]" = queue.Queue()
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="cost-tracker", daemon=True)
                self._worker.start()

    def track(self, operation: str, amount: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._queue.put(CostEvent(operation=operation, amount=amount, metadata=dict(metadata or {})))
        self._ensure_worker()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._write(event)
            except (OSError, TypeError, ValueError) as e:
                logger.warning(f"[Cost] Could not record {event.operation}: {e}")
            finally:
                self._queue.task_done()

    def _write(self, event: CostEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(event)) + "\n")

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events are written (tests and shutdown only)."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        return True

    def summary(self) -> Dict[str, Any]:
        """Total and per-operation spend from the event log."""
        totals: Dict[str, float] = {}
        count = 0
        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    event = json.loads(line)
                    totals[event["operation"]] = totals.get(event["operation"], 0.0) + float(event["amount"])
                    count += 1
        return {
            "total": round(sum(totals.values()), 4),
            "byOperation": {k: round(v, 4) for k, v in totals.items()},
            "events": count,
        }


_tracker: Optional[CostTracker] = None
_tracker_lock = threading.Lock()


def get_cost_tracker() -> CostTracker:
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = CostTracker()
        return _tracker
