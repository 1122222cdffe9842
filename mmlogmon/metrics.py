"""Thread-safe counters for dispatch outcomes."""

import logging
import threading

logger = logging.getLogger(__name__)


class DispatchMetrics:
    """Counts entries by outcome name, plus refusal retries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._outcomes: dict[str, int] = {}
        self._retries = 0

    def record(self, outcome: str):
        with self._lock:
            self._outcomes[outcome] = self._outcomes.get(outcome, 0) + 1

    def record_retry(self):
        with self._lock:
            self._retries += 1

    def count(self, outcome: str) -> int:
        with self._lock:
            return self._outcomes.get(outcome, 0)

    @property
    def retries(self) -> int:
        with self._lock:
            return self._retries

    def snapshot(self) -> dict:
        """Point-in-time copy of every counter."""
        with self._lock:
            snapshot = dict(self._outcomes)
            snapshot["retries"] = self._retries
            snapshot["total"] = sum(self._outcomes.values())
            return snapshot

    def log_summary(self):
        snap = self.snapshot()
        logger.info(
            "Dispatch summary: total=%d delivered=%d failed=%d retries=%d skipped=%d",
            snap["total"],
            snap.get("delivered", 0),
            snap.get("failed", 0) + snap.get("unserializable", 0),
            snap["retries"],
            snap.get("excluded", 0) + snap.get("no_begin", 0) + snap.get("blank", 0),
        )
