"""
Process-local counters for errors and uploads, reported by /health.

The collector is an explicit instance held on ``app.state``; tests build
their own.
"""

from __future__ import annotations

import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

ERROR_CATEGORIES = ("database", "upload", "auth", "other")
ERROR_WARNING_THRESHOLD = 100


class MetricsCollector:
    """Thread-safe counters."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._errors: dict[str, int] = {}
        self._uploads: dict[str, int] = {}
        self.reset()

    def track_error(self, category: str = "other") -> None:
        """Count an error; unknown categories are counted as ``other``."""
        if category not in ERROR_CATEGORIES:
            category = "other"
        with self._lock:
            self._errors[category] += 1

    def track_upload(self, outcome: str = "stored") -> None:
        """Count an upload by outcome: stored, rejected or orphaned."""
        with self._lock:
            self._uploads[outcome] = self._uploads.get(outcome, 0) + 1

    def uptime(self) -> float:
        return self._clock() - self._started

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of the current counters."""
        with self._lock:
            errors = dict(self._errors)
            uploads = dict(self._uploads)
        errors["total"] = sum(errors.values())
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime(), 3),
            "pid": os.getpid(),
            "errors": errors,
            "uploads": uploads,
            "warnings": {"errors": errors["total"] > ERROR_WARNING_THRESHOLD},
        }

    def reset(self) -> None:
        with self._lock:
            self._errors = {category: 0 for category in ERROR_CATEGORIES}
            self._uploads = {"stored": 0, "rejected": 0, "orphaned": 0}
