"""Execution metrics collection."""

import threading
import time
from typing import Optional

from ..models import Metrics


class MetricsCollector:
    """Accumulates timings of a single load call.

    One collector is created per call and never reused. Every accessor holds
    the lock so that a snapshot taken from another thread is consistent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start = time.monotonic()
        self._fetch_start: Optional[float] = None
        self._build_start: Optional[float] = None
        self._fetch_duration = 0.0
        self._build_duration = 0.0
        self._fetch_attempts = 0
        self._digest_pinned = False
        self._success = False

    def start_fetch(self) -> None:
        with self._lock:
            self._fetch_start = time.monotonic()

    def end_fetch(self, attempts: int, digest_pinned: bool) -> None:
        with self._lock:
            if self._fetch_start is not None:
                self._fetch_duration += time.monotonic() - self._fetch_start
                self._fetch_start = None
            self._fetch_attempts = attempts
            self._digest_pinned = digest_pinned

    def start_build(self) -> None:
        with self._lock:
            self._build_start = time.monotonic()

    def end_build(self) -> None:
        with self._lock:
            if self._build_start is not None:
                self._build_duration += time.monotonic() - self._build_start
                self._build_start = None

    def mark_success(self, success: bool) -> None:
        with self._lock:
            self._success = success

    def snapshot(self) -> Metrics:
        """Produce an immutable copy; total time is measured from creation."""
        with self._lock:
            return Metrics(
                fetch_duration=self._fetch_duration,
                build_duration=self._build_duration,
                total_duration=time.monotonic() - self._start,
                fetch_attempts=self._fetch_attempts,
                digest_pinned=self._digest_pinned,
                success=self._success,
            )
