"""Progress handle for segmentation: polled snapshot plus optional callback, strictly increasing in [0, 100]."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class ProgressStatus(str, Enum):
    idle = "idle"
    processing_video = "processing_video"
    complete = "complete"
    error = "error"


@dataclass(frozen=True)
class ProgressSnapshot:
    status: ProgressStatus
    progress: float
    message: str | None = None


# Anything below 100 is reserved for in-flight work; 100 is reached only via complete().
MAX_IN_FLIGHT_PERCENT = 99.9


class ProgressTracker:
    """
    Monotonic progress for one segmentation call.

    update() ignores values that do not strictly increase and clamps in-flight values below 100,
    so observers (the optional callback, or anyone polling snapshot()) see a strictly increasing
    sequence that reaches 100 only on success. The callback runs on the thread calling update().
    """

    def __init__(self, on_progress: Callable[[float], None] | None = None) -> None:
        self._on_progress = on_progress
        self._lock = threading.Lock()
        self._percent = 0.0
        self._status = ProgressStatus.idle
        self._message: str | None = None

    @property
    def percent(self) -> float:
        with self._lock:
            return self._percent

    @property
    def status(self) -> ProgressStatus:
        with self._lock:
            return self._status

    def start(self, message: str | None = None) -> None:
        with self._lock:
            self._status = ProgressStatus.processing_video
            self._message = message

    def update(self, percent: float, message: str | None = None) -> bool:
        """Record progress; returns True when the value was accepted (strictly greater)."""
        value = max(0.0, min(MAX_IN_FLIGHT_PERCENT, float(percent)))
        with self._lock:
            if self._status in (ProgressStatus.complete, ProgressStatus.error):
                return False
            if value <= self._percent:
                return False
            self._percent = value
            self._status = ProgressStatus.processing_video
            if message is not None:
                self._message = message
        if self._on_progress is not None:
            self._on_progress(value)
        return True

    def complete(self) -> None:
        with self._lock:
            if self._status is ProgressStatus.complete:
                return
            self._percent = 100.0
            self._status = ProgressStatus.complete
            self._message = None
        if self._on_progress is not None:
            self._on_progress(100.0)

    def fail(self, message: str) -> None:
        with self._lock:
            self._status = ProgressStatus.error
            self._message = message

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(status=self._status, progress=self._percent, message=self._message)
