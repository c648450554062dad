"""
Progress reporting for facecloak.

Video frames account for the first 90% of the progress range; the rest is
reserved for finalizing the output. Reported values never decrease and
frame updates are throttled so observers are not flooded.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class ProgressReporter:
    """Thread-safe, monotonic, throttled progress reporter."""

    def __init__(self, callback: Optional[ProgressCallback] = None,
                 interval_frames: int = 10, video_share: float = 0.9):
        self.callback = callback
        self.interval_frames = max(1, interval_frames)
        self.video_share = video_share
        self._last = 0.0
        self._lock = threading.Lock()

    @property
    def last_reported(self) -> float:
        return self._last

    def report(self, value: float):
        """Report a fraction, clamped to [0, 1] and to the last reported value."""
        value = min(1.0, max(0.0, value))
        with self._lock:
            if value < self._last:
                return
            self._last = value
            if self.callback is not None:
                self.callback(value)

    def video_progress(self, processed_frames: int, total_frames: int):
        """Report video progress after `processed_frames` frames."""
        total = max(1, total_frames)
        if processed_frames % self.interval_frames != 0 and processed_frames != total:
            return
        self.report(min(processed_frames / total, 1.0) * self.video_share)

    def complete(self):
        self.report(1.0)
