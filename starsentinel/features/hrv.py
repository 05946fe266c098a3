"""
Heart rate variability module for StarSentinel
Turns heartbeat timestamps and instantaneous BPM readings into rolling HRV metrics
"""

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from ..config import SentinelConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HRVSnapshot:
    """Metrics derived from the current RR window. sdnn/rmssd read 0 until defined."""

    heart_rate_bpm: int = 0
    mean_rr: float = 0.0
    sdnn: float = 0.0
    rmssd: float = 0.0
    interval_count: int = 0


class HRVProcessor:
    """
    Calculates heart rate variability metrics from heart beat timestamps

    RR intervals outside the physiological range are discarded. The window
    is a ring buffer: once full, the oldest interval is evicted.
    """

    def __init__(self, config=None):
        self.config = config or SentinelConfig()

        self.rr_intervals = deque(maxlen=self.config.rr_window_size)
        self.last_beat_timestamp = None

        self.heart_rate = 0
        self.mean_rr = 0.0
        self.sdnn = 0.0
        self.rmssd = 0.0

    def process_beat(self, timestamp_ms):
        """
        Process a new heart beat

        Args:
            timestamp_ms: Monotonic timestamp in milliseconds when the beat occurred

        Returns:
            HRVSnapshot if the beat was accepted into the window, otherwise None
        """
        try:
            timestamp_ms = int(timestamp_ms)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed beat timestamp: {timestamp_ms!r}")
            return None

        previous = self.last_beat_timestamp
        # Always move forward so one outlier does not reject the next interval too
        self.last_beat_timestamp = timestamp_ms

        if previous is None:
            return None

        rr_interval = timestamp_ms - previous
        if not self.config.rr_min_ms <= rr_interval <= self.config.rr_max_ms:
            logger.debug(f"Discarding implausible RR interval: {rr_interval} ms")
            return None

        self.rr_intervals.append(rr_interval)
        self._calculate_metrics()
        return self.snapshot()

    def process_heart_rate(self, bpm):
        """
        Process a direct heart rate reading in BPM

        Until real RR intervals exist, the mean RR is approximated from the rate.
        """
        try:
            bpm = int(bpm)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed heart rate: {bpm!r}")
            return

        self.heart_rate = bpm

        if bpm > 0 and not self.rr_intervals:
            self.mean_rr = 60000.0 / bpm

    def _calculate_metrics(self):
        """
        Calculate HRV metrics from the collected RR intervals
        """
        count = len(self.rr_intervals)
        if count < 2:
            return

        try:
            intervals = np.asarray(self.rr_intervals, dtype=np.float64)

            # RMSSD (ms) - Root mean square of successive differences
            successive = np.diff(intervals)
            self.rmssd = float(np.sqrt(np.mean(successive ** 2)))

            if count < self.config.hrv_min_samples:
                return

            self.mean_rr = float(np.mean(intervals))

            # SDNN (ms) - population standard deviation of NN intervals
            self.sdnn = float(np.std(intervals))

            # Instantaneous heart rate from the most recent interval
            self.heart_rate = int(60000.0 / intervals[-1])

        except Exception as e:
            logger.error(f"Error calculating HRV metrics: {e}")

    def snapshot(self):
        """
        Get the current metrics as an immutable snapshot
        """
        return HRVSnapshot(
            heart_rate_bpm=self.heart_rate,
            mean_rr=self.mean_rr,
            sdnn=self.sdnn,
            rmssd=self.rmssd,
            interval_count=len(self.rr_intervals),
        )

    def reset(self):
        """
        Reset the processor state
        """
        self.rr_intervals.clear()
        self.last_beat_timestamp = None
        self.heart_rate = 0
        self.mean_rr = 0.0
        self.sdnn = 0.0
        self.rmssd = 0.0


class BeatSynthesizer:
    """
    Derives beat events from instantaneous heart rate readings

    Used when the wearable only reports a rate: a plausible reading counts
    as a beat if enough time has passed since the previous synthesized beat.
    """

    def __init__(self, config=None):
        self.config = config or SentinelConfig()
        self.last_timestamp = None

    def should_emit(self, bpm, now_ms):
        if not self.config.beat_bpm_min <= bpm <= self.config.beat_bpm_max:
            return False

        if (self.last_timestamp is None
                or now_ms - self.last_timestamp >= self.config.beat_min_spacing_ms):
            self.last_timestamp = now_ms
            return True

        return False

    def reset(self):
        self.last_timestamp = None
