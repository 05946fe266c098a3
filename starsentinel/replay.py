"""
Offline replay for StarSentinel
Feeds recorded audio and beat timestamps through the full pipeline on a
simulated clock, so a session can be evaluated deterministically
"""

import csv
import logging
from dataclasses import dataclass, field

import librosa
import numpy as np

from .config import SentinelConfig
from .engine.fusion import FearFusionEngine, FearState
from .pipeline import SensorPipeline

logger = logging.getLogger(__name__)


class SimulatedClock:
    """Millisecond clock advanced by the replay loop."""

    def __init__(self, start_ms=0):
        self.now = start_ms

    def __call__(self):
        return self.now


@dataclass
class ReplayReport:
    duration_ms: int = 0
    ticks: int = 0
    alerts: list = field(default_factory=list)
    episodes: list = field(default_factory=list)
    final_state: FearState = FearState.IDLE

    def summary(self):
        return {
            "duration_s": self.duration_ms / 1000.0,
            "ticks": self.ticks,
            "alerts": len(self.alerts),
            "episodes": [(start / 1000.0, None if end is None else end / 1000.0)
                         for start, end in self.episodes],
            "final_state": self.final_state.value,
        }


def pcm16_from_float(audio):
    """
    Convert float audio in [-1, 1] to signed 16-bit PCM
    """
    scaled = np.clip(np.asarray(audio, dtype=np.float32) * 32767.0, -32768, 32767)
    return scaled.astype(np.int16)


def split_frames(samples, frame_size):
    """
    Split a PCM signal into consecutive frames; a trailing partial frame is kept
    """
    return [samples[i:i + frame_size] for i in range(0, len(samples), frame_size)]


def load_audio_frames(path, sample_rate, frame_size):
    """
    Load an audio file as mono 16-bit PCM frames at the requested sample rate
    """
    audio, _ = librosa.load(path, sr=sample_rate, mono=True)
    frames = split_frames(pcm16_from_float(audio), frame_size)
    logger.info(f"Loaded {len(frames)} audio frames from {path}")
    return frames


def load_beats(path):
    """
    Load beat timestamps (ms, relative to the start of the recording) from a CSV file

    The first column of each row is used; rows that are not numbers (headers,
    comments) are skipped.
    """
    beats = []
    with open(path, newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            if not row:
                continue
            try:
                beats.append(int(float(row[0])))
            except ValueError:
                continue

    beats.sort()
    logger.info(f"Loaded {len(beats)} beat timestamps from {path}")
    return beats


class ReplaySession:
    """
    Runs one recorded session through a fresh engine and pipeline
    """

    def __init__(self, config=None, classifier=None, dispatcher=None):
        self.config = config or SentinelConfig()
        self.clock = SimulatedClock()
        self.dispatcher = dispatcher
        self.report = ReplayReport()

        self.engine = FearFusionEngine(
            self.config, classifier=classifier, alerter=self, clock=self.clock
        )
        self.engine.add_listener(self._on_state_change)
        self.pipeline = SensorPipeline(self.engine, config=self.config)

    def trigger(self):
        self.report.alerts.append(self.clock.now)
        if self.dispatcher is not None:
            self.dispatcher.trigger()

    def _on_state_change(self, state):
        if state is FearState.ALERTING:
            self.report.episodes.append((self.clock.now, None))
        elif self.report.episodes and self.report.episodes[-1][1] is None:
            start, _ = self.report.episodes[-1]
            self.report.episodes[-1] = (start, self.clock.now)

    def run(self, frames, beats=(), sample_rate=None):
        """
        Replay audio frames and beat timestamps in time order

        Args:
            frames: List of int16 PCM frames, back to back from t=0
            beats: Beat timestamps in ms
            sample_rate: Sample rate of the frames (defaults to the config's)

        Returns:
            ReplayReport
        """
        sample_rate = sample_rate or self.config.sample_rate

        events = []
        offset = 0
        for frame in frames:
            timestamp = int(offset * 1000 / sample_rate)
            events.append((timestamp, 1, frame))
            offset += len(frame)
        for beat in beats:
            events.append((int(beat), 0, None))

        # Beats before audio at the same instant
        events.sort(key=lambda event: (event[0], event[1]))

        for timestamp, kind, frame in events:
            self.clock.now = timestamp
            if kind == 0:
                self.pipeline.on_heartbeat(timestamp)
            else:
                self.pipeline.on_audio_frame(frame, sample_rate)
            self.pipeline.drain()

        self.report.duration_ms = max(
            int(offset * 1000 / sample_rate),
            events[-1][0] if events else 0,
        )
        self.report.ticks = self.engine.total_ticks
        self.report.final_state = self.engine.state
        return self.report
