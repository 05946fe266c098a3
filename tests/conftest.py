"""Pytest configuration and fixtures for StarSentinel tests."""

import threading

import numpy as np
import pytest

from starsentinel.config import SentinelConfig
from starsentinel.engine.fusion import FearFusionEngine


class ManualClock:
    """Millisecond clock the test advances by hand."""

    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RecordingAlerter:
    def __init__(self):
        self.count = 0
        self._lock = threading.Lock()

    def trigger(self):
        with self._lock:
            self.count += 1


class StubClassifier:
    """Returns a fixed verdict, or pops verdicts from a list."""

    def __init__(self, verdict=False):
        self.verdict = verdict
        self.calls = []

    def classify(self, features):
        self.calls.append(features)
        if isinstance(self.verdict, list):
            return self.verdict.pop(0)
        return self.verdict


class FailingClassifier:
    def classify(self, features):
        raise ConnectionError("prediction service unreachable")


def make_sine(frequency, sample_rate=16000, duration=0.1, amplitude=10000):
    n = int(sample_rate * duration)
    t = np.arange(n) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.int16)


@pytest.fixture
def config():
    return SentinelConfig()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def alerter():
    return RecordingAlerter()


@pytest.fixture
def engine(config, clock, alerter):
    return FearFusionEngine(config, classifier=None, alerter=alerter, clock=clock)


@pytest.fixture
def sample_audio_data():
    """Fixture providing a 200 Hz tone as 16-bit PCM."""
    sample_rate = 16000
    return make_sine(200, sample_rate=sample_rate), sample_rate
