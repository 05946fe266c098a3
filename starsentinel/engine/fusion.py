"""
Fear fusion engine
Combines rule detectors and the classifier verdict through a majority vote and
drives the Idle/Alerting state machine that fires at most one alert per episode
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..config import SentinelConfig
from ..detectors import (
    RuleVerdicts, detect_heart_rate_surge, detect_intensity_spike, detect_scream
)
from ..features.audio import AudioSnapshot
from .classifier import build_feature_vector

logger = logging.getLogger(__name__)


def monotonic_ms():
    return int(time.monotonic() * 1000)


class FearState(Enum):
    IDLE = "idle"
    ALERTING = "alerting"


@dataclass(frozen=True)
class PendingTick:
    """
    One fusion tick waiting for its classifier verdict.
    The epoch ties it to the engine generation that produced it.
    """

    epoch: int
    tick_id: int
    features: np.ndarray
    rules: RuleVerdicts
    created_at: int


class FearFusionEngine:
    """
    Main orchestrator for fear detection

    A tick is split in two: process_tick() runs the rule detectors and
    builds the classifier input; apply_verdict() fuses the classifier result
    with the rules, votes, and applies the state transition. In between, the
    classifier call may run on another thread.
    """

    def __init__(self, config=None, classifier=None, alerter=None, clock=None):
        self.config = config or SentinelConfig()
        self.classifier = classifier
        self.alerter = alerter
        self.clock = clock or monotonic_ms

        self._lock = threading.RLock()
        self._listeners = []

        # Temporal smoothing
        self.prediction_buffer = deque(maxlen=self.config.vote_buffer_size)

        # Episode state
        self.state = FearState.IDLE
        self.episode_started_at = 0
        self.alert_sent_this_episode = False

        # Memory cells for the delta-based detectors
        self.previous_heart_rate = 0
        self.previous_intensity = None
        self.previous_intensity_timestamp = None

        self.epoch = 0
        self._tick_counter = 0

        # Monitoring
        self.total_ticks = 0
        self.discarded_ticks = 0
        self.alerts_sent = 0

        logger.info("Fear fusion engine initialized")

    @property
    def is_fear_detected(self):
        return self.state is FearState.ALERTING

    def add_listener(self, callback):
        """
        Register a callback receiving the new FearState on every transition
        """
        self._listeners.append(callback)

    def process_tick(self, heart_rate, mean_rr, rmssd, sdnn, audio=None):
        """
        Run the rule detectors and prepare the classifier input for one tick

        Args:
            heart_rate: Current heart rate in BPM
            mean_rr: Mean R-R interval in ms
            rmssd: RMSSD in ms
            sdnn: SDNN in ms
            audio: AudioSnapshot with the latest audio features

        Returns:
            PendingTick, or None if there is not enough data this tick
        """
        try:
            # Only process if we have valid heart rate data
            if heart_rate <= 0 or mean_rr <= 0:
                return None

            audio = audio or AudioSnapshot()

            with self._lock:
                now = self.clock()

                heart_rate_surge = detect_heart_rate_surge(
                    self.previous_heart_rate, heart_rate, self.config
                )
                self.previous_heart_rate = heart_rate

                scream = detect_scream(
                    audio.mfcc_like, audio.pitch_hz, audio.intensity_variance_db, self.config
                )

                intensity_spike = detect_intensity_spike(
                    self.previous_intensity, self.previous_intensity_timestamp,
                    audio.intensity_variance_db, now, self.config
                )
                self.previous_intensity = audio.intensity_variance_db
                self.previous_intensity_timestamp = now

                self._tick_counter += 1
                self.total_ticks += 1

                return PendingTick(
                    epoch=self.epoch,
                    tick_id=self._tick_counter,
                    features=build_feature_vector(heart_rate, mean_rr, rmssd, sdnn, audio),
                    rules=RuleVerdicts(heart_rate_surge, scream, intensity_spike),
                    created_at=now,
                )

        except Exception as e:
            logger.error(f"Error in fear detection tick: {e}")
            return None

    def classify(self, tick):
        """
        Get the classifier verdict for a tick; any failure counts as no fear
        """
        if self.classifier is None:
            return False

        try:
            return bool(self.classifier.classify(tick.features))
        except Exception as e:
            logger.error(f"Classifier failed for tick {tick.tick_id}: {e}")
            return False

    def apply_verdict(self, tick, classifier_verdict):
        """
        Fuse the classifier verdict with the tick's rule verdicts and update state

        Returns:
            The smoothed fear decision, or None if the tick predates the last reset
        """
        notify_state = None
        send_alert = False

        try:
            with self._lock:
                if tick.epoch != self.epoch:
                    self.discarded_ticks += 1
                    logger.debug(f"Discarding stale verdict for tick {tick.tick_id}")
                    return None

                fear_detected = bool(classifier_verdict) or tick.rules.any()

                self.prediction_buffer.append(fear_detected)
                votes = sum(1 for vote in self.prediction_buffer if vote)
                is_fear = votes > len(self.prediction_buffer) / 2

                now = self.clock()

                if is_fear and self.state is FearState.IDLE:
                    self.state = FearState.ALERTING
                    self.episode_started_at = now
                    notify_state = self.state

                    if not self.alert_sent_this_episode:
                        self.alert_sent_this_episode = True
                        self.alerts_sent += 1
                        send_alert = True

                    logger.info(
                        f"Fear detected! Tick {tick.tick_id}, "
                        f"HR: {tick.features[0]:.0f}, rules: {tick.rules}"
                    )

                elif self.state is FearState.ALERTING and not is_fear:
                    if now - self.episode_started_at > self.config.fear_state_timeout_ms:
                        self.state = FearState.IDLE
                        self.alert_sent_this_episode = False
                        notify_state = self.state
                        logger.info("Fear state reset after timeout")

        except Exception as e:
            logger.error(f"Error applying fear verdict: {e}")
            return False

        if send_alert:
            self._trigger_alert()
        if notify_state is not None:
            self._notify(notify_state)

        return is_fear

    def run_tick(self, heart_rate, mean_rr, rmssd, sdnn, audio=None):
        """
        Process a tick end to end on the calling thread
        """
        tick = self.process_tick(heart_rate, mean_rr, rmssd, sdnn, audio)
        if tick is None:
            return None
        return self.apply_verdict(tick, self.classify(tick))

    def _trigger_alert(self):
        if self.alerter is None:
            logger.warning("Fear episode started but no alerter is configured")
            return

        try:
            self.alerter.trigger()
            logger.info("Alert sent to emergency contacts")
        except Exception as e:
            logger.error(f"Alert dispatch failed: {e}")

    def _notify(self, state):
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Fear state listener failed: {e}")

    def reset(self):
        """
        Reset the detector state; in-flight classifier results are ignored afterwards
        """
        with self._lock:
            was_alerting = self.state is FearState.ALERTING

            self.prediction_buffer.clear()
            self.state = FearState.IDLE
            self.alert_sent_this_episode = False
            self.previous_heart_rate = 0
            self.previous_intensity = None
            self.previous_intensity_timestamp = None
            self.episode_started_at = 0
            self.epoch += 1

        logger.info("Fear fusion engine reset")
        if was_alerting:
            self._notify(FearState.IDLE)

    def get_status(self):
        """
        Get current engine status for monitoring
        """
        with self._lock:
            return {
                "state": self.state.value,
                "episode_started_at": self.episode_started_at,
                "alert_sent_this_episode": self.alert_sent_this_episode,
                "votes": list(self.prediction_buffer),
                "epoch": self.epoch,
                "total_ticks": self.total_ticks,
                "discarded_ticks": self.discarded_ticks,
                "alerts_sent": self.alerts_sent,
            }
