"""
Rule-based anomaly detectors for StarSentinel
Pure functions; the fusion engine owns the previous-value cells they compare against
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleVerdicts:
    heart_rate_surge: bool = False
    scream: bool = False
    intensity_spike: bool = False

    def any(self):
        return self.heart_rate_surge or self.scream or self.intensity_spike


def detect_heart_rate_surge(previous_bpm, current_bpm, config):
    """
    Detect a sudden increase in heart rate

    Fires only when the previous reading was above the baseline minimum and
    the rate climbed by at least the surge delta. The comparison slides: the
    caller stores current_bpm as the next previous value either way.
    """
    surge = (previous_bpm > config.heart_rate_minimum
             and current_bpm > previous_bpm
             and current_bpm - previous_bpm >= config.heart_rate_surge_delta)

    if surge:
        logger.debug(f"Sudden heart rate increase detected: {previous_bpm} -> {current_bpm}")
    return surge


def detect_scream(mfcc_like, pitch_hz, intensity_variance_db, config):
    """
    Detect a scream signature in audio features

    High pitch with high intensity variance, or high intensity variance with
    an extreme first coefficient (the energy term).
    """
    is_pitch_high = pitch_hz > config.scream_pitch_threshold_hz
    is_intensity_high = intensity_variance_db > config.scream_intensity_threshold_db

    mfcc_deviation = False
    if mfcc_like is not None and len(mfcc_like) > 0:
        mfcc_deviation = abs(mfcc_like[0]) > config.mfcc_deviation_threshold

    scream = (is_pitch_high and is_intensity_high) or (is_intensity_high and mfcc_deviation)

    if scream:
        logger.debug(f"Scream detected! Pitch: {pitch_hz}, Intensity: {intensity_variance_db}")
    return scream


def detect_intensity_spike(previous_intensity, previous_timestamp,
                           current_intensity, current_timestamp, config):
    """
    Detect an abrupt intensity change between two close samples
    """
    if previous_intensity is None or previous_timestamp is None:
        return False

    if current_timestamp - previous_timestamp > config.intensity_spike_window_ms:
        return False

    spike = abs(current_intensity - previous_intensity) >= config.intensity_spike_db
    if spike:
        logger.debug(f"Intensity spike: {previous_intensity:.2f} -> {current_intensity:.2f} dB")
    return spike
