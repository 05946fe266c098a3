"""
Audio feature extraction module for StarSentinel
Extracts intensity variance, a zero-crossing pitch estimate and placeholder MFCC-like coefficients
"""

import logging
from collections import deque
from dataclasses import dataclass, field

import numpy as np

from ..config import N_MFCC, SentinelConfig

logger = logging.getLogger(__name__)


def _zero_coefficients():
    return (0.0,) * N_MFCC


@dataclass(frozen=True)
class AudioSnapshot:
    """Audio features at one point in time. pitch_hz is 0 until a voiced buffer is seen."""

    mfcc_like: tuple = field(default_factory=_zero_coefficients)
    pitch_hz: float = 0.0
    intensity_variance_db: float = 0.0


def calculate_rms(samples):
    """
    Calculate RMS (Root Mean Square) of a PCM buffer
    """
    samples = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(samples * samples)))


def estimate_pitch(samples, sample_rate, pitch_min_hz, pitch_max_hz):
    """
    Estimate pitch from the zero-crossing rate

    A crossing is a change between positive and non-positive samples. This
    is a crude estimate; values outside the voice band are reported as 0.
    """
    positive = np.asarray(samples) > 0
    zero_crossings = int(np.count_nonzero(positive[1:] != positive[:-1]))

    duration = len(samples) / float(sample_rate)
    frequency = zero_crossings / (2 * duration)

    if pitch_min_hz <= frequency <= pitch_max_hz:
        return float(frequency)
    return 0.0


def placeholder_mfcc(rms, normalizer, n_coefficients=N_MFCC):
    """
    Placeholder MFCC-like coefficients derived from signal energy

    This is NOT a cepstral transform: the first coefficient tracks the
    normalized energy and the rest follow an alternating-sign, linearly
    decaying pattern. The scream thresholds are calibrated against these
    values, so replacing this with real MFCCs changes detection behaviour.
    """
    energy = rms / normalizer

    coefficients = []
    for i in range(n_coefficients):
        if i == 0:
            value = energy * 10
        else:
            sign = 1 if i % 2 == 0 else -1
            value = (energy * 5 * (n_coefficients - i) / n_coefficients) * sign
        coefficients.append(float(value))

    return tuple(coefficients)


class AudioFeatureExtractor:
    """
    Extracts audio features from raw 16-bit PCM buffers
    Keeps a short RMS history to compute intensity variance
    """

    def __init__(self, config=None):
        self.config = config or SentinelConfig()

        self.intensity_buffer = deque(maxlen=self.config.intensity_window_size)

        self.mfcc_values = _zero_coefficients()
        self.pitch_mean = 0.0
        self.intensity_var = 0.0

    def process_buffer(self, samples, sample_rate):
        """
        Process a buffer of audio samples

        Args:
            samples: Sequence of signed 16-bit PCM samples
            sample_rate: Sample rate in Hz

        Returns:
            AudioSnapshot with the updated features, or None if the buffer was ignored
        """
        try:
            if sample_rate is None or sample_rate <= 0:
                logger.debug(f"Ignoring audio buffer with sample rate {sample_rate}")
                return None

            buffer = np.asarray(samples, dtype=np.int16).ravel()
            if buffer.size == 0:
                logger.debug("Ignoring empty audio buffer")
                return None

            rms = calculate_rms(buffer)
            self.intensity_buffer.append(rms)
            self._calculate_intensity_variance()

            pitch = estimate_pitch(
                buffer, sample_rate,
                self.config.pitch_min_hz, self.config.pitch_max_hz
            )
            # Keep the last usable pitch when this buffer has none
            if pitch > 0:
                self.pitch_mean = pitch

            self.mfcc_values = placeholder_mfcc(rms, self.config.mfcc_energy_normalizer)

            return self.snapshot()

        except Exception as e:
            logger.error(f"Error processing audio buffer: {e}")
            return None

    def _calculate_intensity_variance(self):
        """
        Calculate intensity variance from the RMS history, in dB
        """
        if len(self.intensity_buffer) < 2:
            return

        intensities = np.asarray(self.intensity_buffer, dtype=np.float64)
        variance = float(np.mean((intensities - intensities.mean()) ** 2))

        # +1 avoids log10(0) for a perfectly steady signal
        self.intensity_var = 20 * float(np.log10(variance + 1))

    def snapshot(self):
        return AudioSnapshot(
            mfcc_like=self.mfcc_values,
            pitch_hz=self.pitch_mean,
            intensity_variance_db=self.intensity_var,
        )

    def reset(self):
        """
        Reset the extractor state
        """
        self.intensity_buffer.clear()
        self.mfcc_values = _zero_coefficients()
        self.pitch_mean = 0.0
        self.intensity_var = 0.0


class SpeechGate:
    """
    Decides which buffers are loud enough to be worth feature extraction
    """

    def __init__(self, config=None):
        self.config = config or SentinelConfig()
        self.is_speech_detected = False
        self.last_speech_time = None

    def accept(self, samples, now_ms):
        """
        Returns True if the buffer's mean absolute amplitude is above threshold.
        Speech stays flagged until the timeout passes without a loud buffer.
        """
        buffer = np.asarray(samples, dtype=np.float64)
        if buffer.size == 0:
            return False

        average = float(np.mean(np.abs(buffer)))

        if average > self.config.speech_amplitude_threshold:
            self.last_speech_time = now_ms
            self.is_speech_detected = True
            return True

        if (self.is_speech_detected
                and now_ms - self.last_speech_time > self.config.speech_timeout_ms):
            self.is_speech_detected = False

        return False

    def reset(self):
        self.is_speech_detected = False
        self.last_speech_time = None
