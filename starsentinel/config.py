"""
Configuration constants for the StarSentinel fear detection core
Module constants are the defaults; SentinelConfig makes them tunable per session
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# Heart rate variability
RR_MIN_MS = 300  # 200 bpm
RR_MAX_MS = 1500  # 40 bpm
RR_WINDOW_SIZE = 60  # RR intervals kept for HRV metrics
HRV_MIN_SAMPLES = 3  # Intervals needed before mean RR / SDNN are reported

# Beat synthesis from instantaneous heart rate readings
BEAT_BPM_MIN = 30
BEAT_BPM_MAX = 220
BEAT_MIN_SPACING_MS = 300

# Audio Configuration
SAMPLE_RATE = 16000  # 16 kHz mono PCM
CHANNELS = 1
FRAME_SAMPLES = 1024  # Samples per captured buffer
INTENSITY_WINDOW_SIZE = 50  # RMS values kept for intensity variance
PITCH_MIN_HZ = 80.0  # Voice band
PITCH_MAX_HZ = 400.0
N_MFCC = 13  # Placeholder coefficient count
MFCC_ENERGY_NORMALIZER = 10000.0  # Typical maximum RMS of 16-bit speech

# Speech gate
SPEECH_AMPLITUDE_THRESHOLD = 1500  # Mean absolute amplitude of a loud buffer
SPEECH_TIMEOUT_MS = 1000

# Rule detectors
HEART_RATE_MINIMUM = 65  # Only consider increases above this base rate
HEART_RATE_SURGE_DELTA = 25  # Sudden increase in bpm
SCREAM_PITCH_THRESHOLD_HZ = 400.0
SCREAM_INTENSITY_THRESHOLD_DB = 15.0
MFCC_DEVIATION_THRESHOLD = 5.0
INTENSITY_SPIKE_DB = 1.0
INTENSITY_SPIKE_WINDOW_MS = 1000

# Fusion
VOTE_BUFFER_SIZE = 5  # Majority vote window
FEAR_STATE_TIMEOUT_MS = 30000  # Minimum episode length before returning to idle
TICK_INTERVAL_MS = 1000  # Minimum spacing between fusion ticks in the live pipeline
FEATURE_VECTOR_LENGTH = 4 + N_MFCC + 2

# Remote classifier
CLASSIFIER_URL = "http://localhost:8000/predict"
CLASSIFIER_TIMEOUT_S = 5.0
CLASSIFIER_WORKERS = 2
TFLITE_THRESHOLD = 0.5

# Sensor queues (drop-oldest)
HEARTBEAT_QUEUE_SIZE = 64
AUDIO_QUEUE_SIZE = 32

# Alerts
DEFAULT_ALERT_MESSAGE = "I might be in danger..."
LOCATION_UNAVAILABLE = "Location unavailable"
LOG_FILE = "emergency_log.txt"


class SentinelConfig(BaseModel):
    """
    Tunable parameters for one monitoring session.
    Defaults mirror the module constants above; the rule thresholds were
    tuned empirically and are not physiological limits.
    """

    rr_min_ms: int = Field(default=RR_MIN_MS, gt=0)
    rr_max_ms: int = Field(default=RR_MAX_MS, gt=0)
    rr_window_size: int = Field(default=RR_WINDOW_SIZE, ge=2)
    hrv_min_samples: int = Field(default=HRV_MIN_SAMPLES, ge=2)

    beat_bpm_min: int = Field(default=BEAT_BPM_MIN, gt=0)
    beat_bpm_max: int = Field(default=BEAT_BPM_MAX, gt=0)
    beat_min_spacing_ms: int = Field(default=BEAT_MIN_SPACING_MS, ge=0)

    sample_rate: int = Field(default=SAMPLE_RATE, gt=0)
    frame_samples: int = Field(default=FRAME_SAMPLES, gt=0)
    intensity_window_size: int = Field(default=INTENSITY_WINDOW_SIZE, ge=2)
    pitch_min_hz: float = Field(default=PITCH_MIN_HZ, ge=0)
    pitch_max_hz: float = Field(default=PITCH_MAX_HZ, gt=0)
    mfcc_energy_normalizer: float = Field(default=MFCC_ENERGY_NORMALIZER, gt=0)

    speech_amplitude_threshold: float = Field(default=SPEECH_AMPLITUDE_THRESHOLD, ge=0)
    speech_timeout_ms: int = Field(default=SPEECH_TIMEOUT_MS, ge=0)

    heart_rate_minimum: int = Field(default=HEART_RATE_MINIMUM, ge=0)
    heart_rate_surge_delta: int = Field(default=HEART_RATE_SURGE_DELTA, gt=0)
    scream_pitch_threshold_hz: float = Field(default=SCREAM_PITCH_THRESHOLD_HZ, ge=0)
    scream_intensity_threshold_db: float = Field(default=SCREAM_INTENSITY_THRESHOLD_DB)
    mfcc_deviation_threshold: float = Field(default=MFCC_DEVIATION_THRESHOLD, ge=0)
    intensity_spike_db: float = Field(default=INTENSITY_SPIKE_DB, ge=0)
    intensity_spike_window_ms: int = Field(default=INTENSITY_SPIKE_WINDOW_MS, ge=0)

    vote_buffer_size: int = Field(default=VOTE_BUFFER_SIZE, ge=1)
    fear_state_timeout_ms: int = Field(default=FEAR_STATE_TIMEOUT_MS, ge=0)
    tick_interval_ms: int = Field(default=TICK_INTERVAL_MS, ge=0)

    classifier_url: str = CLASSIFIER_URL
    classifier_timeout_s: float = Field(default=CLASSIFIER_TIMEOUT_S, gt=0)
    classifier_workers: int = Field(default=CLASSIFIER_WORKERS, ge=1)
    tflite_threshold: float = Field(default=TFLITE_THRESHOLD, ge=0, le=1)

    heartbeat_queue_size: int = Field(default=HEARTBEAT_QUEUE_SIZE, ge=1)
    audio_queue_size: int = Field(default=AUDIO_QUEUE_SIZE, ge=1)

    alert_message: str = DEFAULT_ALERT_MESSAGE
    log_file: str = LOG_FILE

    @model_validator(mode="after")
    def _check_ranges(self):
        if self.rr_min_ms > self.rr_max_ms:
            raise ValueError("rr_min_ms must not exceed rr_max_ms")
        if self.pitch_min_hz > self.pitch_max_hz:
            raise ValueError("pitch_min_hz must not exceed pitch_max_hz")
        if self.beat_bpm_min > self.beat_bpm_max:
            raise ValueError("beat_bpm_min must not exceed beat_bpm_max")
        return self

    def summary(self):
        """Returns the detection thresholds for logging."""
        return {
            "rr_range_ms": (self.rr_min_ms, self.rr_max_ms),
            "rr_window_size": self.rr_window_size,
            "pitch_band_hz": (self.pitch_min_hz, self.pitch_max_hz),
            "heart_rate_surge": (self.heart_rate_minimum, self.heart_rate_surge_delta),
            "scream": (
                self.scream_pitch_threshold_hz,
                self.scream_intensity_threshold_db,
                self.mfcc_deviation_threshold,
            ),
            "intensity_spike": (self.intensity_spike_db, self.intensity_spike_window_ms),
            "vote_buffer_size": self.vote_buffer_size,
            "fear_state_timeout_ms": self.fear_state_timeout_ms,
        }


def load_config(path=None):
    """
    Load a SentinelConfig from a JSON file.
    Missing keys fall back to the module defaults; no path gives pure defaults.
    """
    if path is None:
        return SentinelConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    config = SentinelConfig(**data)
    logger.info(f"Loaded configuration from {config_path}")
    return config
