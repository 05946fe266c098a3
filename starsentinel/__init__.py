"""
StarSentinel fear detection core

Fuses heart rate variability and microphone audio into a single fear/distress
signal that raises at most one emergency alert per episode.

Components:
- HRV processor and audio feature extractor (independent sensor rates)
- Rule detectors for heart rate surges, screams and intensity spikes
- Remote (or on-device TFLite) classifier over a 19-value feature vector
- Fusion engine with majority-vote smoothing and timeout hysteresis
- Sensor pipeline running the classifier off the ingestion path
"""

from .config import SentinelConfig, load_config
from .features import AudioFeatureExtractor, AudioSnapshot, HRVProcessor, HRVSnapshot
from .engine import FearFusionEngine, FearState, RemoteClassifier
from .alerts import AlertDispatcher
from .pipeline import SensorPipeline

__version__ = "1.0.0"
