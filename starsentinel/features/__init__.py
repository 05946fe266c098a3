from .hrv import HRVProcessor, HRVSnapshot, BeatSynthesizer
from .audio import AudioFeatureExtractor, AudioSnapshot, SpeechGate
