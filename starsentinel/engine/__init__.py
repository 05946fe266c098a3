from .classifier import ClassifierError, RemoteClassifier, build_feature_vector
from .fusion import FearFusionEngine, FearState, PendingTick
