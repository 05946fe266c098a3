"""
Remote fear classifier client
Posts the fused feature vector to a prediction service and fails closed on any error
"""

import logging

import numpy as np
import requests

from ..config import FEATURE_VECTOR_LENGTH, N_MFCC, SentinelConfig

logger = logging.getLogger(__name__)


class ClassifierError(RuntimeError):
    """Raised for a misconfigured classifier call, never for network trouble."""


def build_feature_vector(heart_rate, mean_rr, rmssd, sdnn, audio):
    """
    Combine HRV and audio features into the classifier input

    Layout: [hr, meanRR, rmssd, sdnn] + 13 coefficients + [pitch, intensityVar].
    Short coefficient vectors are zero-padded.
    """
    coefficients = list(audio.mfcc_like)[:N_MFCC]
    coefficients += [0.0] * (N_MFCC - len(coefficients))

    features = [float(heart_rate), mean_rr, rmssd, sdnn]
    features += coefficients
    features += [audio.pitch_hz, audio.intensity_variance_db]

    return np.asarray(features, dtype=np.float32)


def validate_features(features):
    features = np.asarray(features, dtype=np.float32).ravel()
    if features.shape[0] != FEATURE_VECTOR_LENGTH:
        raise ClassifierError(
            f"Expected {FEATURE_VECTOR_LENGTH} features, got {features.shape[0]}"
        )
    return features


class RemoteClassifier:
    """
    Client for the fear prediction API

    Request body: {"input": [19 floats]}; response body: {"prediction": 0 or 1}.
    """

    def __init__(self, url=None, timeout=None, session=None, config=None):
        config = config or SentinelConfig()
        self.url = url or config.classifier_url
        self.timeout = timeout or config.classifier_timeout_s
        self.session = session or requests.Session()

        self.total_requests = 0
        self.failed_requests = 0

    def classify(self, features):
        """
        Send features to the backend model and get a fear prediction

        Returns:
            True if the service predicts fear; False otherwise, including on any error
        """
        features = validate_features(features)
        self.total_requests += 1

        try:
            response = self.session.post(
                self.url,
                json={"input": features.tolist()},
                timeout=self.timeout,
            )

            if response.status_code != 200:
                self.failed_requests += 1
                logger.error(f"HTTP error from classifier: {response.status_code}")
                return False

            prediction = int(response.json()["prediction"])
            return prediction == 1

        except requests.exceptions.RequestException as e:
            self.failed_requests += 1
            logger.error(f"Error calling prediction API: {e}")
            return False
        except (KeyError, TypeError, ValueError) as e:
            self.failed_requests += 1
            logger.error(f"Malformed prediction response: {e}")
            return False

    def close(self):
        self.session.close()
