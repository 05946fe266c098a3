"""
On-device TensorFlow Lite fear classifier
Same classify(features) -> bool contract as the remote client, for an already-exported model
"""

import logging
import os

import numpy as np
import tensorflow as tf

from ..config import FEATURE_VECTOR_LENGTH, TFLITE_THRESHOLD
from .classifier import validate_features

logger = logging.getLogger(__name__)


class TFLiteFearClassifier:
    """
    Loads a binary fear model (19 float inputs) and runs it with the TFLite interpreter.
    Handles int8 input quantization and output dequantization.
    """

    def __init__(self, model_path, threshold=TFLITE_THRESHOLD):
        self.model_path = model_path
        self.threshold = threshold
        self.interpreter = None
        self.input_details = None
        self.output_details = None
        self.is_quantized_input = False
        self.is_quantized_output = False

    def load_model(self):
        """
        Load the TFLite model for inference.
        """
        if not os.path.exists(self.model_path):
            raise FileNotFoundError(f"Model file not found: {self.model_path}")

        with open(self.model_path, 'rb') as f:
            tflite_model = f.read()

        self.interpreter = tf.lite.Interpreter(model_content=tflite_model)
        self.interpreter.allocate_tensors()

        self.input_details = self.interpreter.get_input_details()
        self.output_details = self.interpreter.get_output_details()

        input_shape = list(self.input_details[0]['shape'])
        if input_shape[-1] != FEATURE_VECTOR_LENGTH:
            raise ValueError(
                f"Model expects {input_shape[-1]} features, fear vector has {FEATURE_VECTOR_LENGTH}"
            )

        self.is_quantized_input = self.input_details[0]['dtype'] == np.int8
        self.is_quantized_output = self.output_details[0]['dtype'] == np.int8

        logger.info("TFLite fear model loaded successfully")
        logger.info(f"Input shape: {self.input_details[0]['shape']}")
        logger.info(f"Input dtype: {self.input_details[0]['dtype']}")

    def predict_probability(self, features):
        """
        Run inference on one feature vector.
        Returns the probability of the fear class.
        """
        if self.interpreter is None:
            raise RuntimeError("Model not loaded. Call load_model() first.")

        input_data = validate_features(features)[np.newaxis, :]

        if self.is_quantized_input:
            input_scale, input_zero_point = self.input_details[0]['quantization']
            input_data = input_data / input_scale + input_zero_point
            input_data = np.clip(input_data, -128, 127).astype(np.int8)
        else:
            input_data = input_data.astype(self.input_details[0]['dtype'])

        self.interpreter.set_tensor(self.input_details[0]['index'], input_data)
        self.interpreter.invoke()
        output_data = self.interpreter.get_tensor(self.output_details[0]['index'])

        if self.is_quantized_output:
            output_scale, output_zero_point = self.output_details[0]['quantization']
            output_data = (output_data.astype(np.float32) - output_zero_point) * output_scale

        scores = np.asarray(output_data[0], dtype=np.float32).ravel()

        # Single sigmoid unit or [not_fear, fear] softmax pair
        if scores.size == 1:
            return float(scores[0])
        return float(scores[-1])

    def classify(self, features):
        return self.predict_probability(features) >= self.threshold

    def get_model_info(self):
        """
        Get model information for monitoring.
        """
        if self.interpreter is None:
            return {"status": "Model not loaded"}

        return {
            "model_path": self.model_path,
            "input_shape": self.input_details[0]['shape'].tolist(),
            "output_shape": self.output_details[0]['shape'].tolist(),
            "input_dtype": str(self.input_details[0]['dtype']),
            "output_dtype": str(self.output_details[0]['dtype']),
            "quantized": self.is_quantized_input,
            "threshold": self.threshold,
        }
