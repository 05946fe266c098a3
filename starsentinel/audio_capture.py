"""
Microphone capture for StarSentinel
Reads 16-bit mono PCM blocks and forwards the loud ones to the sensor pipeline
"""

import logging
import threading
from queue import Empty, Full, Queue

import numpy as np
import sounddevice as sd

from .config import CHANNELS, SentinelConfig
from .engine.fusion import monotonic_ms
from .features.audio import SpeechGate

logger = logging.getLogger(__name__)


class AudioCapture:
    """
    Handles continuous audio capture with a thread-safe queue

    The PortAudio callback only enqueues; a forwarding thread applies the
    speech gate and calls on_frame(samples, sample_rate).
    """

    def __init__(self, on_frame, config=None, gate=True):
        self.config = config or SentinelConfig()
        self.on_frame = on_frame
        self.sample_rate = self.config.sample_rate
        self.channels = CHANNELS
        self.frame_samples = self.config.frame_samples

        # Thread-safe queue for decoupling capture and processing
        self.audio_queue = Queue(maxsize=100)
        self.speech_gate = SpeechGate(self.config) if gate else None

        # Control flags
        self.is_running = False
        self.stream = None
        self.forward_thread = None
        self.dropped_frames = 0

    def audio_callback(self, indata, frames, time_info, status):
        """
        Callback function for audio stream - runs in PortAudio's thread
        """
        if status:
            logger.debug(f"Audio stream status: {status}")

        audio_data = np.array(indata[:, 0], dtype=np.int16, copy=True)

        try:
            self.audio_queue.put_nowait(audio_data)
        except Full:
            self.dropped_frames += 1

    def _forward_loop(self):
        """
        Forward gated frames to the pipeline - runs in background thread
        """
        while self.is_running:
            try:
                frame = self.audio_queue.get(timeout=0.1)
            except Empty:
                continue

            if self.speech_gate is not None and not self.speech_gate.accept(frame, monotonic_ms()):
                continue

            try:
                self.on_frame(frame, self.sample_rate)
            except Exception as e:
                logger.error(f"Audio frame handler error: {e}")

    def start(self):
        """
        Open the input stream and start forwarding
        """
        if self.is_running:
            logger.warning("Audio capture already running")
            return

        self.stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            callback=self.audio_callback,
            blocksize=self.frame_samples,
        )

        self.is_running = True
        self.forward_thread = threading.Thread(target=self._forward_loop, daemon=True)
        self.forward_thread.start()
        self.stream.start()
        logger.info("Audio capture started successfully")

    def stop(self):
        """
        Stop audio capture gracefully
        """
        if not self.is_running:
            return

        self.is_running = False

        if self.stream:
            self.stream.stop()
            self.stream.close()
            self.stream = None

        if self.forward_thread and self.forward_thread.is_alive():
            self.forward_thread.join(timeout=1.0)

        if self.speech_gate is not None:
            self.speech_gate.reset()

        logger.info("Audio capture stopped")
