"""
Sensor ingestion pipeline for StarSentinel
Heartbeat and audio producers push into bounded drop-oldest queues; a single
consumer thread owns the processors and drives the fusion engine, while
classifier calls run on a worker pool and report back through a result queue
"""

import logging
import queue
import threading
from collections import deque
from concurrent.futures import CancelledError, ThreadPoolExecutor

import numpy as np

from .features.audio import AudioFeatureExtractor
from .features.hrv import BeatSynthesizer, HRVProcessor

logger = logging.getLogger(__name__)


class SensorPipeline:
    """
    Connects the sensor callbacks to the fusion engine

    The on_* methods are safe to call from any thread and never block.
    drain() does one round of consumer work; the background thread started
    by start() simply calls it whenever something arrives.
    """

    def __init__(self, engine, hrv=None, extractor=None, config=None,
                 executor=None, synthesize_beats=False):
        self.engine = engine
        self.config = config or engine.config
        self.clock = engine.clock

        self.hrv = hrv or HRVProcessor(self.config)
        self.extractor = extractor or AudioFeatureExtractor(self.config)
        self.beat_synthesizer = BeatSynthesizer(self.config) if synthesize_beats else None

        # Drop-oldest sensor channels
        self.heartbeat_queue = deque(maxlen=self.config.heartbeat_queue_size)
        self.audio_queue = deque(maxlen=self.config.audio_queue_size)
        self.result_queue = queue.SimpleQueue()

        self.executor = executor
        self._owns_executor = False

        self._wakeup = threading.Event()
        self._drain_lock = threading.Lock()
        self._counter_lock = threading.Lock()

        self.last_tick_at = None
        self.in_flight = 0
        self.dropped_heartbeats = 0
        self.dropped_audio_frames = 0

        # Control flags
        self.is_running = False
        self.consumer_thread = None

    # ------------------------------------------------------------------
    # Ingestion boundary
    # ------------------------------------------------------------------
    def on_heartbeat(self, timestamp_ms):
        self._enqueue_heart(("beat", timestamp_ms, None))

    def on_heart_rate(self, bpm):
        self._enqueue_heart(("rate", bpm, self.clock()))

    def on_audio_frame(self, samples, sample_rate):
        # Capture drivers reuse their buffers
        frame = (np.array(samples, copy=True), sample_rate)
        with self._counter_lock:
            if len(self.audio_queue) == self.audio_queue.maxlen:
                self.dropped_audio_frames += 1
            self.audio_queue.append(frame)
        self._wakeup.set()

    def _enqueue_heart(self, message):
        with self._counter_lock:
            if len(self.heartbeat_queue) == self.heartbeat_queue.maxlen:
                self.dropped_heartbeats += 1
            self.heartbeat_queue.append(message)
        self._wakeup.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        if self.is_running:
            logger.warning("Sensor pipeline already running")
            return

        if self.executor is None:
            self.executor = ThreadPoolExecutor(
                max_workers=self.config.classifier_workers,
                thread_name_prefix="fear-classifier",
            )
            self._owns_executor = True

        self.is_running = True
        self.consumer_thread = threading.Thread(target=self._consume_loop, daemon=True)
        self.consumer_thread.start()
        logger.info("Sensor pipeline started")

    def stop(self):
        if not self.is_running:
            return

        self.is_running = False
        self._wakeup.set()

        if self.consumer_thread and self.consumer_thread.is_alive():
            self.consumer_thread.join(timeout=2.0)

        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)
            self.executor = None
            self._owns_executor = False

        logger.info("Sensor pipeline stopped")

    def reset(self):
        """
        Reset the session; verdicts still in flight are discarded by epoch

        Processors and engine are reset together under the drain lock, so no
        tick can pair pre-reset sensor state with the new epoch, and readings
        pushed after reset() returns are kept.
        """
        with self._drain_lock:
            self._reset_processors()
            self.engine.reset()

    def _consume_loop(self):
        while self.is_running:
            self._wakeup.wait(timeout=0.1)
            self._wakeup.clear()

            try:
                self.drain()
            except Exception as e:
                logger.error(f"Sensor pipeline error: {e}")

    # ------------------------------------------------------------------
    # Consumer work
    # ------------------------------------------------------------------
    def drain(self):
        """
        Apply queued classifier results and sensor data, ticking the engine if anything changed
        """
        with self._drain_lock:
            self._apply_results()

            updated = False
            while self.heartbeat_queue:
                kind, value, received_at = self.heartbeat_queue.popleft()
                self._handle_heart_message(kind, value, received_at)
                updated = True

            while self.audio_queue:
                samples, sample_rate = self.audio_queue.popleft()
                if self.extractor.process_buffer(samples, sample_rate) is not None:
                    updated = True

            if updated:
                self._maybe_tick()

            self._apply_results()

    def _handle_heart_message(self, kind, value, received_at):
        if kind == "beat":
            self.hrv.process_beat(value)
            return

        self.hrv.process_heart_rate(value)
        if self.beat_synthesizer is not None:
            try:
                if self.beat_synthesizer.should_emit(int(value), received_at):
                    self.hrv.process_beat(received_at)
            except (TypeError, ValueError):
                logger.debug(f"Cannot synthesize beat from reading {value!r}")

    def _reset_processors(self):
        self.heartbeat_queue.clear()
        self.audio_queue.clear()
        self.hrv.reset()
        self.extractor.reset()
        if self.beat_synthesizer is not None:
            self.beat_synthesizer.reset()
        self.last_tick_at = None

    def _maybe_tick(self):
        now = self.clock()
        if (self.last_tick_at is not None
                and now - self.last_tick_at < self.config.tick_interval_ms):
            return

        hrv = self.hrv.snapshot()
        tick = self.engine.process_tick(
            hrv.heart_rate_bpm, hrv.mean_rr, hrv.rmssd, hrv.sdnn,
            self.extractor.snapshot(),
        )
        if tick is None:
            return

        self.last_tick_at = now
        self._submit(tick)

    def _submit(self, tick):
        if self.executor is None:
            # Not started: classify inline so drain() stays usable on its own
            self.result_queue.put((tick, self.engine.classify(tick)))
            return

        with self._counter_lock:
            self.in_flight += 1
        future = self.executor.submit(self.engine.classify, tick)
        future.add_done_callback(lambda f: self._on_classified(tick, f))

    def _on_classified(self, tick, future):
        try:
            verdict = future.result()
        except (CancelledError, Exception) as e:
            logger.error(f"Classifier task failed for tick {tick.tick_id}: {e}")
            verdict = False

        with self._counter_lock:
            self.in_flight = max(0, self.in_flight - 1)
        self.result_queue.put((tick, verdict))
        self._wakeup.set()

    def _apply_results(self):
        # Verdicts are voted in completion order. With more than one classifier
        # worker a fast call can overtake a slow one; the vote window is order-free.
        while True:
            try:
                tick, verdict = self.result_queue.get_nowait()
            except queue.Empty:
                return

            self.engine.apply_verdict(tick, verdict)

    def get_status(self):
        hrv = self.hrv.snapshot()
        audio = self.extractor.snapshot()
        return {
            "is_running": self.is_running,
            "heart_rate": hrv.heart_rate_bpm,
            "mean_rr": hrv.mean_rr,
            "rmssd": hrv.rmssd,
            "sdnn": hrv.sdnn,
            "pitch_hz": audio.pitch_hz,
            "intensity_variance_db": audio.intensity_variance_db,
            "in_flight_classifications": self.in_flight,
            "dropped_heartbeats": self.dropped_heartbeats,
            "dropped_audio_frames": self.dropped_audio_frames,
            "engine": self.engine.get_status(),
        }
