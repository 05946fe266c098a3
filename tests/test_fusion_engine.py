"""Tests for the fear fusion engine state machine."""

import threading

import numpy as np
import pytest

from conftest import FailingClassifier, RecordingAlerter, StubClassifier
from starsentinel.config import SentinelConfig
from starsentinel.engine.fusion import FearFusionEngine, FearState
from starsentinel.features.audio import AudioSnapshot


def vote(engine, classifier_verdict, heart_rate=70):
    """One tick whose rule detectors stay quiet, fused with the given verdict."""
    tick = engine.process_tick(heart_rate, 850.0, 40.0, 50.0, AudioSnapshot())
    assert tick is not None
    return engine.apply_verdict(tick, classifier_verdict)


class TestFearFusionEngine:
    """Test cases for FearFusionEngine."""

    def test_initial_state(self, engine):
        assert engine.state is FearState.IDLE
        assert not engine.is_fear_detected
        assert engine.alert_sent_this_episode is False

    @pytest.mark.parametrize("heart_rate,mean_rr", [(0, 800.0), (-5, 800.0), (70, 0.0)])
    def test_insufficient_data_is_a_no_op(self, engine, heart_rate, mean_rr):
        assert engine.process_tick(heart_rate, mean_rr, 0.0, 0.0) is None
        assert engine.total_ticks == 0
        assert engine.previous_heart_rate == 0

    def test_feature_vector_layout(self, engine):
        audio = AudioSnapshot(mfcc_like=tuple(float(i) for i in range(13)),
                              pitch_hz=180.0, intensity_variance_db=3.5)
        tick = engine.process_tick(72, 830.0, 41.0, 52.0, audio)

        assert tick.features.shape == (19,)
        assert tick.features.dtype == np.float32
        assert list(tick.features[:4]) == [72.0, 830.0, 41.0, 52.0]
        assert list(tick.features[4:17]) == [float(i) for i in range(13)]
        assert tick.features[17] == pytest.approx(180.0)
        assert tick.features[18] == pytest.approx(3.5)

    def test_isolated_true_tick_does_not_alert(self, engine, alerter):
        results = [vote(engine, verdict) for verdict in [False, False, True, False, False]]

        assert results == [False, False, False, False, False]
        assert engine.state is FearState.IDLE
        assert alerter.count == 0

    def test_majority_enters_alerting_and_alerts_once(self, engine, alerter, clock):
        for verdict in [False, False, True, True]:
            vote(engine, verdict)
        assert engine.state is FearState.IDLE

        clock.now = 1234
        assert vote(engine, True) is True

        assert engine.state is FearState.ALERTING
        assert engine.episode_started_at == 1234
        assert engine.alert_sent_this_episode
        assert alerter.count == 1

    def test_sustained_episode_does_not_realert_or_restart_timer(self, engine, alerter, clock):
        vote(engine, True)  # [T] is a majority of one
        assert engine.state is FearState.ALERTING
        assert alerter.count == 1

        clock.now = 5000
        for _ in range(3):
            assert vote(engine, False) is False
        assert engine.state is FearState.ALERTING

        clock.now = 10000
        for _ in range(3):
            vote(engine, True)
        assert engine.prediction_buffer.count(True) == 3
        assert engine.episode_started_at == 0
        assert alerter.count == 1

    def test_returns_to_idle_only_after_timeout(self, engine, alerter, clock):
        vote(engine, True)

        clock.now = 20000
        for _ in range(5):
            vote(engine, False)
        assert engine.state is FearState.ALERTING

        clock.now = 30000
        vote(engine, False)
        assert engine.state is FearState.ALERTING

        clock.now = 30001
        vote(engine, False)
        assert engine.state is FearState.IDLE
        assert engine.alert_sent_this_episode is False

    def test_new_episode_after_timeout_alerts_again(self, engine, alerter, clock):
        vote(engine, True)
        clock.now = 31000
        for _ in range(5):
            vote(engine, False)
        assert engine.state is FearState.IDLE

        clock.now = 40000
        for verdict in [True, True, True]:
            vote(engine, verdict)

        assert engine.state is FearState.ALERTING
        assert engine.episode_started_at == 40000
        assert alerter.count == 2

    def test_fear_during_alerting_keeps_state_past_timeout(self, engine, clock):
        vote(engine, True)
        clock.now = 60000
        assert vote(engine, True) is True
        assert engine.state is FearState.ALERTING

    def test_vote_buffer_capacity(self, engine):
        for _ in range(12):
            vote(engine, False)
        assert len(engine.prediction_buffer) == 5

    def test_rule_verdict_counts_as_vote(self, engine):
        vote(engine, False, heart_rate=70)
        tick = engine.process_tick(96, 850.0, 40.0, 50.0, AudioSnapshot())

        assert tick.rules.heart_rate_surge
        engine.apply_verdict(tick, False)
        assert engine.prediction_buffer[-1] is True
        assert engine.previous_heart_rate == 96

    def test_scream_and_spike_rules_feed_the_tick(self, engine, clock):
        quiet = AudioSnapshot(intensity_variance_db=2.0)
        loud = AudioSnapshot(mfcc_like=(8.0,) + (0.0,) * 12, intensity_variance_db=30.0)

        engine.process_tick(70, 850.0, 0.0, 0.0, quiet)
        clock.advance(500)
        tick = engine.process_tick(70, 850.0, 0.0, 0.0, loud)

        assert tick.rules.scream
        assert tick.rules.intensity_spike
        assert engine.previous_intensity == 30.0
        assert engine.previous_intensity_timestamp == 500

    def test_stale_verdict_after_reset_is_discarded(self, engine, alerter):
        tick = engine.process_tick(70, 850.0, 40.0, 50.0)
        engine.reset()

        assert engine.apply_verdict(tick, True) is None
        assert engine.state is FearState.IDLE
        assert len(engine.prediction_buffer) == 0
        assert engine.discarded_ticks == 1
        assert alerter.count == 0

    def test_reset_clears_episode(self, engine, clock):
        clock.now = 700
        vote(engine, True, heart_rate=88)
        epoch = engine.epoch

        engine.reset()

        assert engine.state is FearState.IDLE
        assert engine.alert_sent_this_episode is False
        assert engine.previous_heart_rate == 0
        assert engine.previous_intensity is None
        assert engine.episode_started_at == 0
        assert engine.epoch == epoch + 1

    def test_run_tick_uses_classifier(self, config, clock, alerter):
        classifier = StubClassifier(verdict=True)
        engine = FearFusionEngine(config, classifier=classifier, alerter=alerter, clock=clock)

        assert engine.run_tick(70, 850.0, 40.0, 50.0, AudioSnapshot()) is True
        assert len(classifier.calls) == 1
        assert classifier.calls[0].shape == (19,)
        assert alerter.count == 1

    def test_classifier_failure_fails_closed(self, config, clock, alerter):
        engine = FearFusionEngine(config, classifier=FailingClassifier(),
                                  alerter=alerter, clock=clock)

        assert engine.run_tick(70, 850.0, 40.0, 50.0) is False
        assert engine.prediction_buffer[-1] is False
        assert alerter.count == 0

    def test_run_tick_without_data(self, engine):
        assert engine.run_tick(0, 0.0, 0.0, 0.0) is None

    def test_malformed_input_degrades_to_no_detection(self, engine):
        assert engine.process_tick("seventy", 850.0, 40.0, 50.0) is None
        assert engine.process_tick(None, 850.0, 40.0, 50.0) is None

    def test_alerter_failure_does_not_affect_state(self, config, clock):
        class BrokenAlerter:
            def trigger(self):
                raise RuntimeError("no messaging app found")

        engine = FearFusionEngine(config, alerter=BrokenAlerter(), clock=clock)
        assert vote(engine, True) is True
        assert engine.state is FearState.ALERTING
        assert engine.alert_sent_this_episode

    def test_listeners_receive_transitions(self, engine, clock):
        states = []
        engine.add_listener(states.append)

        vote(engine, True)
        clock.now = 40000
        for _ in range(5):
            vote(engine, False)

        assert states == [FearState.ALERTING, FearState.IDLE]

    def test_timeout_is_configurable(self, clock, alerter):
        engine = FearFusionEngine(SentinelConfig(fear_state_timeout_ms=1000),
                                  alerter=alerter, clock=clock)
        vote(engine, True)
        clock.now = 1001
        vote(engine, False)
        assert engine.state is FearState.IDLE

    def test_concurrent_ticks_alert_once(self, config, clock):
        alerter = RecordingAlerter()
        engine = FearFusionEngine(config, classifier=StubClassifier(verdict=True),
                                  alerter=alerter, clock=clock)

        def producer():
            for _ in range(200):
                engine.run_tick(70, 850.0, 40.0, 50.0)

        threads = [threading.Thread(target=producer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert engine.total_ticks == 800
        assert len(engine.prediction_buffer) == 5
        assert alerter.count == 1

    def test_status(self, engine):
        vote(engine, False)
        status = engine.get_status()
        assert status["state"] == "idle"
        assert status["votes"] == [False]
        assert status["total_ticks"] == 1
