"""
Main application for the StarSentinel fear detection core
Provides live monitoring and offline replay of recorded sessions
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor

from .alerts import AlertDispatcher, EmergencyLogChannel, LoggingAlertChannel
from .config import load_config
from .engine.classifier import RemoteClassifier
from .engine.fusion import FearFusionEngine, FearState
from .pipeline import SensorPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StarSentinelApp:
    """
    Main application class wiring sensors, engine, classifier and alerts
    """

    def __init__(self, config, classifier_url=None, model_path=None, use_classifier=True):
        self.config = config
        self.classifier = None
        if use_classifier:
            self.classifier = self._build_classifier(classifier_url, model_path)

        self.channels = [LoggingAlertChannel(), EmergencyLogChannel(config.log_file)]

    def _build_classifier(self, classifier_url, model_path):
        if model_path:
            # Optional dependency: only needed for an on-device model
            from .engine.inference import TFLiteFearClassifier

            classifier = TFLiteFearClassifier(model_path, threshold=self.config.tflite_threshold)
            classifier.load_model()
            return classifier

        return RemoteClassifier(url=classifier_url, config=self.config)

    # -------------------------------------------------------------------
    # Live monitoring
    # -------------------------------------------------------------------
    def run_monitor(self, use_microphone=True, stream=None):
        """
        Monitor live sensors until EOF or Ctrl+C

        Heart data arrives as lines on stdin ("bpm 72", "beat <ms>", "reset"),
        since wearable drivers live outside this package.
        """
        stream = stream or sys.stdin
        alert_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alert")
        dispatcher = AlertDispatcher(
            self.channels,
            message_provider=lambda: self.config.alert_message,
            executor=alert_executor,
        )

        engine = FearFusionEngine(self.config, classifier=self.classifier, alerter=dispatcher)
        engine.add_listener(self._print_state)
        pipeline = SensorPipeline(engine, config=self.config, synthesize_beats=True)

        capture = None
        try:
            pipeline.start()

            if use_microphone:
                from .audio_capture import AudioCapture

                capture = AudioCapture(pipeline.on_audio_frame, self.config)
                capture.start()

            print("\n[*] Monitoring... feed 'bpm <value>' or 'beat <ms>' lines, Ctrl+C to stop\n")
            for line in stream:
                self._handle_command(line, pipeline)

        except KeyboardInterrupt:
            print("\n[*] Stopping...")
        finally:
            if capture:
                capture.stop()
            pipeline.stop()
            alert_executor.shutdown(wait=True)

        return pipeline.get_status()

    def _handle_command(self, line, pipeline):
        parts = line.split()
        if not parts:
            return

        command = parts[0].lower()
        try:
            if command == "bpm" and len(parts) == 2:
                pipeline.on_heart_rate(int(float(parts[1])))
            elif command == "beat" and len(parts) == 2:
                pipeline.on_heartbeat(int(float(parts[1])))
            elif command == "reset":
                pipeline.reset()
            elif command == "status":
                print(pipeline.get_status())
            else:
                logger.warning(f"Unknown command: {line.strip()!r}")
        except ValueError:
            logger.warning(f"Malformed value in command: {line.strip()!r}")

    @staticmethod
    def _print_state(state):
        if state is FearState.ALERTING:
            print("\n*** FEAR DETECTED - ALERT DISPATCHED ***\n")
        else:
            print("\n[*] Fear state cleared\n")

    # -------------------------------------------------------------------
    # Offline replay
    # -------------------------------------------------------------------
    def replay(self, audio_path, beats_path=None):
        from .replay import ReplaySession, load_audio_frames, load_beats

        frames = load_audio_frames(audio_path, self.config.sample_rate, self.config.frame_samples)
        beats = load_beats(beats_path) if beats_path else []

        dispatcher = AlertDispatcher(
            self.channels, message_provider=lambda: self.config.alert_message
        )
        session = ReplaySession(self.config, classifier=self.classifier, dispatcher=dispatcher)
        report = session.run(frames, beats)

        summary = report.summary()
        print("📊 Replay Summary")
        print("========================================")
        print(f"Duration: {summary['duration_s']:.1f} s")
        print(f"Fusion ticks: {summary['ticks']}")
        print(f"Alerts: {summary['alerts']}")
        for start, end in summary["episodes"]:
            end_text = "ongoing" if end is None else f"{end:.1f} s"
            print(f"  Episode: {start:.1f} s -> {end_text}")
        print(f"Final state: {summary['final_state']}")

        return report


# -------------------------------------------------------------------
# Entry point
# -------------------------------------------------------------------
def build_parser():
    parser = argparse.ArgumentParser(
        description="StarSentinel fear detection core"
    )
    parser.add_argument("--config", help="JSON file overriding detection parameters")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--classifier-url", help="Fear prediction endpoint")
    parser.add_argument("--model", help="Local TFLite fear model instead of the remote classifier")
    parser.add_argument(
        "--no-classifier",
        action="store_true",
        help="Use the rule detectors only",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Monitor live sensors")
    run_parser.add_argument(
        "--no-microphone",
        action="store_true",
        help="Heart data only",
    )

    replay_parser = subparsers.add_parser("replay", help="Replay a recorded session")
    replay_parser.add_argument("--audio", required=True, help="Audio file to replay")
    replay_parser.add_argument("--beats", help="CSV of beat timestamps in ms")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    try:
        config = load_config(args.config)
        logger.info(f"Detection thresholds: {config.summary()}")

        app = StarSentinelApp(
            config,
            classifier_url=args.classifier_url,
            model_path=args.model,
            use_classifier=not args.no_classifier,
        )

        if args.command == "run":
            app.run_monitor(use_microphone=not args.no_microphone)
        elif args.command == "replay":
            app.replay(args.audio, args.beats)

    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
