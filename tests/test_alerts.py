"""Tests for alert composition and delivery."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from starsentinel.alerts import (
    AlertChannel, AlertDispatcher, EmergencyLogChannel, LoggingAlertChannel
)


class RecordingChannel:
    def __init__(self):
        self.messages = []

    def send_alert(self, message):
        self.messages.append(message)


class BrokenChannel:
    def send_alert(self, message):
        raise ConnectionError("no messaging app found")


class TestAlertDispatcher:
    """Test cases for AlertDispatcher."""

    def test_default_message(self):
        dispatcher = AlertDispatcher()
        assert dispatcher.compose_message() == "I might be in danger...\n\nLocation unavailable"

    def test_custom_message_and_location(self):
        dispatcher = AlertDispatcher(
            message_provider=lambda: "Help, I'm at the trailhead",
            location_provider=lambda: "Location: https://maps.google.com/?q=45.1,7.6",
        )
        assert dispatcher.compose_message() == (
            "Help, I'm at the trailhead\n\nLocation: https://maps.google.com/?q=45.1,7.6"
        )

    def test_empty_message_falls_back_to_default(self):
        dispatcher = AlertDispatcher(message_provider=lambda: "")
        assert dispatcher.compose_message().startswith("I might be in danger...")

    def test_location_failure_still_alerts(self):
        def no_fix():
            raise TimeoutError("no GPS fix")

        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel], location_provider=no_fix)
        dispatcher.trigger()

        assert channel.messages == ["I might be in danger...\n\nLocation unavailable"]

    def test_failing_channel_does_not_stop_others(self):
        channel = RecordingChannel()
        dispatcher = AlertDispatcher([BrokenChannel(), channel])

        dispatcher.trigger()

        assert len(channel.messages) == 1
        history = dispatcher.get_delivery_history()
        assert [entry["success"] for entry in history] == [False, True]
        assert history[0]["channel"] == "BrokenChannel"
        assert "no messaging app" in history[0]["detail"]

    def test_no_channels(self):
        dispatcher = AlertDispatcher()
        dispatcher.trigger()
        assert dispatcher.get_delivery_history() == []

    def test_delivery_on_executor(self):
        channel = RecordingChannel()
        executor = ThreadPoolExecutor(max_workers=1)
        dispatcher = AlertDispatcher([channel], executor=executor)

        dispatcher.trigger()
        executor.shutdown(wait=True)

        assert len(channel.messages) == 1


class TestChannels:

    def test_logging_channel_history(self):
        channel = LoggingAlertChannel()
        channel.send_alert("first")
        channel.send_alert("second")

        history = channel.get_action_history()
        assert [entry["message"] for entry in history] == ["first", "second"]
        assert "timestamp" in history[0]

    def test_emergency_log_channel_appends(self, tmp_path):
        log_file = tmp_path / "emergency_log.txt"
        channel = EmergencyLogChannel(str(log_file))

        channel.send_alert("I might be in danger...\n\nLocation unavailable")
        channel.send_alert("again")

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("EMERGENCY: I might be in danger... |  | Location unavailable")
        assert lines[1].endswith("EMERGENCY: again")

    def test_channel_base_is_abstract(self):
        with pytest.raises(TypeError):
            AlertChannel()

        class IncompleteChannel(AlertChannel):
            pass

        with pytest.raises(TypeError):
            IncompleteChannel()
