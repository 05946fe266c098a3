"""
Emergency alert handling for StarSentinel
Composes the alert message and hands it to the delivery channels; failures are logged, never retried
"""

import datetime
import logging
import threading
from abc import ABC, abstractmethod

from .config import DEFAULT_ALERT_MESSAGE, LOCATION_UNAVAILABLE, LOG_FILE

logger = logging.getLogger(__name__)


class AlertChannel(ABC):
    """
    Delivery transport for an alert message.
    send_alert() raises on failure; SMS/messaging transports live outside this package.
    """

    @abstractmethod
    def send_alert(self, message):
        pass


class LoggingAlertChannel(AlertChannel):
    """
    Logs alerts instead of delivering them (development stand-in)
    """

    def __init__(self):
        self.action_log = []

    def send_alert(self, message):
        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        logger.warning(f"ALERT (not delivered): {message!r}")
        self.action_log.append({"timestamp": timestamp, "message": message})

    def get_action_history(self):
        return self.action_log.copy()


class EmergencyLogChannel(AlertChannel):
    """
    Appends every alert to the emergency log file
    """

    def __init__(self, log_file=LOG_FILE):
        self.log_file = log_file

    def send_alert(self, message):
        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        single_line = message.replace("\n", " | ")
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] EMERGENCY: {single_line}\n")


class AlertDispatcher:
    """
    Builds the alert text and sends it through every channel

    The message is the user-configured text followed by the location string
    from the location collaborator. With an executor, delivery runs off the
    caller's thread so the fusion engine never waits on a transport.
    """

    def __init__(self, channels=None, message_provider=None, location_provider=None,
                 executor=None):
        self.channels = list(channels or [])
        self.message_provider = message_provider or (lambda: DEFAULT_ALERT_MESSAGE)
        self.location_provider = location_provider or (lambda: LOCATION_UNAVAILABLE)
        self.executor = executor

        self._lock = threading.Lock()
        self.delivery_log = []

    def compose_message(self):
        alert_message = self.message_provider() or DEFAULT_ALERT_MESSAGE

        try:
            location_info = self.location_provider() or LOCATION_UNAVAILABLE
        except Exception as e:
            logger.error(f"Location lookup failed: {e}")
            location_info = LOCATION_UNAVAILABLE

        return f"{alert_message}\n\n{location_info}"

    def trigger(self):
        """
        Compose and deliver one alert
        """
        message = self.compose_message()

        if not self.channels:
            logger.error("No alert channels configured")
            return

        if self.executor is not None:
            self.executor.submit(self._deliver, message)
        else:
            self._deliver(message)

    def _deliver(self, message):
        for channel in self.channels:
            name = channel.__class__.__name__
            try:
                channel.send_alert(message)
                success, detail = True, ""
                logger.info(f"Alert delivered via {name}")
            except Exception as e:
                success, detail = False, str(e)
                logger.error(f"Failed to send alert via {name}: {e}")

            with self._lock:
                self.delivery_log.append({
                    "channel": name,
                    "success": success,
                    "detail": detail,
                    "message": message,
                })

    def get_delivery_history(self):
        with self._lock:
            return list(self.delivery_log)
