# facewatch/notifier.py
"""
Rate-limited alert notifier.

Fires an alert when at least one face is present, at most once per
cooldown window (10 s by default). The very first detection always fires.

The alert itself goes through a sink (log, MQTT, HTTP). Sinks are
fire-and-forget: whatever a sink raises is logged here and never reaches
the detection loop.
"""

from __future__ import annotations
import logging
import time
from typing import Dict, Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN = 10.0  # seconds


def alert_payload(face_count: int, node_id: str = "local") -> Dict:
    return {
        "event": "face_detected",
        "faces": int(face_count),
        "node": node_id,
        "timestamp": int(time.time()),
    }


class LogAlertSink:
    """Alert sink that only logs the call."""

    def send(self, payload: Dict) -> None:
        logger.info("Calling custom API... %s", payload)

    def close(self) -> None:
        pass


class RateLimitedNotifier:
    """Gates an alert sink behind a cooldown window."""

    def __init__(self, sink, cooldown: float = ALERT_COOLDOWN, node_id: str = "local"):
        """
        Args:
            sink: object with send(payload: dict)
            cooldown: minimum seconds between two alerts
            node_id: reported in every payload
        """
        self.sink = sink
        self.cooldown = float(cooldown)
        self.node_id = node_id
        self.last_notify: Optional[float] = None  # unset until the first alert
        self.sent = 0
        self.failures = 0

    def ready(self, now: float) -> bool:
        return self.last_notify is None or (now - self.last_notify) >= self.cooldown

    def maybe_notify(self, now: float, has_detections: bool, face_count: int = 1) -> bool:
        """
        Args:
            now: monotonic time in seconds
            has_detections: at least one face in the current frame
            face_count: number of faces, reported in the payload

        Returns:
            True if the alert fired on this call
        """
        if not has_detections or not self.ready(now):
            return False

        self.last_notify = now
        self.sent += 1
        try:
            self.sink.send(alert_payload(face_count, self.node_id))
        except Exception as e:
            self.failures += 1
            logger.warning("Alert sink failed: %s", e)
        return True
