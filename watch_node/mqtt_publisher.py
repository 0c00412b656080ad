# watch_node/mqtt_publisher.py
"""
MQTT alert sink for the watch node.

Uses paho-mqtt to connect to the Mosquitto broker and publish face alerts
to  facewatch/<node_id>/alert . The alert relay (alert_backend.ws_relay)
subscribes to the same topic and forwards alerts to dashboards.
"""

from __future__ import annotations
import json
import logging
import time
from typing import Dict

import paho.mqtt.client as mqtt

from .config import (
    MQTT_BROKER_IP,
    MQTT_BROKER_PORT,
    MQTT_KEEPALIVE,
    MQTT_TOPIC_ALERT,
    NODE_ID,
)

logger = logging.getLogger(__name__)


class MQTTPublisher:
    """Manages the MQTT connection and publishes alert messages."""

    def __init__(
        self,
        broker: str = MQTT_BROKER_IP,
        port: int = MQTT_BROKER_PORT,
        topic: str = MQTT_TOPIC_ALERT,
        keepalive: int = MQTT_KEEPALIVE,
        client=None,
    ):
        self.broker = broker
        self.port = int(port)
        self.topic = topic
        self.keepalive = int(keepalive)

        self._client = client or mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"facewatch_{NODE_ID}",
            protocol=mqtt.MQTTv311,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._connected = False

    # ── Callbacks ───────────────────────────────────────────────────

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0 or rc == mqtt.CONNACK_ACCEPTED:
            self._connected = True
            logger.info("Connected to %s:%s", self.broker, self.port)
        else:
            logger.error("Connection failed with code %s", rc)

    def _on_disconnect(self, client, userdata, flags=None, rc=None, properties=None):
        self._connected = False
        if rc is not None and rc != 0:
            logger.warning("Unexpected disconnect (rc=%s), will auto-reconnect", rc)

    # ── Public API ──────────────────────────────────────────────────

    def connect(self, timeout: float = 10.0) -> None:
        """Connect to the MQTT broker (blocking until connected)."""
        logger.info("Connecting to %s:%s ...", self.broker, self.port)
        self._client.connect(self.broker, self.port, keepalive=self.keepalive)
        self._client.loop_start()

        t0 = time.time()
        while not self._connected and (time.time() - t0) < timeout:
            time.sleep(0.1)

        if not self._connected:
            self._client.loop_stop()
            raise ConnectionError(
                f"Failed to connect to MQTT broker at {self.broker}:{self.port}"
            )

    def send(self, payload: Dict) -> None:
        """
        Publish an alert. Non-blocking; paho's network thread delivers it.

        Args:
            payload: dict with keys "event", "faces", "node", "timestamp"
        """
        if not self._connected:
            raise ConnectionError("MQTT publisher is not connected")
        self._client.publish(self.topic, json.dumps(payload), qos=1)

    def close(self) -> None:
        """Cleanly disconnect from the broker."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False
        logger.info("Disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected
