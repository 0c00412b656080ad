# alert_backend/ws_relay.py
"""
Alert Relay Service

Subscribes to a watch node's alert topic and pushes face alerts to every
connected dashboard over WebSocket.

Only well-formed alerts are forwarded: a message must be the JSON object a
watch node publishes (see facewatch.notifier.alert_payload) and come from
the node this relay serves. Anything else is logged and dropped. The last
accepted alert is replayed to dashboards that connect later.

Broker address, topic and node id come from watch_node/config.py so the
node and its relay cannot drift apart.

Usage:
    python -m alert_backend.ws_relay
"""

from __future__ import annotations
import asyncio
import json
import logging
from numbers import Real
from typing import Dict, Optional, Set

import paho.mqtt.client as mqtt
import websockets

from watch_node import config

logger = logging.getLogger(__name__)

ALERT_EVENT = "face_detected"


class InvalidAlert(ValueError):
    """An MQTT message that is not a face alert."""


def parse_alert(raw: bytes) -> Dict:
    """
    Decode and validate one alert message.

    Returns the alert as {"event", "faces", "node", "timestamp"}.

    Raises:
        InvalidAlert: not JSON, not an object, or a field is missing / mistyped
    """
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidAlert(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidAlert("not a JSON object")

    if data.get("event") != ALERT_EVENT:
        raise InvalidAlert(f"unexpected event {data.get('event')!r}")

    faces = data.get("faces")
    if isinstance(faces, bool) or not isinstance(faces, int) or faces < 1:
        raise InvalidAlert(f"bad face count {faces!r}")

    node = data.get("node")
    if not isinstance(node, str) or not node:
        raise InvalidAlert(f"bad node id {node!r}")

    ts = data.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, Real):
        raise InvalidAlert(f"bad timestamp {ts!r}")

    return {"event": ALERT_EVENT, "faces": faces, "node": node, "timestamp": ts}


class AlertRelay:
    """MQTT alert topic → WebSocket dashboards."""

    def __init__(
        self,
        broker: str = config.MQTT_BROKER_IP,
        port: int = config.MQTT_BROKER_PORT,
        topic: str = config.MQTT_TOPIC_ALERT,
        node_id: Optional[str] = config.NODE_ID,
        keepalive: int = config.MQTT_KEEPALIVE,
    ):
        """
        Args:
            broker, port: MQTT broker address
            topic: alert topic to subscribe to
            node_id: only alerts from this node are forwarded (None = any)
            keepalive: MQTT keepalive in seconds
        """
        self.broker = broker
        self.port = int(port)
        self.topic = topic
        self.node_id = node_id
        self.keepalive = int(keepalive)

        self.clients: Set = set()
        self.latest_alert: Optional[str] = None  # replayed to new dashboards
        self.accepted = 0
        self.rejected = 0
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    # ── Alerts ──────────────────────────────────────────────────────

    def accept(self, raw: bytes) -> Optional[str]:
        """Validate an incoming message. Returns the text to forward, or None."""
        try:
            alert = parse_alert(raw)
        except InvalidAlert as e:
            self.rejected += 1
            logger.warning("Dropping message on %s: %s", self.topic, e)
            return None

        if self.node_id is not None and alert["node"] != self.node_id:
            self.rejected += 1
            logger.warning("Dropping alert from unknown node %r", alert["node"])
            return None

        message = json.dumps(alert)
        self.latest_alert = message
        self.accepted += 1
        logger.info("Alert from %s: %d face(s)", alert["node"], alert["faces"])
        return message

    # ── WebSocket side ──────────────────────────────────────────────

    async def handler(self, websocket, path=None):
        """Serve one dashboard connection until it closes."""
        self.clients.add(websocket)
        client_ip = websocket.remote_address[0] if websocket.remote_address else "?"
        logger.info("Client connected: %s (total: %d)", client_ip, len(self.clients))

        if self.latest_alert is not None:
            await self._send(websocket, self.latest_alert)

        try:
            # push-only; incoming messages are drained and ignored
            async for _ in websocket:
                pass
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            logger.info("Client disconnected: %s (total: %d)", client_ip, len(self.clients))

    async def broadcast(self, message: str) -> int:
        """Send to every dashboard. Returns how many were reached."""
        if not self.clients:
            return 0
        results = await asyncio.gather(*(self._send(ws, message) for ws in list(self.clients)))
        return sum(results)

    async def _send(self, ws, message: str) -> bool:
        try:
            await ws.send(message)
            return True
        except Exception as e:
            logger.warning("Dropping client after failed send: %s", e)
            self.clients.discard(ws)
            return False

    # ── MQTT side (paho network thread) ─────────────────────────────

    def on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0 or rc == mqtt.CONNACK_ACCEPTED:
            client.subscribe(self.topic, qos=1)
            logger.info("Subscribed to %s", self.topic)
        else:
            logger.error("Connection failed (rc=%s)", rc)

    def on_message(self, client, userdata, msg):
        message = self.accept(msg.payload)
        if message is not None and self.loop is not None:
            asyncio.run_coroutine_threadsafe(self.broadcast(message), self.loop)

    def make_client(self):
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"alert_relay_{self.node_id or 'all'}",
        )
        client.on_connect = self.on_connect
        client.on_message = self.on_message
        return client

    async def serve(self, host: str = config.RELAY_WS_HOST, port: int = config.RELAY_WS_PORT, client=None):
        """Run until cancelled."""
        self.loop = asyncio.get_running_loop()
        client = client or self.make_client()
        logger.info("Connecting to %s:%s ...", self.broker, self.port)
        client.connect(self.broker, self.port, keepalive=self.keepalive)
        client.loop_start()
        try:
            logger.info("Listening on ws://%s:%s", host, port)
            async with websockets.serve(self.handler, host, port):
                await asyncio.Future()  # run forever
        finally:
            client.loop_stop()
            client.disconnect()
            self.loop = None


def main():
    logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")
    relay = AlertRelay()
    print("=" * 60)
    print("MQTT → WebSocket Alert Relay")
    print(f"Node: {relay.node_id}")
    print(f"MQTT: {relay.broker}:{relay.port}  topic={relay.topic}")
    print(f"WS:   {config.RELAY_WS_HOST}:{config.RELAY_WS_PORT}")
    print("=" * 60 + "\n")
    try:
        asyncio.run(relay.serve())
    except KeyboardInterrupt:
        print("\n✓ Relay stopped")


if __name__ == "__main__":
    main()
