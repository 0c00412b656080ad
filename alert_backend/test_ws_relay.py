# alert_backend/test_ws_relay.py
"""
Tests for the MQTT → WebSocket alert relay, with fake MQTT messages and
fake WebSocket clients.

Usage:
    python -m alert_backend.test_ws_relay
"""

import asyncio
import json
import sys
from types import SimpleNamespace

from alert_backend.ws_relay import AlertRelay, InvalidAlert, parse_alert
from facewatch.notifier import alert_payload
from watch_node import config


class FakeWebSocket:
    def __init__(self, fail=False, incoming=()):
        self.fail = fail
        self.sent = []
        self.incoming = list(incoming)
        self.remote_address = ("192.0.2.10", 50000)

    async def send(self, message):
        if self.fail:
            raise ConnectionResetError("gone")
        self.sent.append(message)

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for m in self.incoming:
            yield m


class FakeMqttClient:
    def __init__(self):
        self.subscriptions = []

    def subscribe(self, topic, qos=0):
        self.subscriptions.append((topic, qos))


def mqtt_message(payload):
    if isinstance(payload, dict):
        payload = json.dumps(payload)
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return SimpleNamespace(topic=config.MQTT_TOPIC_ALERT, payload=payload)


def test_relay_defaults_follow_node_config():
    relay = AlertRelay()
    assert relay.topic == config.MQTT_TOPIC_ALERT
    assert relay.node_id == config.NODE_ID
    assert (relay.broker, relay.port) == (config.MQTT_BROKER_IP, config.MQTT_BROKER_PORT)

    client = FakeMqttClient()
    relay.on_connect(client, None, None, 0)
    assert client.subscriptions == [(config.MQTT_TOPIC_ALERT, 1)]
    print("✓ relay subscribes to the node's alert topic")


def test_parse_node_alert():
    raw = json.dumps(alert_payload(2, config.NODE_ID)).encode()
    alert = parse_alert(raw)
    assert alert["event"] == "face_detected"
    assert alert["faces"] == 2
    assert alert["node"] == config.NODE_ID
    print("✓ watch node payload accepted")


def test_parse_rejects_malformed():
    bad = [
        b"not json",
        b"\xff\xfe\x00garbage",
        b"[1, 2]",
        json.dumps({"event": "motion", "faces": 1, "node": "n", "timestamp": 1}).encode(),
        json.dumps({"event": "face_detected", "faces": 0, "node": "n", "timestamp": 1}).encode(),
        json.dumps({"event": "face_detected", "faces": True, "node": "n", "timestamp": 1}).encode(),
        json.dumps({"event": "face_detected", "faces": 1, "timestamp": 1}).encode(),
        json.dumps({"event": "face_detected", "faces": 1, "node": "n", "timestamp": "now"}).encode(),
    ]
    for raw in bad:
        try:
            parse_alert(raw)
            raise AssertionError(f"accepted {raw!r}")
        except InvalidAlert:
            pass
    print(f"✓ {len(bad)} malformed messages rejected")


def test_valid_alert_cached_and_counted():
    relay = AlertRelay()
    relay.on_message(None, None, mqtt_message(alert_payload(1, config.NODE_ID)))
    assert relay.accepted == 1 and relay.rejected == 0
    assert json.loads(relay.latest_alert)["faces"] == 1
    print("✓ latest alert cached")


def test_invalid_alerts_not_forwarded():
    relay = AlertRelay()
    relay.on_message(None, None, mqtt_message(alert_payload(1, config.NODE_ID)))
    cached = relay.latest_alert

    relay.on_message(None, None, mqtt_message("{broken"))
    relay.on_message(None, None, mqtt_message(alert_payload(3, "other-node")))
    assert relay.rejected == 2
    assert relay.latest_alert == cached  # last good alert kept
    print("✓ malformed and foreign alerts dropped")

    open_relay = AlertRelay(node_id=None)
    assert open_relay.accept(json.dumps(alert_payload(3, "other-node")).encode()) is not None
    print("✓ node filter can be disabled")


def test_message_forwarded_to_dashboards():
    async def scenario():
        relay = AlertRelay()
        relay.loop = asyncio.get_running_loop()
        ws = FakeWebSocket()
        relay.clients.add(ws)

        # paho calls on_message from its own network thread
        msg = mqtt_message(alert_payload(2, config.NODE_ID))
        await relay.loop.run_in_executor(None, relay.on_message, None, None, msg)
        for _ in range(50):
            if ws.sent:
                break
            await asyncio.sleep(0.01)
        return ws

    ws = asyncio.run(scenario())
    assert len(ws.sent) == 1
    assert json.loads(ws.sent[0])["faces"] == 2
    print("✓ alert pushed from the MQTT thread to the WebSocket loop")


def test_broadcast_drops_failed_clients():
    relay = AlertRelay()
    good, bad = FakeWebSocket(), FakeWebSocket(fail=True)
    relay.clients.update({good, bad})

    reached = asyncio.run(relay.broadcast('{"event": "face_detected"}'))
    assert reached == 1
    assert good.sent == ['{"event": "face_detected"}']
    assert relay.clients == {good}
    assert asyncio.run(AlertRelay().broadcast("x")) == 0
    print("✓ broadcast reaches live clients, drops dead ones")


def test_new_client_gets_latest_alert():
    relay = AlertRelay()
    relay.accept(json.dumps(alert_payload(2, config.NODE_ID)).encode())
    ws = FakeWebSocket(incoming=["ping"])

    asyncio.run(relay.handler(ws))
    assert ws.sent == [relay.latest_alert]
    assert ws not in relay.clients  # removed on disconnect
    print("✓ cached alert replayed, client cleaned up")


def main():
    tests = [(name, fn) for name, fn in sorted(globals().items())
             if name.startswith("test_") and callable(fn)]
    failed = 0
    for name, test_func in tests:
        try:
            test_func()
        except Exception as e:
            failed += 1
            print(f"✗ {name} failed: {e!r}")
    print(f"Result: {len(tests) - failed}/{len(tests)} tests passed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
