# watch_node/test_watch_node.py
"""
test_watch_node.py
Tests for the watch node's alert transports and entry-point helpers.

No broker or HTTP endpoint is needed: paho's client and the requests
session are replaced by fakes.

Usage:
    python -m watch_node.test_watch_node
"""

import json
import sys
from types import SimpleNamespace

import requests

from facewatch.notifier import LogAlertSink, RateLimitedNotifier, alert_payload
from watch_node import config
from watch_node.http_alert import HttpAlertSink
from watch_node.main import LOADING, build_alert_sink, status_line
from watch_node.mqtt_publisher import MQTTPublisher


def banner(title):
    print("\n" + "=" * 80)
    print(title)
    print("=" * 80)


class FakeMqttClient:
    def __init__(self, accept=True):
        self.accept = accept
        self.on_connect = None
        self.on_disconnect = None
        self.published = []
        self.loop_running = False
        self.disconnected = False

    def connect(self, host, port, keepalive=60):
        self.address = (host, port, keepalive)
        if self.accept:
            self.on_connect(self, None, {}, 0)

    def loop_start(self):
        self.loop_running = True

    def loop_stop(self):
        self.loop_running = False

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))

    def disconnect(self):
        self.disconnected = True


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttpSession:
    def __init__(self, status_code=200, exc=None):
        self.status_code = status_code
        self.exc = exc
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status_code)

    def close(self):
        self.closed = True


def test_mqtt_publish_alert():
    banner("TEST 1: MQTT alert publishing")

    client = FakeMqttClient()
    pub = MQTTPublisher(broker="10.0.0.5", port=1884, topic="facewatch/t/alert", client=client)
    pub.connect(timeout=0.5)
    assert pub.is_connected
    assert client.address == ("10.0.0.5", 1884, config.MQTT_KEEPALIVE)

    payload = alert_payload(2, node_id="t")
    pub.send(payload)
    topic, body, qos = client.published[0]
    assert topic == "facewatch/t/alert" and qos == 1
    assert json.loads(body) == payload
    print("✓ alert published as JSON, QoS 1")

    pub.close()
    assert client.disconnected and not pub.is_connected
    print("✓ disconnected cleanly")


def test_mqtt_connect_timeout():
    banner("TEST 2: MQTT broker unreachable")

    client = FakeMqttClient(accept=False)
    pub = MQTTPublisher(client=client)
    try:
        pub.connect(timeout=0.2)
        raise AssertionError("expected ConnectionError")
    except ConnectionError:
        pass
    assert not client.loop_running

    try:
        pub.send(alert_payload(1))
        raise AssertionError("expected ConnectionError")
    except ConnectionError:
        pass
    print("✓ ConnectionError on connect and send")


def test_mqtt_failure_does_not_escape_notifier():
    banner("TEST 3: Disconnected publisher behind the notifier")

    notifier = RateLimitedNotifier(MQTTPublisher(client=FakeMqttClient(accept=False)))
    assert notifier.maybe_notify(0.0, True)
    assert notifier.failures == 1
    print("✓ publish failure contained")


def test_http_alert_sink():
    banner("TEST 4: HTTP alert sink")

    session = FakeHttpSession()
    sink = HttpAlertSink(url="http://alerts.local/api", timeout=2.0, session=session)
    payload = alert_payload(1, node_id="t")
    assert sink.send(payload).result(timeout=2.0) == 200
    assert session.posts == [("http://alerts.local/api", payload, 2.0)]
    print("✓ payload POSTed as JSON")

    sink.close()
    assert session.closed


def test_http_alert_failures_are_reported():
    banner("TEST 5: HTTP sink failures")

    for session in (FakeHttpSession(status_code=503),
                    FakeHttpSession(exc=requests.ConnectionError("refused"))):
        sink = HttpAlertSink(url="http://alerts.local/api", session=session)
        future = sink.send(alert_payload(1))
        assert isinstance(future.exception(timeout=2.0), requests.RequestException)
        sink.close()
    print("✓ failures stay inside the worker future")


def test_build_alert_sink():
    banner("TEST 6: Alert sink selection")

    assert build_alert_sink(None) is None
    assert isinstance(build_alert_sink("log"), LogAlertSink)
    sink = build_alert_sink("http")
    assert isinstance(sink, HttpAlertSink)
    sink.close()
    print("✓ none / log / http")


def test_status_line():
    banner("TEST 7: Status line")

    loading = SimpleNamespace(loading=True, detecting=False, loop=None)
    assert status_line(loading, "timer") == LOADING

    running = SimpleNamespace(
        loading=False,
        detecting=True,
        loop=SimpleNamespace(last_result=[object(), object()]),
    )
    assert status_line(running, "frame") == "Detecting (frame) | faces: 2"

    idle = SimpleNamespace(loading=False, detecting=False, loop=None)
    assert status_line(idle, "frame") == "Detection stopped"
    print("✓ loading / detecting / stopped")


def test_config_consistency():
    banner("TEST 8: Config values")

    assert config.LOOP_POLICY in ("timer", "frame")
    assert config.ALERT_TRANSPORT in (None, "log", "mqtt", "http")
    assert config.ALERT_COOLDOWN == 10.0
    assert config.MQTT_TOPIC_ALERT == f"facewatch/{config.NODE_ID}/alert"
    print("✓ config sane")


def main():
    """Run all tests."""
    tests = [(name, fn) for name, fn in sorted(globals().items())
             if name.startswith("test_") and callable(fn)]

    failed = 0
    for name, test_func in tests:
        try:
            test_func()
        except Exception as e:
            failed += 1
            print(f"\n✗ {name} failed: {e!r}")

    print("\n" + "-" * 80)
    print(f"Result: {len(tests) - failed}/{len(tests)} tests passed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
