# watch_node/main.py
"""
Face Watch Node — Entry Point

Opens the camera, loads a face detector, runs the detection loop and shows
the video with face boxes on top. In the "timer" policy a face triggers a
rate-limited alert (log, MQTT or HTTP, see config.py).

Architecture:
    Camera → DetectionLoop → Detector adapter → Overlay → WatchDisplay
                   ↓
          RateLimitedNotifier → alert sink (log / MQTT / HTTP)

Usage:
    python -m watch_node.main

Controls:
    s : start / stop detection
    q : quit
"""

from __future__ import annotations
import asyncio
import logging
from pathlib import Path

import numpy as np

from facewatch import detector
from facewatch.camera import CameraConstraints, CameraSource
from facewatch.camera_display import WatchDisplay
from facewatch.detection_loop import create_policy
from facewatch.notifier import LogAlertSink, RateLimitedNotifier
from facewatch.overlay import OverlayRenderer
from facewatch.session import WatchSession

from watch_node import config
from watch_node.http_alert import HttpAlertSink
from watch_node.mqtt_publisher import MQTTPublisher

LOADING = "Loading detection model..."


def build_alert_sink(transport):
    """Alert sink for the configured transport, or None when alerts are off."""
    if transport is None:
        return None
    if transport == "mqtt":
        publisher = MQTTPublisher()
        try:
            publisher.connect()
        except (ConnectionError, OSError) as e:
            print(f"\n✗ {e}")
            print("  Make sure Mosquitto is running. Alerts will only be logged.")
            return LogAlertSink()
        return publisher
    if transport == "http":
        return HttpAlertSink()
    return LogAlertSink()


def status_line(session: WatchSession, policy_name: str) -> str:
    if session.loading:
        return LOADING
    if session.detecting:
        n = len(session.loop.last_result)
        return f"Detecting ({policy_name}) | faces: {n}"
    return "Detection stopped"


async def run() -> None:
    policy = create_policy(config.LOOP_POLICY, config.TIMER_PERIOD, config.REFRESH_RATE)

    sink = build_alert_sink(config.ALERT_TRANSPORT)
    notifier = None
    if sink is not None:
        notifier = RateLimitedNotifier(sink, cooldown=config.ALERT_COOLDOWN, node_id=config.NODE_ID)

    async def init_detector():
        return await detector.initialize(
            native_model_path=Path(config.NATIVE_MODEL_PATH),
            fallback_model_path=Path(config.FALLBACK_MODEL_PATH),
            fallback_url=config.FALLBACK_MODEL_URL,
            prefer_native=config.PREFER_NATIVE,
            score_threshold=config.SCORE_THRESHOLD,
            nms_threshold=config.NMS_THRESHOLD,
        )

    session = WatchSession(
        CameraSource(),
        init_detector,
        policy,
        constraints=CameraConstraints(config.CAMERA_INDEX, config.CAMERA_WIDTH, config.CAMERA_HEIGHT),
        renderer=OverlayRenderer(
            color=config.OVERLAY_COLOR,
            thickness=config.OVERLAY_THICKNESS,
            label=config.OVERLAY_LABEL,
        ),
        notifier=notifier,
        auto_start=config.AUTO_START,
    )

    display = WatchDisplay()
    display.create_window(resizable=True)
    blank = np.zeros((config.CAMERA_HEIGHT, config.CAMERA_WIDTH, 3), dtype=np.uint8)
    frame_interval = 1.0 / config.REFRESH_RATE

    print("\nStreaming started. Controls: s=start/stop detection, q=quit")
    print("=" * 70 + "\n")

    # open in the background so the window can show the loading state
    opener = asyncio.ensure_future(session.open())
    last_error = None

    try:
        while True:
            frame = session.stream.current_frame() if session.stream is not None else None
            if frame is None:
                frame = blank

            picture = display.compose(
                frame,
                session.surface,
                status_line(session, policy.name),
                error=session.error,
                detecting=session.detecting,
                can_detect=session.can_detect,
            )
            display.show(picture)

            if session.error != last_error:
                if session.error:
                    print(f"  ✗ {session.error}")
                last_error = session.error

            key = display.poll_key()
            if key == WatchDisplay.KEY_QUIT:
                break
            elif key == WatchDisplay.KEY_TOGGLE and session.can_detect:
                on = session.toggle()
                print(f"  → Detection {'started' if on else 'stopped'}")

            await asyncio.sleep(frame_interval)

    finally:
        if not opener.done():
            print("  Waiting for start-up to finish ...")
        try:
            await opener
        finally:
            session.close()
            display.close_all()
            if sink is not None:
                sink.close()
            print("\n✓ Session ended")


def main():
    logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")

    print("\n" + "=" * 70)
    print("FACE WATCH NODE")
    print("=" * 70)
    print(f"Loop policy:     {config.LOOP_POLICY}")
    print(f"Alert transport: {config.ALERT_TRANSPORT or 'off'}")
    if config.ALERT_TRANSPORT == "mqtt":
        print(f"MQTT topic:      {config.MQTT_TOPIC_ALERT}")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n✓ Interrupted")


if __name__ == "__main__":
    main()
