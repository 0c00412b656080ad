# watch_node/config.py
"""
Configuration for the face watch node.
Edit these values to match your deployment environment.
"""

# ─── Camera ─────────────────────────────────────────────────────────
CAMERA_INDEX = 0  # OpenCV VideoCapture index (change if needed)
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480

# ─── Detection Loop ─────────────────────────────────────────────────
# "timer": poll every TIMER_PERIOD seconds, starts automatically, alerts on.
# "frame": one detection per display refresh, toggled with the 's' key.
LOOP_POLICY = "timer"
TIMER_PERIOD = 0.100  # seconds between detection ticks
REFRESH_RATE = 60.0   # display refreshes per second
AUTO_START = LOOP_POLICY == "timer"

# ─── Detector ───────────────────────────────────────────────────────
# Native YuNet is used when this file exists; otherwise the UltraFace
# fallback is downloaded to FALLBACK_MODEL_PATH on first run.
PREFER_NATIVE = True
NATIVE_MODEL_PATH = "models/face_detection_yunet_2023mar.onnx"
FALLBACK_MODEL_PATH = "models/version-RFB-320.onnx"
FALLBACK_MODEL_URL = (
    "https://github.com/onnx/models/raw/main/validated/vision/body_analysis/"
    "ultraface/models/version-RFB-320.onnx"
)
SCORE_THRESHOLD = 0.7
NMS_THRESHOLD = 0.3

# ─── Overlay ────────────────────────────────────────────────────────
if LOOP_POLICY == "timer":
    OVERLAY_COLOR = (0, 0, 255)        # BGR red
    OVERLAY_LABEL = "Intruder Detected"
else:
    OVERLAY_COLOR = (128, 222, 74)     # BGR #4ade80
    OVERLAY_LABEL = None
OVERLAY_THICKNESS = 2

# ─── Alerts ─────────────────────────────────────────────────────────
# "log" only logs, "mqtt" publishes to MQTT_TOPIC_ALERT, "http" POSTs to
# ALERT_HTTP_URL. None disables alerting.
ALERT_TRANSPORT = "log" if LOOP_POLICY == "timer" else None
ALERT_COOLDOWN = 10.0  # seconds between two alerts
ALERT_HTTP_URL = "http://127.0.0.1:8000/api/alerts"
ALERT_HTTP_TIMEOUT = 5.0  # seconds

# ─── MQTT Broker ────────────────────────────────────────────────────
MQTT_BROKER_IP = "127.0.0.1"
MQTT_BROKER_PORT = 1883
MQTT_KEEPALIVE = 60  # seconds

NODE_ID = "watch01"
MQTT_TOPIC_ALERT = f"facewatch/{NODE_ID}/alert"

# ─── Alert Relay (alert_backend.ws_relay) ───────────────────────────
RELAY_WS_HOST = "0.0.0.0"  # listen on all interfaces
RELAY_WS_PORT = 9002
