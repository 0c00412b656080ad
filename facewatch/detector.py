# facewatch/detector.py
"""
Detector adapter.

Two backends produce face regions in different shapes:

    native    OpenCV's built-in YuNet detector (cv2.FaceDetectorYN).
              Returns boxes as (x, y, width, height).
    fallback  UltraFace RFB-320 run through onnxruntime.
              Returns each face as a top-left and a bottom-right point.

initialize() picks the native backend when the runtime offers it and loads
the fallback model otherwise. detect() dispatches on the handle's variant and
always returns FaceRect boxes in pixels of the input frame.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np
import onnxruntime
import requests

from .errors import DetectionError, InitializationError

logger = logging.getLogger(__name__)

DEFAULT_NATIVE_MODEL = Path("models/face_detection_yunet_2023mar.onnx")
DEFAULT_FALLBACK_MODEL = Path("models/version-RFB-320.onnx")
DEFAULT_FALLBACK_URL = (
    "https://github.com/onnx/models/raw/main/validated/vision/body_analysis/"
    "ultraface/models/version-RFB-320.onnx"
)

Point = Tuple[float, float]


class DetectorVariant(str, Enum):
    NATIVE = "native"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FaceRect:
    """Face box in pixels, origin at the frame's top-left corner."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class FacePrediction:
    """One face as reported by the fallback model (pixel corners)."""
    top_left: Point
    bottom_right: Point
    probability: float = 1.0


@dataclass(frozen=True)
class DetectorHandle:
    """A backend bound to exactly one variant. Never mutated after creation."""
    variant: DetectorVariant
    backend: object


# =====================================================================
# Native backend (YuNet, shipped with OpenCV >= 4.5.4)
# =====================================================================

class NativeFaceDetector:
    """Thin wrapper over cv2.FaceDetectorYN returning (x, y, w, h) boxes."""

    def __init__(
        self,
        model_path: Path = DEFAULT_NATIVE_MODEL,
        score_threshold: float = 0.7,
        nms_threshold: float = 0.3,
        top_k: int = 50,
    ):
        self.model_path = Path(model_path)
        self._detector = cv2.FaceDetectorYN.create(
            str(self.model_path),
            "",
            (320, 320),
            float(score_threshold),
            float(nms_threshold),
            int(top_k),
        )
        self._input_size: Optional[Tuple[int, int]] = None

    @staticmethod
    def available(model_path: Path = DEFAULT_NATIVE_MODEL) -> bool:
        return hasattr(cv2, "FaceDetectorYN") and Path(model_path).is_file()

    def detect(self, frame_bgr: np.ndarray) -> List[Tuple[float, float, float, float]]:
        h, w = frame_bgr.shape[:2]
        # YuNet needs the input size updated whenever the frame size changes
        if self._input_size != (w, h):
            self._detector.setInputSize((w, h))
            self._input_size = (w, h)

        _, faces = self._detector.detect(frame_bgr)
        if faces is None:
            return []
        return [tuple(float(v) for v in face[:4]) for face in faces]


# =====================================================================
# Fallback backend (UltraFace via onnxruntime)
# =====================================================================

def download_model(url: str, dest: Path, timeout: float = 30.0) -> Path:
    """Fetch model weights to dest (skipped when the file is already cached)."""
    dest = Path(dest)
    if dest.is_file():
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_suffix(dest.suffix + ".part")
    logger.info("Downloading fallback model %s", url)

    with requests.get(url, stream=True, timeout=timeout) as resp:
        resp.raise_for_status()
        with open(tmp, "wb") as f:
            for chunk in resp.iter_content(chunk_size=1 << 16):
                if chunk:
                    f.write(chunk)

    tmp.replace(dest)
    logger.info("Model saved to %s", dest)
    return dest


class UltraFaceModel:
    """
    UltraFace RFB-320 face detector.

    The network takes a 320x240 RGB image normalised to roughly [-1, 1] and
    outputs per-anchor scores (background, face) and boxes as normalised
    corners. estimate_faces() scales the corners to the frame's pixel size.
    """

    INPUT_SIZE = (320, 240)  # (w, h)

    def __init__(
        self,
        session,
        score_threshold: float = 0.7,
        nms_threshold: float = 0.3,
    ):
        self.session = session
        self.input_name = session.get_inputs()[0].name
        self.score_threshold = float(score_threshold)
        self.nms_threshold = float(nms_threshold)

    @classmethod
    def load(
        cls,
        model_path: Path = DEFAULT_FALLBACK_MODEL,
        url: Optional[str] = DEFAULT_FALLBACK_URL,
        score_threshold: float = 0.7,
        nms_threshold: float = 0.3,
    ) -> "UltraFaceModel":
        """Download (if needed) and load the model. Blocking."""
        model_path = Path(model_path)
        if not model_path.is_file():
            if not url:
                raise FileNotFoundError(f"Fallback model not found: {model_path}")
            download_model(url, model_path)

        session = onnxruntime.InferenceSession(
            str(model_path),
            providers=["CPUExecutionProvider"],
        )
        return cls(session, score_threshold=score_threshold, nms_threshold=nms_threshold)

    def _preprocess(self, frame_bgr: np.ndarray) -> np.ndarray:
        img = cv2.resize(frame_bgr, self.INPUT_SIZE)
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB).astype(np.float32)
        img = (img - 127.0) / 128.0
        return np.transpose(img, (2, 0, 1))[np.newaxis, ...]

    def estimate_faces(self, frame_bgr: np.ndarray) -> List[FacePrediction]:
        H, W = frame_bgr.shape[:2]
        scores, boxes = self.session.run(None, {self.input_name: self._preprocess(frame_bgr)})
        scores = scores[0][:, 1]
        boxes = boxes[0]

        keep = scores > self.score_threshold
        if not np.any(keep):
            return []
        scores = scores[keep]
        corners = boxes[keep] * np.array([W, H, W, H], dtype=np.float32)
        corners[:, 0::2] = np.clip(corners[:, 0::2], 0, W)
        corners[:, 1::2] = np.clip(corners[:, 1::2], 0, H)

        xywh = [
            [float(x1), float(y1), float(x2 - x1), float(y2 - y1)]
            for x1, y1, x2, y2 in corners
        ]
        idx = cv2.dnn.NMSBoxes(xywh, scores.tolist(), self.score_threshold, self.nms_threshold)

        predictions = []
        for i in np.array(idx).reshape(-1):
            x1, y1, x2, y2 = corners[int(i)]
            predictions.append(
                FacePrediction(
                    top_left=(float(x1), float(y1)),
                    bottom_right=(float(x2), float(y2)),
                    probability=float(scores[int(i)]),
                )
            )
        return predictions


# =====================================================================
# Adapter
# =====================================================================

def rect_from_corners(top_left: Point, bottom_right: Point) -> FaceRect:
    """Convert a corner pair into a box. Both points must share units."""
    x, y = top_left
    return FaceRect(
        x=x,
        y=y,
        width=bottom_right[0] - x,
        height=bottom_right[1] - y,
    )


def _native_rects(backend, frame: np.ndarray) -> List[FaceRect]:
    return [FaceRect(x, y, w, h) for (x, y, w, h) in backend.detect(frame)]


def _fallback_rects(backend, frame: np.ndarray) -> List[FaceRect]:
    return [rect_from_corners(p.top_left, p.bottom_right) for p in backend.estimate_faces(frame)]


_NORMALIZERS: Dict[DetectorVariant, Callable[[object, np.ndarray], List[FaceRect]]] = {
    DetectorVariant.NATIVE: _native_rects,
    DetectorVariant.FALLBACK: _fallback_rects,
}


async def initialize(
    native_model_path: Path = DEFAULT_NATIVE_MODEL,
    fallback_model_path: Path = DEFAULT_FALLBACK_MODEL,
    fallback_url: Optional[str] = DEFAULT_FALLBACK_URL,
    prefer_native: bool = True,
    score_threshold: float = 0.7,
    nms_threshold: float = 0.3,
) -> DetectorHandle:
    """
    Build a detector handle.

    The native backend is used when preferred and available. Otherwise the
    fallback model is downloaded/loaded in a worker thread.

    Raises:
        InitializationError: neither backend could be constructed
    """
    if prefer_native and NativeFaceDetector.available(native_model_path):
        try:
            backend = NativeFaceDetector(
                native_model_path,
                score_threshold=score_threshold,
                nms_threshold=nms_threshold,
            )
            logger.info("Using native detector (%s)", native_model_path)
            return DetectorHandle(DetectorVariant.NATIVE, backend)
        except cv2.error as e:
            logger.warning("Native detector unavailable, falling back: %s", e)

    loop = asyncio.get_running_loop()
    try:
        backend = await loop.run_in_executor(
            None,
            UltraFaceModel.load,
            fallback_model_path,
            fallback_url,
            score_threshold,
            nms_threshold,
        )
    except Exception as e:
        raise InitializationError(f"Failed to initialize detection: {e}") from e

    logger.info("Using fallback detector (%s)", fallback_model_path)
    return DetectorHandle(DetectorVariant.FALLBACK, backend)


def detect(handle: DetectorHandle, frame: Optional[np.ndarray]) -> List[FaceRect]:
    """
    Run the handle's backend on one frame and return pixel boxes.

    Raises:
        DetectionError: frame not ready or the backend failed
    """
    if frame is None:
        raise DetectionError("frame not ready")

    normalize = _NORMALIZERS[handle.variant]
    try:
        return normalize(handle.backend, frame)
    except Exception as e:
        raise DetectionError(f"{handle.variant.value} detection failed: {e}") from e
