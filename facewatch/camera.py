# facewatch/camera.py
"""
Camera source.

acquire() opens the capture device and starts a reader thread that keeps
the most recent frame, the way a playing <video> element always shows the
latest picture. The detection loop only ever samples current_frame().

release() must run exactly once per stream; extra calls are ignored so
every teardown path can call it unconditionally. The capture is never
freed under a reader that is still inside read(). When the reader stops on
its own (device unplugged) the stream goes inactive and current_frame()
returns None instead of the last picture.
"""

from __future__ import annotations
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple, Union

import cv2
import numpy as np

from .errors import CameraDeviceError, CameraPermissionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConstraints:
    """Resolution hints for the requested video stream (video only)."""
    device: Union[int, str] = 0
    width: Optional[int] = 640
    height: Optional[int] = 480


class MediaStream:
    """A live capture plus the reader thread feeding its latest frame."""

    def __init__(self, capture, constraints: CameraConstraints, read_timeout: float = 1.0):
        self.capture = capture
        self.constraints = constraints
        self.read_timeout = float(read_timeout)

        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.released = False
        self.frames_read = 0
        self.ended = False
        self._release_pending = False

    def start(self) -> None:
        self._thread = threading.Thread(target=self._reader, name="camera-reader", daemon=True)
        self._thread.start()

    def _reader(self) -> None:
        try:
            while not self._stop.is_set():
                ok, frame = self.capture.read()
                if not ok:
                    logger.warning("Failed to read frame, camera reader stopping")
                    break
                with self._lock:
                    self._frame = frame
                    self.frames_read += 1
        finally:
            with self._lock:
                self._frame = None
                self.ended = True
                release = self._release_pending
            if release:
                self._free_capture()

    def _free_capture(self) -> None:
        self.capture.release()
        logger.info("Camera %s released", self.constraints.device)

    def current_frame(self) -> Optional[np.ndarray]:
        """Copy of the latest frame, or None before the first frame and after the reader ends."""
        with self._lock:
            return None if self._frame is None else self._frame.copy()

    @property
    def active(self) -> bool:
        return not self.released and not self.ended and self._thread is not None and self._thread.is_alive()

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(width, height) of the stream, from the latest frame when available."""
        with self._lock:
            if self._frame is not None:
                h, w = self._frame.shape[:2]
                return w, h
        w = int(self.capture.get(cv2.CAP_PROP_FRAME_WIDTH) or self.constraints.width or 0)
        h = int(self.capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or self.constraints.height or 0)
        return w, h

    def stop(self) -> bool:
        """
        Stop the reader and free the capture.

        Returns False when the reader is still blocked in read() after
        read_timeout; the reader then frees the capture itself on exit.
        """
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.read_timeout)
        with self._lock:
            deferred = self._thread is not None and not self.ended
            self._release_pending = deferred
        if deferred:
            logger.warning("Camera reader still busy, release deferred until it exits")
            return False
        self._free_capture()
        return True


class CameraSource:
    """Acquires and releases capture devices."""

    def __init__(self, capture_factory: Callable = cv2.VideoCapture):
        self._capture_factory = capture_factory

    @staticmethod
    def _device_node(device: Union[int, str]) -> Optional[Path]:
        if isinstance(device, int):
            return Path(f"/dev/video{device}")
        return None

    def _check_permission(self, device: Union[int, str]) -> None:
        node = self._device_node(device)
        if node is not None and node.exists() and not os.access(node, os.R_OK | os.W_OK):
            raise CameraPermissionError(f"Permission denied for camera {node}")

    def acquire(self, constraints: CameraConstraints = CameraConstraints()) -> MediaStream:
        """
        Open the camera and start streaming. Blocking; run it in an executor
        from async code.

        Raises:
            CameraPermissionError: device exists but is not accessible
            CameraDeviceError: device could not be opened
        """
        self._check_permission(constraints.device)

        cap = self._capture_factory(constraints.device)
        if not cap.isOpened():
            cap.release()
            raise CameraDeviceError(
                f"Camera {constraints.device} not opened. Try changing index (0/1/2)."
            )

        if constraints.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        if constraints.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)

        stream = MediaStream(cap, constraints)
        stream.start()
        logger.info("Camera %s opened", constraints.device)
        return stream

    def release(self, stream: Optional[MediaStream]) -> bool:
        """
        Stop the reader and free the device. Returns False if nothing was
        released. A reader stuck in read() frees the device when it returns.
        """
        if stream is None or stream.released:
            return False
        stream.released = True
        stream.stop()
        return True

    @contextmanager
    def session(self, constraints: CameraConstraints = CameraConstraints()) -> Iterator[MediaStream]:
        stream = self.acquire(constraints)
        try:
            yield stream
        finally:
            self.release(stream)
