# facewatch/session.py
"""
Watch session: the state behind one watch window.

Owns the camera stream, the detector handle and the detection loop for the
lifetime of the window. Both handles are created once in open() and reused
across every start/stop toggle; close() releases the camera exactly once no
matter how the session ends.

Failures never escape: they end up in `error` as the message the window
shows, and detection stays disabled until the user retries.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import numpy as np

from .camera import CameraConstraints, CameraSource, MediaStream
from .detection_loop import DetectionLoop, LoopState
from .detector import DetectorHandle
from .errors import CameraError, InitializationError
from .overlay import OverlayRenderer, new_surface

logger = logging.getLogger(__name__)

CAMERA_FAILED = "Failed to access webcam"
INIT_FAILED = "Failed to initialize detection"


class WatchSession:
    def __init__(
        self,
        camera: CameraSource,
        initialize_detector: Callable[[], Awaitable[DetectorHandle]],
        policy,
        constraints: CameraConstraints = CameraConstraints(),
        renderer: Optional[OverlayRenderer] = None,
        notifier=None,
        auto_start: bool = False,
    ):
        """
        Args:
            camera: camera source used to acquire the stream
            initialize_detector: coroutine factory returning a DetectorHandle
            policy: loop scheduling policy
            constraints: camera resolution hints
            renderer: overlay renderer passed to the loop
            notifier: optional rate-limited notifier passed to the loop
            auto_start: start detecting as soon as open() succeeds
        """
        self.camera = camera
        self.initialize_detector = initialize_detector
        self.policy = policy
        self.constraints = constraints
        self.renderer = renderer
        self.notifier = notifier
        self.auto_start = auto_start

        self.stream: Optional[MediaStream] = None
        self.handle: Optional[DetectorHandle] = None
        self.loop: Optional[DetectionLoop] = None
        self.surface: Optional[np.ndarray] = None
        self.error: Optional[str] = None
        self.loading = False
        self.closed = False

    async def open(self) -> "WatchSession":
        aio_loop = asyncio.get_running_loop()

        try:
            self.stream = await aio_loop.run_in_executor(None, self.camera.acquire, self.constraints)
        except CameraError as e:
            logger.error("Camera unavailable: %s", e)
            self._report(CAMERA_FAILED)

        self.loading = True
        try:
            self.handle = await self.initialize_detector()
        except InitializationError as e:
            logger.error("Detector unavailable: %s", e)
            self._report(INIT_FAILED)
        finally:
            self.loading = False

        if self.stream is not None and self.handle is not None:
            w, h = self.stream.frame_size
            self.surface = new_surface(w, h)
            self.loop = DetectionLoop(
                self.handle,
                self.stream,
                self.surface,
                self.policy,
                renderer=self.renderer,
                notifier=self.notifier,
                on_error=self._on_loop_error,
            )
            if self.auto_start:
                self.start()

        return self

    def _report(self, message: str) -> None:
        # both start-up failures stay visible, camera first
        self.error = message if self.error is None else f"{self.error}; {message}"

    def _on_loop_error(self, message: str) -> None:
        self.error = message

    @property
    def can_detect(self) -> bool:
        return self.loop is not None and not self.closed

    @property
    def detecting(self) -> bool:
        return self.loop is not None and self.loop.state is LoopState.RUNNING

    def start(self) -> bool:
        if not self.can_detect:
            return False
        started = self.loop.start()
        if started:
            self.error = None
        return started

    def stop(self) -> bool:
        if self.loop is None:
            return False
        return self.loop.stop()

    def toggle(self) -> bool:
        """Flip detection on/off. Returns the new detecting state."""
        if self.detecting:
            self.stop()
        else:
            self.start()
        return self.detecting

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.loop is not None:
            self.loop.close()
        self.camera.release(self.stream)

    async def __aenter__(self) -> "WatchSession":
        try:
            return await self.open()
        except BaseException:
            self.close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
