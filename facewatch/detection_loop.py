# facewatch/detection_loop.py
"""
Detection loop.

One loop class, two scheduling policies:

    TimerPolicy      fires every `period` seconds whether or not the last
                     detection finished. A tick that finds an iteration still
                     in flight is skipped, never overlapped.
    FrameSyncPolicy  runs one iteration, waits for the next display refresh,
                     then runs the next. Calls are serialised by construction.

State machine:
    IDLE --start--> RUNNING --stop/error--> STOPPED --start--> RUNNING

The loop owns its driver task and cancels it on stop(), so nothing is drawn
after stop() returns. Inference runs on a single worker thread owned by the
loop; a cancelled call still finishes on that thread before the next one
starts, so two backend calls never overlap.
"""

from __future__ import annotations
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from .detector import DetectorHandle, FaceRect, detect
from .errors import DetectionError
from .overlay import OverlayRenderer

logger = logging.getLogger(__name__)

DETECTION_FAILED = "Detection failed"


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class TimerPolicy:
    """Fixed wall-clock period; overlapping ticks are skipped."""

    name = "timer"

    def __init__(self, period: float = 0.1):
        if period <= 0:
            raise ValueError("period must be positive")
        self.period = float(period)

    async def drive(self, loop: "DetectionLoop") -> None:
        while True:
            if loop.in_flight:
                loop.skipped_ticks += 1
            else:
                loop.launch_iteration()
            await asyncio.sleep(self.period)


class FrameSyncPolicy:
    """Next iteration is scheduled only after the current one has drawn."""

    name = "frame"

    def __init__(self, refresh_rate: float = 60.0):
        if refresh_rate <= 0:
            raise ValueError("refresh_rate must be positive")
        self.refresh_rate = float(refresh_rate)

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.refresh_rate

    async def drive(self, loop: "DetectionLoop") -> None:
        while await loop.run_iteration():
            await asyncio.sleep(self.frame_interval)


def create_policy(name: str, period: float = 0.1, refresh_rate: float = 60.0):
    if name == TimerPolicy.name:
        return TimerPolicy(period)
    if name == FrameSyncPolicy.name:
        return FrameSyncPolicy(refresh_rate)
    raise ValueError(f"Unknown loop policy: {name!r} (expected 'timer' or 'frame')")


class DetectionLoop:
    """Pulls frames, detects faces, draws them and feeds the notifier."""

    def __init__(
        self,
        handle: DetectorHandle,
        stream,
        surface: np.ndarray,
        policy,
        renderer: Optional[OverlayRenderer] = None,
        notifier=None,
        on_error: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            handle: detector handle from detector.initialize()
            stream: anything with current_frame() -> ndarray | None
            surface: overlay surface the renderer draws on
            policy: TimerPolicy or FrameSyncPolicy
            renderer: overlay renderer (defaults to red boxes)
            notifier: optional RateLimitedNotifier
            on_error: called with a user-visible message when the loop halts
            clock: monotonic time source for the notifier
        """
        self.handle = handle
        self.stream = stream
        self.surface = surface
        self.policy = policy
        self.renderer = renderer or OverlayRenderer()
        self.notifier = notifier
        self.on_error = on_error
        self.clock = clock

        self.state = LoopState.IDLE
        self.error: Optional[Exception] = None
        self.last_result: List[FaceRect] = []
        self.frames_processed = 0
        self.skipped_ticks = 0

        self._driver: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="detect")

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> bool:
        """Start detecting. Must be called from the event loop. No-op if running."""
        if self.running:
            return False
        self.state = LoopState.RUNNING
        self.error = None
        self._driver = asyncio.ensure_future(self.policy.drive(self))
        logger.info("Detection started (%s policy)", self.policy.name)
        return True

    def stop(self) -> bool:
        """Cancel any pending work. Safe to call repeatedly."""
        if not self.running:
            return False
        self._cancel_pending()
        self.state = LoopState.STOPPED
        logger.info("Detection stopped")
        return True

    def close(self) -> None:
        """Stop and free the inference thread. The loop cannot be restarted."""
        self.stop()
        self._executor.shutdown(wait=False)

    def _cancel_pending(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._driver, self._inflight):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._driver = None
        self._inflight = None

    def _fail(self, error: DetectionError) -> None:
        logger.error("Detection failed: %s", error)
        self.error = error
        self._cancel_pending()
        self.state = LoopState.STOPPED
        if self.on_error is not None:
            self.on_error(DETECTION_FAILED)

    # -----------------------------------------------------------------
    # Iterations
    # -----------------------------------------------------------------

    def launch_iteration(self) -> asyncio.Task:
        self._inflight = asyncio.ensure_future(self.run_iteration())
        return self._inflight

    async def run_iteration(self) -> bool:
        """One detect → render → notify pass. Returns False once the loop halts."""
        frame = self.stream.current_frame()
        aio_loop = asyncio.get_running_loop()
        try:
            faces = await aio_loop.run_in_executor(self._executor, detect, self.handle, frame)
        except DetectionError as e:
            self._fail(e)
            return False

        # stopped while inference was running
        if not self.running:
            return False

        try:
            self.renderer.render(self.surface, faces)
            self.last_result = faces
            self.frames_processed += 1

            if self.notifier is not None:
                self.notifier.maybe_notify(self.clock(), bool(faces), face_count=len(faces))
        except Exception as e:
            # anything raised here halts the loop like a backend failure
            error = DetectionError(f"iteration failed: {e}")
            error.__cause__ = e
            self._fail(error)
            return False
        return True
