# facewatch/camera_display.py
"""
Watch window.

One resizable OpenCV window showing the video with the face overlay on top,
a status bar (loading / error message, detection state) and key hints.
"""

from __future__ import annotations
from typing import Optional

import cv2
import numpy as np

from .overlay import composite


class WatchDisplay:
    """
    Manages the watch window.

    Keys:
        s : start / stop detection
        q : quit
    """

    LARGE = "large"
    MEDIUM = "medium"

    KEY_TOGGLE = ord("s")
    KEY_QUIT = ord("q")

    def __init__(self, name: str = "Real-Time Face Detection", mode: str = LARGE):
        self.name = name
        self.mode = mode
        if mode == self.LARGE:
            self.width, self.height = 1280, 960
        else:
            self.width, self.height = 720, 560
        self._created = False

    def create_window(self, resizable: bool = True) -> None:
        flags = cv2.WINDOW_NORMAL if resizable else cv2.WINDOW_AUTOSIZE
        cv2.namedWindow(self.name, flags)
        if resizable:
            cv2.resizeWindow(self.name, self.width, self.height)
        self._created = True

    @staticmethod
    def compose(
        frame: np.ndarray,
        overlay: Optional[np.ndarray],
        status: str,
        error: Optional[str] = None,
        detecting: bool = False,
        can_detect: bool = True,
    ) -> np.ndarray:
        """Build the picture shown in the window (pure; no window needed)."""
        vis = composite(frame, overlay) if overlay is not None else frame.copy()
        H, W = vis.shape[:2]

        # Status bar: error in red, otherwise the detection state
        cv2.rectangle(vis, (0, 0), (W, 34), (0, 0, 0), -1)
        if error:
            cv2.putText(vis, error, (10, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)
        else:
            cv2.putText(vis, status, (10, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)

        if can_detect:
            hint = "[s] Stop Detection" if detecting else "[s] Start Detection"
        else:
            hint = "[s] unavailable"
        cv2.putText(vis, f"{hint}  [q] Quit", (10, H - 12),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 255), 1)
        return vis

    def show(self, picture: np.ndarray) -> None:
        if not self._created:
            self.create_window()
        cv2.imshow(self.name, picture)

    def poll_key(self, delay_ms: int = 1) -> int:
        return cv2.waitKey(delay_ms) & 0xFF

    def close_all(self) -> None:
        cv2.destroyAllWindows()
        self._created = False
