# facewatch/overlay.py
"""
Overlay renderer.

The overlay is a transparent drawing surface the same size as the video:
a BGR array where all-zero pixels mean "nothing drawn". Every render()
starts from a cleared surface, so boxes never accumulate across frames.
"""

from __future__ import annotations
from typing import Iterable, Optional, Tuple

import cv2
import numpy as np

from .detector import FaceRect

RED = (0, 0, 255)
GREEN = (128, 222, 74)  # BGR of #4ade80


def new_surface(width: int, height: int) -> np.ndarray:
    """Blank overlay surface matching a video of the given size."""
    return np.zeros((int(height), int(width), 3), dtype=np.uint8)


class OverlayRenderer:
    """Draws face boxes (and an optional label) onto an overlay surface."""

    def __init__(
        self,
        color: Tuple[int, int, int] = RED,
        thickness: int = 2,
        label: Optional[str] = None,
        font_scale: float = 0.5,
    ):
        """
        Args:
            color: BGR stroke colour for boxes and label
            thickness: stroke width in pixels
            label: text drawn 10px above each box, or None for boxes only
            font_scale: cv2.putText font scale for the label
        """
        self.color = tuple(int(c) for c in color)
        self.thickness = int(thickness)
        self.label = label
        self.font_scale = float(font_scale)

    def render(self, surface: np.ndarray, faces: Iterable[FaceRect]) -> None:
        surface[:] = 0

        for face in faces:
            x = int(round(face.x))
            y = int(round(face.y))
            x2 = int(round(face.x + face.width))
            y2 = int(round(face.y + face.height))

            cv2.rectangle(surface, (x, y), (x2, y2), self.color, self.thickness)

            if self.label:
                cv2.putText(
                    surface,
                    self.label,
                    (x, y - 10),
                    cv2.FONT_HERSHEY_SIMPLEX,
                    self.font_scale,
                    self.color,
                    1,
                    cv2.LINE_AA,
                )


def composite(frame: np.ndarray, surface: np.ndarray) -> np.ndarray:
    """Copy of frame with every drawn overlay pixel painted on top."""
    out = frame.copy()
    if surface.shape[:2] != frame.shape[:2]:
        surface = cv2.resize(surface, (frame.shape[1], frame.shape[0]), interpolation=cv2.INTER_NEAREST)
    mask = surface.any(axis=2)
    out[mask] = surface[mask]
    return out
