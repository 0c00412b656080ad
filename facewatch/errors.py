# facewatch/errors.py
"""
Error taxonomy for the face watch.

Every error here is recovered by the watch session into a user-visible
message; none of them should take the process down.
"""


class FaceWatchError(Exception):
    """Base class for face watch errors."""


class InitializationError(FaceWatchError):
    """No detector backend could be constructed (permanent for the session)."""


class CameraError(FaceWatchError):
    """The camera stream could not be acquired."""


class CameraDeviceError(CameraError):
    """The capture device is missing or failed to open."""


class CameraPermissionError(CameraError, PermissionError):
    """The capture device exists but this process may not open it."""


class DetectionError(FaceWatchError):
    """A single detection call failed (frame not ready, inference error)."""
