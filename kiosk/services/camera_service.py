# kiosk/services/camera_service.py
"""
Camera capture for the kiosk webcam (OpenCV).

States: inactive → active → (capturing) → active, with `error` reachable
from inactive when the device cannot be opened.

Resolution strategy: one fixed request (CAMERA_WIDTH x CAMERA_HEIGHT). If the
device does not open, start_camera() fails outright; there is no fallback
across other resolutions. Drivers may still deliver a different size, and
captures always use whatever native frame size the device returns.

Mirror mode only affects preview frames. capture_photo() undoes the preview
flip, so a stored photo is never laterally flipped relative to the scene.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import cv2

from kiosk.config import settings
from kiosk.errors import CameraError, KioskError
from kiosk.utils.images import to_data_url
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)


class CameraState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    CAPTURING = "capturing"
    ERROR = "error"


@dataclass
class CapturedPhoto:
    data_url: str              # local JPEG encoding
    url: str                   # hosted URL, or data_url when not uploaded
    uploaded: bool
    width: int
    height: int


class CameraCapture:
    def __init__(self, index: Optional[int] = None, width: Optional[int] = None,
                 height: Optional[int] = None, jpeg_quality: Optional[int] = None,
                 mirrored: bool = True, capture_factory=cv2.VideoCapture):
        self.index = settings.CAMERA_INDEX if index is None else index
        self.width = width or settings.CAMERA_WIDTH
        self.height = height or settings.CAMERA_HEIGHT
        self.jpeg_quality = jpeg_quality or settings.CAMERA_JPEG_QUALITY
        self.mirrored = mirrored   # selfie-style preview by default
        self.state = CameraState.INACTIVE
        self.error: Optional[str] = None
        self._capture_factory = capture_factory
        self._cap = None

    def __enter__(self):
        self.start_camera()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop_camera()

    # ── Lifecycle ─────────────────────────────────────────────────────────
    def start_camera(self):
        """Open the device. Any previously open handle is released first."""
        self.stop_camera()
        self.error = None

        cap = self._capture_factory(self.index)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            self.state = CameraState.ERROR
            self.error = (
                f"Camera access error: device {self.index} could not be opened "
                f"(missing device or permission denied)"
            )
            logger.error(f"[CAMERA] {self.error}")
            raise CameraError(self.error)

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        self.state = CameraState.ACTIVE
        logger.info(f"[CAMERA] Device {self.index} started at {self.width}x{self.height}")

    def stop_camera(self):
        """Release the device handle. Safe to call repeatedly."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"[CAMERA] Device {self.index} released")
        if self.state != CameraState.ERROR:
            self.state = CameraState.INACTIVE

    def restart(self):
        self.state = CameraState.INACTIVE
        self.start_camera()

    def toggle_mirror(self) -> bool:
        self.mirrored = not self.mirrored
        return self.mirrored

    # ── Frames ────────────────────────────────────────────────────────────
    def _read_frame(self):
        if self._cap is None or self.state not in (CameraState.ACTIVE, CameraState.CAPTURING):
            raise CameraError("Camera is not active")
        ok, frame = self._cap.read()
        if not ok or frame is None:
            raise CameraError("Failed to read frame from camera")
        return frame

    def preview_frame(self):
        """Frame as shown on screen (flipped horizontally in mirror mode)."""
        frame = self._read_frame()
        return cv2.flip(frame, 1) if self.mirrored else frame

    def encode_jpeg(self, frame) -> str:
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise CameraError("Failed to encode photo")
        return to_data_url(buf.tobytes(), "image/jpeg")

    async def capture_photo(self, owner_ref: Optional[str] = None, storage=None) -> CapturedPhoto:
        """
        Snap the current frame at native resolution and encode it as JPEG.
        With an owner ref and a storage gateway the photo is uploaded to the
        photos bucket; an upload failure falls back to the local encoding.
        """
        self.state = CameraState.CAPTURING
        try:
            shown = self.preview_frame()
            frame = cv2.flip(shown, 1) if self.mirrored else shown
            height, width = frame.shape[:2]
            data_url = self.encode_jpeg(frame)
        finally:
            if self.state == CameraState.CAPTURING:
                self.state = CameraState.ACTIVE

        if not owner_ref or storage is None:
            return CapturedPhoto(data_url, data_url, False, width, height)

        try:
            url = await storage.upload(data_url, owner_ref, "photos")
        except KioskError as e:
            logger.warning(f"[CAMERA] Photo upload failed for {owner_ref}, using local image: {e}")
            return CapturedPhoto(data_url, data_url, False, width, height)
        return CapturedPhoto(data_url, url, True, width, height)


_camera: Optional[CameraCapture] = None


def get_camera() -> CameraCapture:
    """FastAPI dependency: the kiosk's single webcam, opened on first use."""
    global _camera
    if _camera is None:
        _camera = CameraCapture()
    if _camera.state != CameraState.ACTIVE:
        _camera.start_camera()
    return _camera


def release_camera():
    """Called on shutdown so the device handle is never leaked."""
    if _camera is not None:
        _camera.stop_camera()


def camera_state() -> str:
    return _camera.state.value if _camera is not None else CameraState.INACTIVE.value
