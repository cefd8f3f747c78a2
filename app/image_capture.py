# app/image_capture.py
"""
Image acquisition for a scan.

Two entry points produce the same CapturedImage: a still frame grabbed from a
camera stream owned by a CaptureSession, or an image file the user uploaded.
Both are downscaled so neither side exceeds MAX_DIMENSION and re-encoded as
JPEG before being handed to the analysis client as base64.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import base64
import io
import logging
import os

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("uvicorn.error")

MAX_DIMENSION = 1024
JPEG_QUALITY = 0.8


class PermissionDenied(Exception):
    """Camera permission was refused or no camera is available."""


class InvalidImage(ValueError):
    pass


@dataclass
class CapturedImage:
    data_base64: str
    width: int
    height: int
    mime_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data_base64}"


def scaled_size(width: int, height: int, max_dimension: int = MAX_DIMENSION):
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    ratio = max_dimension / float(longest)
    if width >= height:
        return max_dimension, max(1, round(height * ratio))
    return max(1, round(width * ratio)), max_dimension


def encode_frame(image: Union[bytes, Image.Image], max_dimension: int = MAX_DIMENSION,
                 quality: float = JPEG_QUALITY) -> CapturedImage:
    """Downscale (aspect preserved) and JPEG-encode one frame."""
    if isinstance(image, (bytes, bytearray)):
        try:
            image = Image.open(io.BytesIO(image))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImage(f"Unreadable image data: {e}") from e

    if image.mode != "RGB":
        image = image.convert("RGB")

    size = scaled_size(image.width, image.height, max_dimension)
    if size != image.size:
        image = image.resize(size, Image.LANCZOS)

    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=int(round(quality * 100)))
    return CapturedImage(
        data_base64=base64.b64encode(buf.getvalue()).decode("utf-8"),
        width=image.width,
        height=image.height,
    )


def from_upload(content: bytes) -> CapturedImage:
    """File-picker path, also the fallback when the camera is unavailable."""
    if not content:
        raise InvalidImage("Empty file.")
    return encode_frame(content)


# -----------------------------
# Camera
# -----------------------------
class CameraDevice:
    """Opens camera streams. A stream exposes `tracks`, each with stop(), and read_frame()."""

    def open(self, **settings):
        raise NotImplementedError


class _OpenCVTrack:
    def __init__(self, capture):
        self._capture = capture
        self.live = True

    def stop(self):
        if self.live:
            self._capture.release()
            self.live = False


class _OpenCVStream:
    def __init__(self, capture):
        self._capture = capture
        self.tracks = [_OpenCVTrack(capture)]

    def read_frame(self) -> Image.Image:
        import cv2

        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise InvalidImage("Camera returned no frame.")
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))


class OpenCVCamera(CameraDevice):
    def __init__(self, index: Optional[int] = None):
        self.index = index if index is not None else int(os.getenv("CAMERA_INDEX", "0"))

    def open(self, width: Optional[int] = None, height: Optional[int] = None, **_):
        import cv2

        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise PermissionDenied(f"Camera {self.index} is not accessible.")
        if width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        return _OpenCVStream(capture)


class CaptureSession:
    """
    Exclusive owner of one camera stream.

    Every path that opens a stream has a matching release: close() on
    cancel, reconfigure() before replacing the stream, and __exit__ on
    teardown. close() is safe to call repeatedly.
    """

    def __init__(self, device: Optional[CameraDevice] = None, **settings):
        self.device = device or OpenCVCamera()
        self.settings: Dict[str, Any] = dict(settings)
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> "CaptureSession":
        if self._stream is not None:
            return self
        try:
            self._stream = self.device.open(**self.settings)
        except PermissionError as e:
            raise PermissionDenied(str(e) or "Camera permission denied.") from e
        logger.info("Camera stream opened")
        return self

    def _release(self, stream) -> None:
        tracks: List[Any] = list(getattr(stream, "tracks", []) or [])
        for track in tracks:
            try:
                track.stop()
            except Exception as e:
                logger.warning(f"Failed to stop camera track: {e}")

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            self._release(stream)
            logger.info("Camera stream released")

    cancel = close

    def reconfigure(self, **settings) -> None:
        """Replace the stream with one opened using updated settings (e.g. torch, focus)."""
        self.close()
        self.settings.update(settings)
        self.open()

    def capture(self, max_dimension: int = MAX_DIMENSION, quality: float = JPEG_QUALITY) -> CapturedImage:
        if self._stream is None:
            self.open()
        frame = self._stream.read_frame()
        return encode_frame(frame, max_dimension=max_dimension, quality=quality)

    def __enter__(self) -> "CaptureSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
