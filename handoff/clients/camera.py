from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import cv2

from handoff.logger import get_logger

_logger = get_logger("clients.camera")


class CameraUnavailable(RuntimeError):
    """Permission denied, device missing, or the stream stopped producing frames."""


@dataclass(frozen=True)
class CameraRequest:
    facing: str = "environment"
    width: int = 1920
    height: int = 1080


class CameraStream(Protocol):
    async def snapshot(self, quality: int) -> bytes:
        """Grab the current frame and return it JPEG-encoded."""

    async def release(self) -> None:
        ...


class CameraProvider(Protocol):
    async def acquire(self, request: CameraRequest) -> CameraStream:
        ...


class OpenCVCameraStream:
    def __init__(self, capture: "cv2.VideoCapture", index: int) -> None:
        self._capture: Optional[cv2.VideoCapture] = capture
        self.index = index

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def _snapshot_sync(self, quality: int) -> bytes:
        if self._capture is None:
            raise CameraUnavailable("Camera stream is closed")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraUnavailable("Camera returned no frame")
        encoded_ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        if not encoded_ok:
            raise CameraUnavailable("Could not encode camera frame")
        return buffer.tobytes()

    async def snapshot(self, quality: int) -> bytes:
        return await asyncio.to_thread(self._snapshot_sync, quality)

    async def release(self) -> None:
        capture = self._capture
        self._capture = None
        if capture is None:
            return
        await asyncio.to_thread(capture.release)
        _logger.info("camera.release", "Released camera", index=self.index)


class OpenCVCameraProvider:
    """Opens local capture devices; ``facing`` is resolved through an index map."""

    def __init__(self, index_by_facing: Optional[Mapping[str, int]] = None, default_index: int = 0) -> None:
        self._index_by_facing = dict(index_by_facing or {})
        self._default_index = default_index

    def _open_sync(self, index: int, request: CameraRequest) -> "cv2.VideoCapture":
        with _logger.operation(
            "camera.acquire",
            "Opening camera",
            index=index,
            facing=request.facing,
            width=request.width,
            height=request.height,
        ) as op:
            capture = cv2.VideoCapture(index)
            if not capture.isOpened():
                capture.release()
                op.step_warning("device.open", "Camera could not be opened", index=index)
                raise CameraUnavailable(f"Camera {index} could not be opened")
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, request.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, request.height)
            op.step(
                "device.configure",
                "Configured camera resolution",
                actual_width=capture.get(cv2.CAP_PROP_FRAME_WIDTH),
                actual_height=capture.get(cv2.CAP_PROP_FRAME_HEIGHT),
            )
            return capture

    async def acquire(self, request: CameraRequest) -> OpenCVCameraStream:
        index = self._index_by_facing.get(request.facing, self._default_index)
        capture = await asyncio.to_thread(self._open_sync, index, request)
        return OpenCVCameraStream(capture, index)
