"""Phone-side session: resolve a token, photograph a document, upload it once.

State machine::

    LOADING -> READY | EXPIRED | USED | ERROR
    READY -> UPLOADING -> SUCCESS
                       -> READY (error shown, capture kept)
                       -> USED | EXPIRED | ERROR

The camera stream is a scoped resource of the READY/UPLOADING superstate:
it is acquired on entering READY and released by ``_release_camera`` on every
way out (submit, terminal state, close).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from handoff.clients.api import (
    HandoffClientError,
    TokenExpired,
    TokenInfo,
    TokenNotFound,
    TokenUsed,
    UploadTokenApi,
)
from handoff.clients.camera import CameraProvider, CameraRequest, CameraStream, CameraUnavailable
from handoff.document_types import format_document_type
from handoff.logger import get_logger
from handoff.utils import mask_secret

_logger = get_logger("clients.capture")


class CaptureState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    UPLOADING = "uploading"
    SUCCESS = "success"
    EXPIRED = "expired"
    USED = "used"
    ERROR = "error"


_CAMERA_STATES = {CaptureState.READY, CaptureState.UPLOADING}

MESSAGES = {
    CaptureState.SUCCESS: (
        "Documento enviado!",
        "O documento foi recebido com sucesso. Você pode fechar esta página.",
    ),
    CaptureState.EXPIRED: (
        "Link expirado",
        "Este link de upload expirou. Solicite um novo QR code ao profissional.",
    ),
    CaptureState.USED: (
        "Link já utilizado",
        "Este link já foi utilizado para enviar um documento.",
    ),
    CaptureState.ERROR: ("Erro", "Link inválido"),
}


@dataclass(frozen=True)
class CapturedPhoto:
    filename: str
    data: bytes
    content_type: str = "image/jpeg"


def _capture_filename(now_ms: int) -> str:
    return f"documento-{now_ms}.jpg"


class CaptureSession:
    def __init__(
        self,
        api: UploadTokenApi,
        token_hash: str,
        camera: CameraProvider,
        *,
        camera_request: CameraRequest = CameraRequest(),
        jpeg_quality: int = 90,
        on_change: Optional[Callable[["CaptureSession"], Any]] = None,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._api = api
        self.token_hash = token_hash
        self._camera = camera
        self.camera_request = camera_request
        self.jpeg_quality = jpeg_quality
        self._on_change = on_change
        self._clock_ms = clock_ms

        self.state = CaptureState.LOADING
        self.info: Optional[TokenInfo] = None
        self.pending: Optional[CapturedPhoto] = None
        self.error = ""
        self.document_id: Optional[str] = None
        self.camera_ready = False
        self.camera_error = False
        self.closed = False
        self._stream: Optional[CameraStream] = None
        self._acquiring = False
        self._log = _logger.bind(token=mask_secret(token_hash))

    @property
    def document_label(self) -> str:
        if self.info is None:
            return "Documento"
        return format_document_type(self.info.document_type)

    @property
    def stream_open(self) -> bool:
        return self._stream is not None

    @property
    def can_capture(self) -> bool:
        return (
            self.state == CaptureState.READY
            and self.camera_ready
            and self._stream is not None
            and self.pending is None
        )

    def message(self) -> tuple[str, str]:
        title, body = MESSAGES.get(self.state, ("", ""))
        if self.state == CaptureState.ERROR and self.error:
            body = self.error
        return title, body

    def _notify(self) -> None:
        if self._on_change is not None and not self.closed:
            self._on_change(self)

    async def _set_state(self, new_state: CaptureState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        if old_state in _CAMERA_STATES and new_state not in _CAMERA_STATES:
            await self._release_camera()
        self.state = new_state
        self._log.info(
            "capture.transition",
            "Capture state changed",
            from_state=old_state.value,
            to_state=new_state.value,
        )
        self._notify()

    async def _acquire_camera(self) -> None:
        if self._stream is not None or self._acquiring or self.closed:
            return
        self._acquiring = True
        self.camera_ready = False
        self.camera_error = False
        try:
            stream = await self._camera.acquire(self.camera_request)
        except CameraUnavailable as exc:
            self.camera_error = True
            self._log.warning("capture.camera.error", "Camera unavailable", error=str(exc))
            self._notify()
            return
        finally:
            self._acquiring = False
        if self.closed or self.state != CaptureState.READY:
            # Left READY while the device was opening.
            await stream.release()
            return
        self._stream = stream
        self.camera_ready = True
        self._log.info("capture.camera.ready", "Camera stream is live")
        self._notify()

    async def _release_camera(self) -> None:
        stream = self._stream
        self._stream = None
        self.camera_ready = False
        if stream is None:
            return
        await stream.release()
        self._log.info("capture.camera.release", "Released camera stream")

    async def load(self) -> None:
        if self.closed or self.state != CaptureState.LOADING:
            return
        try:
            self.info = await self._api.info(self.token_hash)
        except TokenExpired:
            await self._set_state(CaptureState.EXPIRED)
            return
        except TokenUsed:
            await self._set_state(CaptureState.USED)
            return
        except TokenNotFound:
            self.error = "Link inválido"
            await self._set_state(CaptureState.ERROR)
            return
        except HandoffClientError as exc:
            self._log.warning("capture.load.error", "Token lookup failed", reason=exc.reason)
            self.error = "Erro de conexão"
            await self._set_state(CaptureState.ERROR)
            return
        if self.closed:
            return
        await self._set_state(CaptureState.READY)
        await self._acquire_camera()

    async def capture(self) -> bool:
        if not self.can_capture or self._stream is None:
            return False
        try:
            data = await self._stream.snapshot(self.jpeg_quality)
        except CameraUnavailable as exc:
            self.error = "Não foi possível capturar a foto"
            self._log.warning("capture.snapshot.error", "Snapshot failed", error=str(exc))
            # A dead stream is dropped so retake() opens a fresh one.
            await self._release_camera()
            self.camera_error = True
            self._notify()
            return False
        self.pending = CapturedPhoto(filename=_capture_filename(self._clock_ms()), data=data)
        self.error = ""
        self._log.info("capture.snapshot", "Captured photo", size_bytes=len(data))
        self._notify()
        return True

    async def retake(self) -> None:
        if self.closed or self.state != CaptureState.READY:
            return
        self.pending = None
        self.error = ""
        if self._stream is None:
            # The stream was released for an upload that failed.
            await self._acquire_camera()
        self._notify()

    async def take_another(self) -> None:
        await self.retake()

    async def submit(self) -> bool:
        if self.closed or self.state != CaptureState.READY or self.pending is None:
            return False
        photo = self.pending
        await self._release_camera()
        await self._set_state(CaptureState.UPLOADING)
        try:
            self.document_id = await self._api.consume(
                self.token_hash,
                filename=photo.filename,
                data=photo.data,
                content_type=photo.content_type,
            )
        except TokenUsed:
            await self._set_state(CaptureState.USED)
            return False
        except TokenExpired:
            await self._set_state(CaptureState.EXPIRED)
            return False
        except TokenNotFound:
            self.error = "Link inválido"
            await self._set_state(CaptureState.ERROR)
            return False
        except HandoffClientError as exc:
            if self.closed:
                return False
            self.error = exc.message or "Erro ao enviar arquivo"
            self._log.warning("capture.upload.error", "Upload failed", reason=exc.reason)
            await self._set_state(CaptureState.READY)
            return False
        if self.closed:
            return True
        self.pending = None
        await self._set_state(CaptureState.SUCCESS)
        return True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._release_camera()
        self._log.info("capture.close", "Closed capture session", state=self.state.value)
