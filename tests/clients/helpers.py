import asyncio
from datetime import timedelta
from typing import Any, Callable, List, Optional, Union

from handoff.clients.api import GeneratedToken, TokenInfo, TokenStatus
from handoff.clients.camera import CameraRequest, CameraUnavailable
from handoff.timing import utcnow

JPEG_FRAME = b"\xff\xd8\xff\xe0" + b"\x10" * 128

StatusResult = Union[TokenStatus, Exception]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeGeneratorApi:
    def __init__(
        self,
        statuses: Optional[List[StatusResult]] = None,
        *,
        expires_in: float = 780.0,
    ) -> None:
        self.statuses = list(statuses or [])
        self.expires_in = expires_in
        self.generate_calls = 0
        self.status_calls = 0
        self.generate_error: Optional[Exception] = None
        self.generate_gate: Optional[asyncio.Event] = None
        self.status_gate: Optional[asyncio.Event] = None

    async def generate(self, *, entity_type: str, entity_id: str, document_type: str) -> GeneratedToken:
        self.generate_calls += 1
        if self.generate_gate is not None:
            await self.generate_gate.wait()
        if self.generate_error is not None:
            raise self.generate_error
        return GeneratedToken(
            hash=f"token-{self.generate_calls}",
            expires_at=utcnow() + timedelta(seconds=self.expires_in),
        )

    async def status(self, token_hash: str) -> TokenStatus:
        self.status_calls += 1
        if self.status_gate is not None:
            await self.status_gate.wait()
        item = self.statuses.pop(0) if self.statuses else TokenStatus(used=False, expired=False)
        if isinstance(item, Exception):
            raise item
        return item


class FakeCaptureApi:
    def __init__(self, info: Union[TokenInfo, Exception, None] = None) -> None:
        self.info_result = info or TokenInfo(
            entity_type="CITIZEN",
            document_type="RG",
            subscriber_name="Unidade Básica Centro",
        )
        self.consume_results: List[Union[str, Exception]] = []
        self.uploads: List[Any] = []
        self.info_calls = 0

    async def info(self, token_hash: str) -> TokenInfo:
        self.info_calls += 1
        if isinstance(self.info_result, Exception):
            raise self.info_result
        return self.info_result

    async def consume(self, token_hash: str, *, filename: str, data: bytes, content_type: str = "image/jpeg") -> str:
        self.uploads.append((token_hash, filename, data, content_type))
        result = self.consume_results.pop(0) if self.consume_results else "doc-1"
        if isinstance(result, Exception):
            raise result
        return result


class FakeStream:
    def __init__(self, camera: "FakeCamera") -> None:
        self._camera = camera
        self.released = False

    async def snapshot(self, quality: int) -> bytes:
        if self.released:
            raise CameraUnavailable("stream released")
        if self._camera.fail_snapshot:
            raise CameraUnavailable("camera returned no frame")
        self._camera.snapshot_qualities.append(quality)
        return JPEG_FRAME

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._camera.open_streams -= 1


class FakeCamera:
    def __init__(self) -> None:
        self.requests: List[CameraRequest] = []
        self.open_streams = 0
        self.max_open_streams = 0
        self.snapshot_qualities: List[int] = []
        self.fail = False
        self.fail_snapshot = False
        self.gate: Optional[asyncio.Event] = None

    @property
    def acquired(self) -> int:
        return len(self.requests)

    async def acquire(self, request: CameraRequest) -> FakeStream:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise CameraUnavailable("permission denied")
        self.open_streams += 1
        self.max_open_streams = max(self.max_open_streams, self.open_streams)
        return FakeStream(self)
