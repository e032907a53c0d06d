import asyncio

import httpx
import pytest

from handoff.clients.api import InvalidUpload, TokenNotFound, TokenUsed, UploadTokenApi
from handoff.clients.capture import CaptureSession, CaptureState
from handoff.clients.generator import GeneratorSession, GeneratorState
from handoff.timing import PollPolicy
from tests.clients.helpers import JPEG_FRAME, FakeCamera, wait_for


async def test_operator_and_phone_complete_handoff(async_client: httpx.AsyncClient) -> None:
    api = UploadTokenApi(client=async_client)
    successes = []
    generator = GeneratorSession(
        api,
        entity_type="CITIZEN",
        entity_id="4821",
        origin="http://test",
        poll_policy=PollPolicy(initial_delay=0.05, interval=0.02, max_attempts=50),
        tick_seconds=0.05,
        auto_close_seconds=0.02,
        on_success=lambda: successes.append(True),
    )
    generator.select_type("RG")
    assert await generator.generate() is True
    assert generator.hash is not None
    assert generator.link == f"http://test/upload/{generator.hash}"

    camera = FakeCamera()
    phone = CaptureSession(api, generator.hash, camera)
    await phone.load()
    assert phone.state == CaptureState.READY
    assert phone.info is not None
    assert phone.info.document_type == "RG"
    assert phone.info.subscriber_name == "Unidade Básica Centro"

    assert await phone.capture() is True
    assert await phone.submit() is True
    assert phone.state == CaptureState.SUCCESS
    assert camera.open_streams == 0

    status = await api.status(generator.hash)
    assert status.used is True and status.expired is False

    await wait_for(lambda: generator.closed, timeout=5.0)
    assert generator.state == GeneratorState.SUCCESS
    assert successes == [True]
    await generator.aclose()


async def test_second_tab_sees_used(async_client: httpx.AsyncClient) -> None:
    api = UploadTokenApi(client=async_client)
    token = await api.generate(entity_type="CITIZEN", entity_id="9", document_type="CPF")

    first = CaptureSession(api, token.hash, FakeCamera())
    second = CaptureSession(api, token.hash, FakeCamera())
    await asyncio.gather(first.load(), second.load())
    await first.capture()
    await second.capture()

    results = await asyncio.gather(first.submit(), second.submit())

    assert sorted(results) == [False, True]
    assert {first.state, second.state} == {CaptureState.SUCCESS, CaptureState.USED}


async def test_api_client_error_mapping(async_client: httpx.AsyncClient) -> None:
    api = UploadTokenApi(client=async_client)

    with pytest.raises(TokenNotFound) as not_found:
        await api.info("unknown")
    assert not_found.value.status_code == 404
    assert not_found.value.message == "Link inválido"

    token = await api.generate(entity_type="CITIZEN", entity_id="9", document_type="CPF")
    await api.consume(token.hash, filename="a.jpg", data=JPEG_FRAME)
    with pytest.raises(TokenUsed) as used:
        await api.consume(token.hash, filename="b.jpg", data=JPEG_FRAME)
    assert used.value.status_code == 410

    other = await api.generate(entity_type="CITIZEN", entity_id="9", document_type="CPF")
    with pytest.raises(InvalidUpload):
        await api.consume(other.hash, filename="c.txt", data=b"plain", content_type="text/plain")
