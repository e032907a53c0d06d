import asyncio
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from handoff.config import get_settings
from handoff.models import Event, UploadedDocument, UploadToken
from handoff.services import upload_tokens as service
from handoff.timing import utcnow
from tests.common import JPEG_BYTES, PNG_BYTES


async def _generate(session: AsyncSession, **overrides: str) -> str:
    params = {
        "entity_type": "CITIZEN",
        "entity_id": "4821",
        "document_type": "RG",
        "subscriber_name": "Unidade Básica Centro",
    }
    params.update(overrides)
    token = await service.generate(session, **params)
    return token.hash


async def test_generate_issues_unique_token_with_ttl(session: AsyncSession) -> None:
    before = utcnow()
    first = await service.generate(
        session,
        entity_type="CITIZEN",
        entity_id="4821",
        document_type="RG",
        subscriber_name="Unidade Básica Centro",
        issued_by="operator-7",
    )
    second = await service.generate(
        session,
        entity_type="CITIZEN",
        entity_id="4821",
        document_type="RG",
        subscriber_name="Unidade Básica Centro",
    )
    assert first.hash != second.hash
    assert len(first.hash) >= 32
    ttl = timedelta(seconds=get_settings().upload_token_ttl_seconds)
    assert before + ttl <= first.expires_at <= utcnow() + ttl

    row = await service.get_token(session, first.hash)
    assert row is not None
    assert row.used_at is None
    assert row.issued_by == "operator-7"


async def test_generate_rejects_unknown_types(session: AsyncSession) -> None:
    with pytest.raises(service.UploadTokenValidationError):
        await _generate(session, document_type="PASSPORT")
    with pytest.raises(service.UploadTokenValidationError):
        await _generate(session, entity_type="COMPANY")
    with pytest.raises(service.UploadTokenValidationError):
        await _generate(session, entity_id="   ")


async def test_info_and_status_for_pending_token(session: AsyncSession) -> None:
    token_hash = await _generate(session)

    info = await service.get_info(session, token_hash)
    assert info.entity_type == "CITIZEN"
    assert info.document_type == "RG"
    assert info.subscriber_name == "Unidade Básica Centro"

    status = await service.get_status(session, token_hash)
    assert status.used is False
    assert status.expired is False


async def test_unknown_hash_is_not_found(session: AsyncSession) -> None:
    with pytest.raises(service.UploadTokenNotFound):
        await service.get_info(session, "missing")
    with pytest.raises(service.UploadTokenNotFound):
        await service.get_status(session, "missing")
    with pytest.raises(service.UploadTokenNotFound):
        await service.consume(
            session, "missing", filename="a.jpg", content_type="image/jpeg", data=JPEG_BYTES
        )


async def test_consume_marks_used_and_stores_document(session: AsyncSession) -> None:
    token_hash = await _generate(session)

    document = await service.consume(
        session,
        token_hash,
        filename="documento-1.jpg",
        content_type="image/jpeg",
        data=JPEG_BYTES,
    )

    assert document.content_type == "image/jpeg"
    assert document.size_bytes == len(JPEG_BYTES)
    assert document.filename == "documento-1.jpg"
    stored = Path(document.location)
    assert stored.read_bytes() == JPEG_BYTES
    assert stored.parent.name == "4821"
    assert stored.parent.parent.name == "citizen"

    status = await service.get_status(session, token_hash)
    assert status.used is True
    assert status.expired is False

    with pytest.raises(service.UploadTokenUsed):
        await service.get_info(session, token_hash)
    with pytest.raises(service.UploadTokenUsed):
        await service.consume(
            session, token_hash, filename="again.jpg", content_type="image/jpeg", data=JPEG_BYTES
        )

    events = (await session.execute(select(Event))).scalars().all()
    assert sorted(event.name for event in events) == ["upload_token.consume", "upload_token.generate"]


async def test_expired_token_never_succeeds(session: AsyncSession) -> None:
    token_hash = await _generate(session)
    later = utcnow() + timedelta(seconds=get_settings().upload_token_ttl_seconds + 1)

    with pytest.raises(service.UploadTokenExpired):
        await service.get_info(session, token_hash, now=later)
    status = await service.get_status(session, token_hash, now=later)
    assert status.used is False
    assert status.expired is True
    with pytest.raises(service.UploadTokenExpired):
        await service.consume(
            session,
            token_hash,
            filename="late.jpg",
            content_type="image/jpeg",
            data=JPEG_BYTES,
            now=later,
        )

    row = await service.get_token(session, token_hash, refresh=True)
    assert row is not None
    assert row.used_at is None


async def test_used_wins_over_expired(session: AsyncSession) -> None:
    token_hash = await _generate(session)
    await service.consume(
        session, token_hash, filename="a.jpg", content_type="image/jpeg", data=JPEG_BYTES
    )
    later = utcnow() + timedelta(hours=1)

    status = await service.get_status(session, token_hash, now=later)
    assert status.used is True
    assert status.expired is False
    with pytest.raises(service.UploadTokenUsed):
        await service.get_info(session, token_hash, now=later)


async def test_invalid_file_leaves_token_pending(session: AsyncSession) -> None:
    token_hash = await _generate(session)

    with pytest.raises(service.InvalidUploadFile):
        await service.consume(
            session, token_hash, filename="notes.txt", content_type="text/plain", data=b"hello"
        )
    with pytest.raises(service.InvalidUploadFile):
        await service.consume(
            session, token_hash, filename="empty.jpg", content_type="image/jpeg", data=b""
        )
    with pytest.raises(service.InvalidUploadFile):
        await service.consume(
            session, token_hash, filename="fake.jpg", content_type="image/jpeg", data=PNG_BYTES
        )

    status = await service.get_status(session, token_hash)
    assert status.used is False


def test_validate_upload_content_types() -> None:
    assert service.validate_upload("image/jpeg", JPEG_BYTES, max_bytes=1024) == "image/jpeg"
    assert service.validate_upload("application/octet-stream", PNG_BYTES, max_bytes=1024) == "image/png"
    assert service.validate_upload(None, JPEG_BYTES, max_bytes=1024) == "image/jpeg"
    assert service.validate_upload("image/jpeg; charset=binary", JPEG_BYTES, max_bytes=1024) == "image/jpeg"
    with pytest.raises(service.InvalidUploadFile):
        service.validate_upload("image/jpeg", JPEG_BYTES, max_bytes=10)
    with pytest.raises(service.InvalidUploadFile):
        service.validate_upload("", b"plain text", max_bytes=1024)


async def test_stale_session_loses_consume_race(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as setup:
        token_hash = await _generate(setup)

    async with session_factory() as first, session_factory() as second:
        # Both tabs have already seen the token as pending.
        assert (await service.get_token(second, token_hash)) is not None

        await service.consume(
            first, token_hash, filename="a.jpg", content_type="image/jpeg", data=JPEG_BYTES
        )
        with pytest.raises(service.UploadTokenUsed):
            await service.consume(
                second, token_hash, filename="b.jpg", content_type="image/jpeg", data=JPEG_BYTES
            )

    async with session_factory() as check:
        documents = (await check.execute(select(UploadedDocument))).scalars().all()
        assert len(documents) == 1
        assert documents[0].filename == "a.jpg"


async def test_concurrent_consumes_have_one_winner(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as setup:
        token_hash = await _generate(setup)

    async def attempt(name: str) -> str:
        async with session_factory() as db_session:
            try:
                await service.consume(
                    db_session,
                    token_hash,
                    filename=f"{name}.jpg",
                    content_type="image/jpeg",
                    data=JPEG_BYTES,
                )
            except service.UploadTokenUsed:
                return "used"
            return "success"

    results = await asyncio.gather(*(attempt(f"tab-{index}") for index in range(4)))

    assert sorted(results) == ["success", "used", "used", "used"]
    async with session_factory() as check:
        documents = (await check.execute(select(UploadedDocument))).scalars().all()
        assert len(documents) == 1
        token = (
            await check.execute(select(UploadToken).where(UploadToken.hash == token_hash))
        ).scalar_one()
        assert token.used_at is not None


async def test_consume_succeeds_at_exact_expiry_instant(session: AsyncSession) -> None:
    issued_at = utcnow()
    token = await service.generate(
        session,
        entity_type="CITIZEN",
        entity_id="4821",
        document_type="RG",
        subscriber_name="Unidade Básica Centro",
        now=issued_at,
    )
    boundary = issued_at + timedelta(seconds=get_settings().upload_token_ttl_seconds)

    await service.get_info(session, token.hash, now=boundary)
    status = await service.get_status(session, token.hash, now=boundary)
    assert status.used is False and status.expired is False

    document = await service.consume(
        session,
        token.hash,
        filename="limite.jpg",
        content_type="image/jpeg",
        data=JPEG_BYTES,
        now=boundary,
    )
    assert document.filename == "limite.jpg"

    with pytest.raises(service.UploadTokenUsed):
        await service.get_info(session, token.hash, now=boundary)


async def test_lost_race_on_unused_token_reports_expired(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as setup:
        token_hash = await _generate(setup)

    async with session_factory() as stale, session_factory() as writer:
        loaded = await service.get_token(stale, token_hash)
        assert loaded is not None
        await writer.execute(
            update(UploadToken)
            .where(UploadToken.hash == token_hash)
            .values(expires_at=utcnow() - timedelta(seconds=5))
        )
        await writer.commit()

        # The stale copy still looks pending, so the conditional update is what rejects it.
        with pytest.raises(service.UploadTokenExpired):
            await service.consume(
                stale, token_hash, filename="a.jpg", content_type="image/jpeg", data=JPEG_BYTES
            )


async def test_failed_commit_leaves_no_stored_file(
    session_factory: async_sessionmaker[AsyncSession],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async with session_factory() as setup:
        token_hash = await _generate(setup, entity_id="commit-fail")
    entity_dir = Path(get_settings().upload_dir) / "citizen" / "commit-fail"

    async def locked_commit(self: AsyncSession) -> None:
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    async with session_factory() as failing:
        monkeypatch.setattr(AsyncSession, "commit", locked_commit)
        with pytest.raises(OperationalError):
            await service.consume(
                failing, token_hash, filename="a.jpg", content_type="image/jpeg", data=JPEG_BYTES
            )
        monkeypatch.undo()

    assert not entity_dir.exists() or not any(entity_dir.iterdir())
    async with session_factory() as check:
        status = await service.get_status(check, token_hash)
        assert status.used is False
        documents = (await check.execute(select(UploadedDocument))).scalars().all()
        assert documents == []
