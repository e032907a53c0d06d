from __future__ import annotations

import asyncio
import hashlib
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from handoff.config import get_settings
from handoff.document_types import DocumentType, EntityType
from handoff.logger import get_logger
from handoff.metrics import record_token_consume, record_token_issued
from handoff.models.upload_token import UploadToken
from handoff.models.uploaded_document import UploadedDocument
from handoff.schemas.upload_tokens import (
    UploadTokenInfoOut,
    UploadTokenOut,
    UploadTokenStatusOut,
)
from handoff.services.events import record_event
from handoff.timing import is_expired, normalize_utc, utcnow
from handoff.utils import mask_secret, sanitize_path_segment, sniff_content_type

_logger = get_logger("services.upload_tokens")

ACCEPTED_CONTENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/pdf",
}
_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


class UploadTokenError(RuntimeError):
    reason = "error"
    default_message = "Upload token error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.default_message)
        self.detail = detail or self.default_message


class UploadTokenValidationError(UploadTokenError):
    reason = "validation"
    default_message = "Invalid upload token request"


class UploadTokenNotFound(UploadTokenError):
    reason = "not_found"
    default_message = "Link inválido"


class UploadTokenExpired(UploadTokenError):
    reason = "expired"
    default_message = "Link expirado"


class UploadTokenUsed(UploadTokenError):
    reason = "used"
    default_message = "Link já utilizado"


class InvalidUploadFile(UploadTokenError):
    reason = "invalid_file"
    default_message = "Arquivo inválido"


def _new_hash() -> str:
    return secrets.token_urlsafe(32)


def _coerce_entity_type(value: EntityType | str) -> EntityType:
    try:
        return EntityType(value)
    except ValueError as exc:
        raise UploadTokenValidationError(f"Unsupported entity type: {value}") from exc


def _coerce_document_type(value: DocumentType | str) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError as exc:
        raise UploadTokenValidationError(f"Unsupported document type: {value}") from exc


def _unavailable_reason(token: UploadToken, now: datetime) -> Optional[UploadTokenError]:
    # A stored consume wins over a computed expiry.
    if token.used_at is not None:
        return UploadTokenUsed()
    if is_expired(now, token.expires_at):
        return UploadTokenExpired()
    return None


async def get_token(
    session: AsyncSession,
    token_hash: str,
    *,
    refresh: bool = False,
) -> Optional[UploadToken]:
    query = select(UploadToken).where(UploadToken.hash == token_hash)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def generate(
    session: AsyncSession,
    *,
    entity_type: EntityType | str,
    entity_id: str,
    document_type: DocumentType | str,
    subscriber_name: str,
    issued_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UploadTokenOut:
    entity = _coerce_entity_type(entity_type)
    document = _coerce_document_type(document_type)
    clean_entity_id = str(entity_id).strip()
    if not clean_entity_id:
        raise UploadTokenValidationError("entityId must not be empty")
    if not subscriber_name.strip():
        raise UploadTokenValidationError("subscriberName must not be empty")

    settings = get_settings()
    async with _logger.operation(
        "upload_token.generate",
        "Issuing upload token",
        entity_type=entity.value,
        entity_id=clean_entity_id,
        document_type=document.value,
        issued_by=issued_by or "unknown",
    ) as op:
        created_at = normalize_utc(now or utcnow())
        expires_at = created_at + timedelta(seconds=settings.upload_token_ttl_seconds)
        token = UploadToken(
            id=f"ut-{uuid4().hex[:16]}",
            hash=_new_hash(),
            entity_type=entity.value,
            entity_id=clean_entity_id,
            document_type=document.value,
            subscriber_name=subscriber_name.strip(),
            issued_by=issued_by,
            expires_at=expires_at,
        )
        session.add(token)
        op.step("token.prepare", "Prepared upload token row", token_id=token.id)
        await record_event(
            session,
            category="upload_token",
            name="upload_token.generate",
            token_id=token.id,
            fields={
                "entity_type": entity.value,
                "entity_id": clean_entity_id,
                "document_type": document.value,
                "expires_at": expires_at.isoformat(),
                "issued_by": issued_by,
            },
        )
        await session.commit()
        op.step("db.commit", "Committed upload token", token_id=token.id)
    record_token_issued(entity_type=entity.value)
    return UploadTokenOut(hash=token.hash, expires_at=expires_at)


async def get_info(
    session: AsyncSession,
    token_hash: str,
    *,
    now: Optional[datetime] = None,
) -> UploadTokenInfoOut:
    token = await get_token(session, token_hash)
    if token is None:
        _logger.info("upload_token.info.missing", "Unknown upload token", token=mask_secret(token_hash))
        raise UploadTokenNotFound()
    failure = _unavailable_reason(token, now or utcnow())
    if failure is not None:
        _logger.info(
            "upload_token.info.unavailable",
            "Upload token is no longer usable",
            token_id=token.id,
            reason=failure.reason,
        )
        raise failure
    return UploadTokenInfoOut(
        entity_type=token.entity_type,
        document_type=token.document_type,
        subscriber_name=token.subscriber_name,
    )


async def get_status(
    session: AsyncSession,
    token_hash: str,
    *,
    now: Optional[datetime] = None,
) -> UploadTokenStatusOut:
    token = await get_token(session, token_hash)
    if token is None:
        raise UploadTokenNotFound()
    used = token.used_at is not None
    expired = not used and is_expired(now or utcnow(), token.expires_at)
    return UploadTokenStatusOut(used=used, expired=expired)


def validate_upload(content_type: Optional[str], data: bytes, *, max_bytes: int) -> str:
    """Return the effective content type or raise InvalidUploadFile."""
    if not data:
        raise InvalidUploadFile("Arquivo vazio")
    if len(data) > max_bytes:
        raise InvalidUploadFile(f"Arquivo excede o limite de {max_bytes} bytes")
    declared = (content_type or "").split(";", 1)[0].strip().lower()
    sniffed = sniff_content_type(data)
    if declared in ACCEPTED_CONTENT_TYPES:
        if sniffed is not None and sniffed != declared:
            raise InvalidUploadFile("Conteúdo do arquivo não corresponde ao tipo informado")
        return declared
    if declared in {"", "application/octet-stream"} and sniffed in ACCEPTED_CONTENT_TYPES:
        return sniffed
    raise InvalidUploadFile(f"Tipo de arquivo não suportado: {declared or 'desconhecido'}")


def _document_path(upload_dir: str, token: UploadToken, document_id: str, content_type: str) -> Path:
    entity_dir = sanitize_path_segment(token.entity_id) or "unknown"
    return (
        Path(upload_dir)
        / token.entity_type.lower()
        / entity_dir
        / f"{document_id}{_EXTENSIONS.get(content_type, '.bin')}"
    )


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def consume(
    session: AsyncSession,
    token_hash: str,
    *,
    filename: str,
    content_type: Optional[str],
    data: bytes,
    now: Optional[datetime] = None,
) -> UploadedDocument:
    """Accept ``data`` for the token and mark it used, at most once.

    The PENDING -> USED transition is a conditional UPDATE guarded on
    ``used_at IS NULL`` and ``expires_at >= now``, matching ``is_expired``
    (strictly past ``expires_at``). Losing that race re-reads the row and
    reports ``Used`` only when ``used_at`` is set, ``Expired`` otherwise. A
    failed commit removes the stored file.
    """
    settings = get_settings()
    current = normalize_utc(now or utcnow())

    token = await get_token(session, token_hash)
    if token is None:
        record_token_consume(result="not_found")
        raise UploadTokenNotFound()
    failure = _unavailable_reason(token, current)
    if failure is not None:
        record_token_consume(result=failure.reason)
        _logger.warning(
            "upload_token.consume.reject",
            "Rejected upload for unusable token",
            token_id=token.id,
            reason=failure.reason,
        )
        raise failure
    try:
        effective_type = validate_upload(content_type, data, max_bytes=settings.upload_max_file_bytes)
    except InvalidUploadFile:
        record_token_consume(result="invalid_file")
        raise

    token_id = token.id
    lost_race = False
    async with _logger.operation(
        "upload_token.consume",
        "Consuming upload token",
        token_id=token_id,
        size_bytes=len(data),
        content_type=effective_type,
    ) as op:
        result = await session.execute(
            update(UploadToken)
            .where(
                UploadToken.id == token_id,
                UploadToken.used_at.is_(None),
                UploadToken.expires_at >= current,
            )
            .values(used_at=current)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            lost_race = True
            op.step_warning("token.transition", "Lost consume race", token_id=token_id)
        else:
            op.step("token.transition", "Marked upload token used", token_id=token.id)
            document_id = str(uuid4())
            path = _document_path(settings.upload_dir, token, document_id, effective_type)
            document = UploadedDocument(
                id=document_id,
                token_id=token.id,
                entity_type=token.entity_type,
                entity_id=token.entity_id,
                document_type=token.document_type,
                filename=filename or path.name,
                content_type=effective_type,
                size_bytes=len(data),
                sha256=hashlib.sha256(data).hexdigest(),
                location=str(path),
            )
            session.add(document)
            await record_event(
                session,
                category="upload_token",
                name="upload_token.consume",
                token_id=token.id,
                fields={
                    "document_id": document_id,
                    "entity_type": token.entity_type,
                    "entity_id": token.entity_id,
                    "document_type": token.document_type,
                    "size_bytes": len(data),
                },
            )
            await asyncio.to_thread(_write_file, path, data)
            op.step("file.write", "Stored uploaded document", location=str(path))
            try:
                await session.commit()
            except Exception:
                # The token stays unused, so no stored bytes may outlive the rollback.
                await asyncio.to_thread(path.unlink, missing_ok=True)
                await session.rollback()
                raise
            await session.refresh(token)
            op.step("db.commit", "Committed consume transaction", document_id=document_id)

    if lost_race:
        refreshed = await get_token(session, token_hash, refresh=True)
        if refreshed is None:
            record_token_consume(result="not_found")
            raise UploadTokenNotFound()
        if refreshed.used_at is not None:
            record_token_consume(result="used")
            raise UploadTokenUsed()
        record_token_consume(result="expired")
        raise UploadTokenExpired()

    record_token_consume(result="success")
    return document
