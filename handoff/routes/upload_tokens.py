from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from handoff.config import Settings, get_settings
from handoff.dependencies import get_db_session, get_operator_id, get_subscriber_name
from handoff.schemas.upload_tokens import (
    UploadConsumeOut,
    UploadErrorOut,
    UploadTokenCreate,
    UploadTokenInfoOut,
    UploadTokenOut,
    UploadTokenStatusOut,
)
from handoff.services import upload_tokens as upload_token_service

router = APIRouter(prefix="/upload/qrcode", tags=["upload"])

_STATUS_BY_REASON = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "expired": status.HTTP_410_GONE,
    "used": status.HTTP_410_GONE,
    "invalid_file": status.HTTP_400_BAD_REQUEST,
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
}

_ERROR_RESPONSES = {
    404: {"model": UploadErrorOut},
    410: {"model": UploadErrorOut},
}


def _error_response(exc: upload_token_service.UploadTokenError) -> JSONResponse:
    body = UploadErrorOut(
        error=exc.detail,
        reason=exc.reason,
        used=exc.reason == "used",
        expired=exc.reason == "expired",
    )
    return JSONResponse(
        status_code=_STATUS_BY_REASON.get(exc.reason, status.HTTP_400_BAD_REQUEST),
        content=body.model_dump(),
    )


@router.post(
    "/generate",
    response_model=UploadTokenOut,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": UploadErrorOut}},
)
async def generate_upload_token(
    payload: UploadTokenCreate,
    session: AsyncSession = Depends(get_db_session),
    subscriber_name: str = Depends(get_subscriber_name),
    operator_id: Optional[str] = Depends(get_operator_id),
) -> UploadTokenOut | JSONResponse:
    try:
        return await upload_token_service.generate(
            session,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            document_type=payload.document_type,
            subscriber_name=subscriber_name,
            issued_by=operator_id,
        )
    except upload_token_service.UploadTokenValidationError as exc:
        return _error_response(exc)


@router.get("/{token_hash}", response_model=UploadTokenInfoOut, responses=_ERROR_RESPONSES)
async def get_upload_token_info(
    token_hash: str,
    session: AsyncSession = Depends(get_db_session),
) -> UploadTokenInfoOut | JSONResponse:
    try:
        return await upload_token_service.get_info(session, token_hash)
    except upload_token_service.UploadTokenError as exc:
        return _error_response(exc)


@router.get(
    "/{token_hash}/status",
    response_model=UploadTokenStatusOut,
    responses={404: {"model": UploadErrorOut}},
)
async def get_upload_token_status(
    token_hash: str,
    session: AsyncSession = Depends(get_db_session),
) -> UploadTokenStatusOut | JSONResponse:
    try:
        return await upload_token_service.get_status(session, token_hash)
    except upload_token_service.UploadTokenNotFound as exc:
        return _error_response(exc)


@router.post(
    "/{token_hash}",
    response_model=UploadConsumeOut,
    responses={**_ERROR_RESPONSES, 400: {"model": UploadErrorOut}},
)
async def consume_upload_token(
    token_hash: str,
    file: Optional[UploadFile] = File(default=None),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> UploadConsumeOut | JSONResponse:
    if file is None:
        return _error_response(upload_token_service.InvalidUploadFile("Nenhum arquivo enviado"))
    # One byte past the limit is enough to reject without buffering the rest.
    data = await file.read(settings.upload_max_file_bytes + 1)
    try:
        document = await upload_token_service.consume(
            session,
            token_hash,
            filename=file.filename or "",
            content_type=file.content_type,
            data=data,
        )
    except upload_token_service.UploadTokenError as exc:
        return _error_response(exc)
    finally:
        await file.close()
    return UploadConsumeOut(document_id=document.id)
