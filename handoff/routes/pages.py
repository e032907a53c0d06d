from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from handoff.config import Settings, get_settings
from handoff.dependencies import get_db_session
from handoff.document_types import format_document_type
from handoff.logger import get_logger
from handoff.services import upload_tokens as upload_token_service

router = APIRouter(prefix="/upload", include_in_schema=False)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))
_logger = get_logger("api.pages")

_TERMINAL_STATES = {"expired": "expired", "used": "used", "not_found": "error"}


def _render(request: Request, context: Dict[str, Any], *, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(request, "upload.html", context, status_code=status_code)


async def _render_form(
    request: Request,
    session: AsyncSession,
    token_hash: str,
    *,
    error: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    try:
        info = await upload_token_service.get_info(session, token_hash)
    except upload_token_service.UploadTokenError as exc:
        state = _TERMINAL_STATES.get(exc.reason, "error")
        return _render(request, {"state": state, "error": exc.detail})
    return _render(
        request,
        {
            "state": "ready",
            "token_hash": token_hash,
            "document_label": format_document_type(info.document_type),
            "subscriber_name": info.subscriber_name,
            "error": error,
        },
        status_code=status_code,
    )


@router.get("/{token_hash}", response_class=HTMLResponse)
async def upload_page(
    token_hash: str,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> HTMLResponse:
    return await _render_form(request, session, token_hash)


@router.post("/{token_hash}", response_class=HTMLResponse)
async def submit_upload_page(
    token_hash: str,
    request: Request,
    file: Optional[UploadFile] = File(default=None),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    if file is None:
        return await _render_form(
            request, session, token_hash, error="Nenhum arquivo enviado", status_code=400
        )

    data = await file.read(settings.upload_max_file_bytes + 1)
    try:
        await upload_token_service.consume(
            session,
            token_hash,
            filename=file.filename or "",
            content_type=file.content_type,
            data=data,
        )
    except upload_token_service.UploadTokenError as exc:
        if exc.reason in _TERMINAL_STATES:
            return _render(request, {"state": _TERMINAL_STATES[exc.reason], "error": exc.detail})
        _logger.info("upload_page.retry", "Rendered upload form with error", reason=exc.reason)
        return await _render_form(
            request, session, token_hash, error=exc.detail, status_code=400
        )
    finally:
        await file.close()
    return _render(request, {"state": "success"})
