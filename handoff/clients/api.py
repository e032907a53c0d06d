"""HTTP client for the upload token endpoints, shared by both client sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import TracebackType
from typing import Any, Dict, Optional

import httpx

from handoff.logger import get_logger
from handoff.timing import normalize_utc
from handoff.utils import mask_secret

_logger = get_logger("clients.api")


class HandoffClientError(RuntimeError):
    reason = "error"

    def __init__(self, message: str = "", *, status_code: Optional[int] = None) -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason
        self.status_code = status_code


class TokenNotFound(HandoffClientError):
    reason = "not_found"


class TokenExpired(HandoffClientError):
    reason = "expired"


class TokenUsed(HandoffClientError):
    reason = "used"


class InvalidUpload(HandoffClientError):
    reason = "invalid_file"


class ApiRequestError(HandoffClientError):
    reason = "request"


class ApiUnavailable(HandoffClientError):
    reason = "unavailable"


@dataclass(frozen=True)
class GeneratedToken:
    hash: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenInfo:
    entity_type: str
    document_type: str
    subscriber_name: str


@dataclass(frozen=True)
class TokenStatus:
    used: bool
    expired: bool


def _parse_datetime(raw: str) -> datetime:
    return normalize_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _raise_for_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    body = _json_body(response)
    message = str(body.get("error") or body.get("detail") or response.reason_phrase)
    status_code = response.status_code
    if status_code == 404:
        raise TokenNotFound(message, status_code=status_code)
    if status_code == 410:
        if body.get("used") or body.get("reason") == "used":
            raise TokenUsed(message, status_code=status_code)
        raise TokenExpired(message, status_code=status_code)
    if status_code == 400 and body.get("reason") == "invalid_file":
        raise InvalidUpload(message, status_code=status_code)
    if status_code >= 500:
        raise ApiUnavailable(message, status_code=status_code)
    raise ApiRequestError(message, status_code=status_code)


class UploadTokenApi:
    """Thin wrapper around the ``/upload/qrcode`` REST surface."""

    def __init__(
        self,
        base_url: str = "",
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
        )

    async def __aenter__(self) -> "UploadTokenApi":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiUnavailable("Tempo de requisição esgotado") from exc
        except httpx.TransportError as exc:
            raise ApiUnavailable("Erro de conexão") from exc
        _raise_for_response(response)
        return response

    async def generate(self, *, entity_type: str, entity_id: str, document_type: str) -> GeneratedToken:
        response = await self._request(
            "POST",
            "/upload/qrcode/generate",
            json={
                "entityType": entity_type,
                "entityId": entity_id,
                "documentType": document_type,
            },
        )
        body = _json_body(response)
        token = GeneratedToken(hash=str(body["hash"]), expires_at=_parse_datetime(str(body["expiresAt"])))
        _logger.info(
            "api.generate",
            "Generated upload token",
            token=mask_secret(token.hash),
            expires_at=token.expires_at.isoformat(),
        )
        return token

    async def info(self, token_hash: str) -> TokenInfo:
        response = await self._request("GET", f"/upload/qrcode/{token_hash}")
        body = _json_body(response)
        return TokenInfo(
            entity_type=str(body.get("entityType", "")),
            document_type=str(body.get("documentType", "")),
            subscriber_name=str(body.get("subscriberName", "")),
        )

    async def status(self, token_hash: str) -> TokenStatus:
        response = await self._request("GET", f"/upload/qrcode/{token_hash}/status")
        body = _json_body(response)
        return TokenStatus(used=bool(body.get("used")), expired=bool(body.get("expired")))

    async def consume(
        self,
        token_hash: str,
        *,
        filename: str,
        data: bytes,
        content_type: str = "image/jpeg",
    ) -> str:
        response = await self._request(
            "POST",
            f"/upload/qrcode/{token_hash}",
            files={"file": (filename, data, content_type)},
        )
        body = _json_body(response)
        _logger.info("api.consume", "Uploaded document", token=mask_secret(token_hash), size_bytes=len(data))
        return str(body.get("documentId", ""))
