"""Operator-side session: issue a token, show it as a QR code, poll for completion.

State machine::

    SELECT_TYPE -> GENERATING -> SHOWING_QR -> SUCCESS
                                            -> EXPIRED -> SELECT_TYPE
                                 SHOWING_QR -> SELECT_TYPE   (back)

Two timers run only while SHOWING_QR: a countdown against the display
deadline (``expires_at`` minus the safety margin) and a bounded status poll.
Both are disarmed by the single exit hook in ``_set_state``.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from handoff.clients.api import HandoffClientError, UploadTokenApi
from handoff.document_types import CITIZEN_DOCUMENT_TYPES, DocumentType, EntityType
from handoff.logger import get_logger
from handoff.qr import build_upload_link, qr_data_url
from handoff.timing import (
    PollPolicy,
    display_deadline,
    format_countdown,
    next_poll_delay,
    normalize_utc,
    remaining_seconds,
    utcnow,
)
from handoff.utils import mask_secret

_logger = get_logger("clients.generator")

Callback = Callable[..., Any]


class GeneratorState(str, Enum):
    SELECT_TYPE = "select_type"
    GENERATING = "generating"
    SHOWING_QR = "showing_qr"
    SUCCESS = "success"
    EXPIRED = "expired"


async def _invoke(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class _Timer:
    """A single owned background task plus the flag that says it may still act.

    Disarming from inside the timer's own task only clears the flag; the loop
    notices on its next check instead of cancelling itself mid-callback.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.armed = False
        self._task: Optional[asyncio.Task[None]] = None
        self._cancelled: list[asyncio.Task[None]] = []

    def arm(self, factory: Callable[[], Awaitable[None]]) -> None:
        self.disarm()
        self.armed = True
        self._task = asyncio.create_task(factory(), name=f"generator-{self.name}")

    def disarm(self) -> None:
        self.armed = False
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        self._cancelled.append(task)

    async def drain(self) -> None:
        pending = [task for task in self._cancelled if not task.done()]
        self._cancelled.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class GeneratorSession:
    def __init__(
        self,
        api: UploadTokenApi,
        *,
        entity_type: EntityType | str,
        entity_id: str,
        origin: str,
        document_types: Sequence[DocumentType] = CITIZEN_DOCUMENT_TYPES,
        poll_policy: PollPolicy = PollPolicy(),
        margin_seconds: float = 180.0,
        tick_seconds: float = 1.0,
        auto_close_seconds: float = 2.0,
        qr_size: int = 280,
        on_success: Optional[Callback] = None,
        on_close: Optional[Callback] = None,
        on_change: Optional[Callback] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if margin_seconds < 0:
            raise ValueError("margin_seconds must not be negative")
        self._api = api
        self.entity_type = EntityType(entity_type)
        self.entity_id = str(entity_id)
        self.origin = origin
        self.document_types = tuple(document_types)
        self.poll_policy = poll_policy
        self.margin_seconds = margin_seconds
        self.tick_seconds = tick_seconds
        self.auto_close_seconds = auto_close_seconds
        self.qr_size = qr_size
        self._on_success = on_success
        self._on_close = on_close
        self._on_change = on_change
        self._clock = clock

        self.state = GeneratorState.SELECT_TYPE
        self.selected_type: Optional[DocumentType] = None
        self.error = ""
        self.closed = False
        self._countdown = _Timer("countdown")
        self._poll = _Timer("poll")
        self._auto_close = _Timer("auto-close")
        self._clear_token()

    def _clear_token(self) -> None:
        self.hash: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self.deadline: Optional[datetime] = None
        self.link: Optional[str] = None
        self.qr_data_url: Optional[str] = None
        self.time_left = ""
        self.poll_count = 0
        self.last_check: Optional[datetime] = None

    @property
    def in_flight(self) -> bool:
        return self.state == GeneratorState.GENERATING

    @property
    def polling(self) -> bool:
        return self._poll.armed

    @property
    def counting_down(self) -> bool:
        return self._countdown.armed

    def _set_state(self, new_state: GeneratorState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        if old_state == GeneratorState.SHOWING_QR:
            self._countdown.disarm()
            self._poll.disarm()
        self.state = new_state
        _logger.info(
            "generator.transition",
            "Generator state changed",
            from_state=old_state.value,
            to_state=new_state.value,
        )
        if new_state == GeneratorState.SHOWING_QR:
            self._countdown.arm(self._countdown_loop)
            self._poll.arm(self._poll_loop)
        if self._on_change is not None and not self.closed:
            self._on_change(self)

    def select_type(self, document_type: DocumentType | str) -> None:
        if self.closed or self.state != GeneratorState.SELECT_TYPE:
            return
        selected = DocumentType(document_type)
        if selected not in self.document_types:
            raise ValueError(f"Document type {selected.value} is not offered here")
        self.selected_type = selected
        self.error = ""

    async def generate(self) -> bool:
        """Request a new token; returns True once the QR code is showing."""
        if self.closed or self.state != GeneratorState.SELECT_TYPE or self.selected_type is None:
            return False
        self.error = ""
        self._set_state(GeneratorState.GENERATING)
        try:
            token = await self._api.generate(
                entity_type=self.entity_type.value,
                entity_id=self.entity_id,
                document_type=self.selected_type.value,
            )
        except HandoffClientError as exc:
            if self.closed:
                return False
            self.error = exc.message or "Erro ao gerar QR code"
            _logger.warning("generator.generate.error", "Token generation failed", reason=exc.reason)
            self._set_state(GeneratorState.SELECT_TYPE)
            return False
        if self.closed:
            return False

        self._clear_token()
        self.hash = token.hash
        self.expires_at = normalize_utc(token.expires_at)
        self.deadline = display_deadline(self.expires_at, self.margin_seconds)
        self.link = build_upload_link(self.origin, token.hash)
        self.qr_data_url = qr_data_url(self.link, size=self.qr_size)
        self.time_left = format_countdown(remaining_seconds(self._clock(), self.deadline))
        _logger.info(
            "generator.token",
            "Showing upload QR code",
            token=mask_secret(token.hash),
            display_deadline=self.deadline.isoformat(),
        )
        self._set_state(GeneratorState.SHOWING_QR)
        return True

    def back(self) -> None:
        if self.closed or self.state != GeneratorState.SHOWING_QR:
            return
        self._set_state(GeneratorState.SELECT_TYPE)
        self._clear_token()

    def regenerate(self) -> None:
        if self.closed or self.state != GeneratorState.EXPIRED:
            return
        self._set_state(GeneratorState.SELECT_TYPE)
        self._clear_token()

    async def check_now(self) -> None:
        if self.closed or self.state != GeneratorState.SHOWING_QR:
            return
        await self._probe()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._countdown.disarm()
        self._poll.disarm()
        self._auto_close.disarm()
        _logger.info("generator.close", "Closed generator session", state=self.state.value)
        if self._on_close is not None:
            self._on_close()

    async def aclose(self) -> None:
        self.close()
        await self._countdown.drain()
        await self._poll.drain()
        await self._auto_close.drain()

    def last_check_text(self, now: Optional[datetime] = None) -> str:
        if self.last_check is None:
            return "Aguardando..."
        elapsed = int((normalize_utc(now or self._clock()) - self.last_check).total_seconds())
        elapsed = max(0, elapsed)
        if elapsed < 60:
            return f"ha {elapsed}s"
        return f"ha {elapsed // 60} min"

    def _expire_locally(self) -> None:
        self.time_left = format_countdown(0)
        self._set_state(GeneratorState.EXPIRED)

    async def _countdown_loop(self) -> None:
        while self._countdown.armed and self.deadline is not None:
            seconds_left = (self.deadline - normalize_utc(self._clock())).total_seconds()
            if seconds_left <= 0:
                _logger.info("generator.countdown.expired", "Display countdown reached zero")
                self._expire_locally()
                return
            self.time_left = format_countdown(remaining_seconds(self._clock(), self.deadline))
            if self._on_change is not None:
                self._on_change(self)
            await asyncio.sleep(min(self.tick_seconds, seconds_left))

    async def _poll_loop(self) -> None:
        attempt = 0
        while self._poll.armed:
            delay = next_poll_delay(attempt, self.poll_policy)
            if delay is None:
                _logger.info("generator.poll.exhausted", "Stopped polling after max attempts", attempts=attempt)
                self._poll.armed = False
                return
            await asyncio.sleep(delay)
            if not self._poll.armed:
                return
            attempt += 1
            await self._probe()

    async def _probe(self) -> None:
        token_hash = self.hash
        if token_hash is None:
            return
        self.poll_count += 1
        try:
            status = await self._api.status(token_hash)
        except HandoffClientError as exc:
            _logger.debug("generator.poll.error", "Ignored failed status probe", reason=exc.reason)
            return
        # Results for a token this session already left behind are dropped.
        if self.closed or self.state != GeneratorState.SHOWING_QR or self.hash != token_hash:
            return
        self.last_check = normalize_utc(self._clock())
        if status.used:
            await self._succeed()
        elif status.expired:
            self._set_state(GeneratorState.EXPIRED)

    async def _succeed(self) -> None:
        self._set_state(GeneratorState.SUCCESS)
        _logger.info("generator.success", "Upload observed", token=mask_secret(self.hash or ""))
        await _invoke(self._on_success)
        if not self.closed:
            self._auto_close.arm(self._auto_close_after_delay)

    async def _auto_close_after_delay(self) -> None:
        await asyncio.sleep(self.auto_close_seconds)
        if self._auto_close.armed:
            self.close()
