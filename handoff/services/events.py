from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from handoff.logger import get_logger
from handoff.models.event import Event

_logger = get_logger("services.events")


async def list_events(
    session: AsyncSession,
    limit: int = 200,
    category: Optional[str] = None,
    token_id: Optional[str] = None,
) -> List[Event]:
    query = select(Event).order_by(Event.created_at.desc(), Event.id.desc())
    if category:
        query = query.where(Event.category == category)
    if token_id:
        query = query.where(Event.token_id == token_id)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())


async def record_event(
    session: AsyncSession,
    *,
    category: str,
    name: str,
    level: str = "INFO",
    token_id: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> Event:
    event = Event(
        id=str(uuid4()),
        category=category,
        name=name,
        level=level,
        token_id=token_id,
        fields=fields or {},
    )
    session.add(event)
    _logger.info(
        "events.record",
        "Recorded event",
        event_id=event.id,
        category=category,
        name=name,
        token_id=token_id,
    )
    return event
