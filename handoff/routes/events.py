from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from handoff.dependencies import get_db_session
from handoff.schemas.events import EventOut
from handoff.services import events as event_service

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventOut])
async def list_events(
    limit: int = 200,
    category: Optional[str] = None,
    token_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
) -> List[EventOut]:
    bounded_limit = max(1, min(limit, 1000))
    events = await event_service.list_events(
        session,
        limit=bounded_limit,
        category=category,
        token_id=token_id,
    )
    return [EventOut.model_validate(event) for event in events]
