"""
Activity history API.

Lists the events written by the allocation services, filtered by
subsystem, type, affected resource, time or originating request.
"""
import json
from typing import Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.database import get_db
from ispnet.models.system_event import SystemEvent

router = APIRouter(prefix="/api/system-events", tags=["system-events"])


class SystemEventResponse(BaseModel):
    id: int
    timestamp: Optional[datetime] = None
    level: str
    source: str
    event_type: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    message: str
    details: Optional[Any] = None
    request_id: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("details", mode="before")
    @classmethod
    def parse_details(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                return v
        return v


def _newest_first(limit: int, offset: int):
    return (
        select(SystemEvent)
        .order_by(desc(SystemEvent.timestamp), desc(SystemEvent.id))
        .offset(offset)
        .limit(limit)
    )


@router.get("/", response_model=List[SystemEventResponse])
async def list_system_events(
    limit: int = Query(200, le=1000),
    offset: int = 0,
    level: Optional[str] = None,
    source: Optional[str] = None,
    event_type: Optional[str] = None,
    request_id: Optional[str] = None,
    since: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
):
    q = _newest_first(limit, offset)
    if level:
        q = q.where(SystemEvent.level == level)
    if source:
        q = q.where(SystemEvent.source == source)
    if event_type:
        q = q.where(SystemEvent.event_type == event_type)
    if request_id:
        q = q.where(SystemEvent.request_id == request_id)
    if since:
        q = q.where(SystemEvent.timestamp >= since)
    result = await db.execute(q)
    return result.scalars().all()


@router.get("/{resource_type}/{resource_id}", response_model=List[SystemEventResponse])
async def resource_history(
    resource_type: str,
    resource_id: str,
    limit: int = Query(100, le=1000),
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    """Everything that happened to one subnet, address or service."""
    q = _newest_first(limit, offset).where(
        SystemEvent.resource_type == resource_type,
        SystemEvent.resource_id == resource_id,
    )
    result = await db.execute(q)
    return result.scalars().all()
