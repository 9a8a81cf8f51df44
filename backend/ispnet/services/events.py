"""
Operational event log.

``record`` adds a SystemEvent to the caller's session so the event commits
(or rolls back) together with the change it describes.
Events written while serving an HTTP request carry that request's X-Request-ID.
"""
import json
import logging
from contextvars import ContextVar
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ispnet.models.system_event import SystemEvent

logger = logging.getLogger(__name__)

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def record(
    db: AsyncSession,
    level: str,
    source: str,
    event_type: str,
    message: str,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
    details: Any = None,
) -> SystemEvent:
    if details is not None and not isinstance(details, str):
        details = json.dumps(details, default=str)
    event = SystemEvent(
        level=level,
        source=source,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        message=message[:500],
        details=details,
        request_id=request_id_var.get(),
    )
    db.add(event)
    return event


async def record_detached(session_factory, level: str, source: str, event_type: str, message: str, **kwargs) -> None:
    """Write an event in its own session, for scheduler jobs with no request context."""
    try:
        async with session_factory() as db:
            record(db, level, source, event_type, message, **kwargs)
            await db.commit()
    except Exception as exc:
        logger.error("Failed to write system event %s: %s", event_type, exc)
