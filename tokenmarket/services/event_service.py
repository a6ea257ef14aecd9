"""Market events: append-only rows written inside the transaction, listeners notified after commit."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.models.market_event import MarketEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[dict], Awaitable[None]]

_listeners: list[EventListener] = []


def subscribe(listener: EventListener) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def unsubscribe(listener: EventListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


async def record_event(
    db: AsyncSession,
    event_type: str,
    *,
    listing_id: int,
    actor_id: str,
    payload: dict | None = None,
) -> MarketEvent:
    """Append an event row to the caller's transaction. Does not commit."""
    event = MarketEvent(
        event_type=event_type,
        listing_id=listing_id,
        actor_id=actor_id,
        payload=json.dumps(payload or {}, sort_keys=True, default=str),
        created_at=datetime.now(timezone.utc),
    )
    db.add(event)
    await db.flush()
    return event


def to_envelope(event: MarketEvent) -> dict:
    return {
        "id": event.id,
        "type": event.event_type,
        "listing_id": event.listing_id,
        "actor_id": event.actor_id,
        "timestamp": event.created_at.isoformat() if event.created_at else None,
        "data": json.loads(event.payload or "{}"),
    }


async def notify(events: list[MarketEvent]) -> None:
    """Deliver committed events to every listener. Call only after commit.

    A failing listener is logged and skipped; the transition it reports has
    already been committed.
    """
    for event in events:
        envelope = to_envelope(event)
        logger.info(
            "Market event %s: %s listing=%s actor=%s",
            event.id, event.event_type, event.listing_id, event.actor_id,
        )
        for listener in list(_listeners):
            try:
                await listener(envelope)
            except Exception:
                logger.exception("Event listener failed for %s", event.event_type)


async def list_events(
    db: AsyncSession,
    listing_id: int,
    event_type: str | None = None,
    limit: int = 100,
) -> list[MarketEvent]:
    """Events for a listing, oldest first."""
    query = select(MarketEvent).where(MarketEvent.listing_id == listing_id)
    if event_type:
        query = query.where(MarketEvent.event_type == event_type)
    query = query.order_by(MarketEvent.id.asc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
