"""Append-only activity trail scoped to work orders."""

from __future__ import annotations

from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from .models import WorkorderLog

UNKNOWN_ACTOR = "NA"


class EventType(str, Enum):
    WORKORDER_CREATED = "WORKORDER_CREATED"
    WORKORDER_STATUS_CHANGED = "WORKORDER_STATUS_CHANGED"
    WORKORDER_COMPLETED = "WORKORDER_COMPLETED"
    WORKORDER_FLAG_CHANGED = "WORKORDER_FLAG_CHANGED"
    NOTE_ADDED = "NOTE_ADDED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    ITEM_ADDED = "ITEM_ADDED"
    ITEM_REMOVED = "ITEM_REMOVED"
    ITEM_STATUS_CHANGED = "ITEM_STATUS_CHANGED"
    DELIVERY_ORDER_CREATED = "DELIVERY_ORDER_CREATED"
    DELIVERY_BOOKED = "DELIVERY_BOOKED"
    ORDER_DISPATCHED = "ORDER_DISPATCHED"
    DELIVERY_CREATED = "DELIVERY_CREATED"


def normalize_actor_id(value: object | None) -> str:
    """Reduce an actor reference to a two-character uppercase code.

    Longer values are truncated, a single character is padded with ``_`` and
    anything blank or non-alphanumeric falls back to ``NA``.
    """

    if value is None:
        return UNKNOWN_ACTOR
    cleaned = str(value).strip().upper()
    if not cleaned or not cleaned.isalnum():
        return UNKNOWN_ACTOR
    return cleaned[:2].ljust(2, "_")


class AuditLogger:
    """Write audit rows through the caller's session so they share its transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        workorder_id: int,
        event_type: EventType,
        actor_id: object | None,
        *,
        item_id: int | None = None,
        item_status: str | None = None,
    ) -> WorkorderLog:
        entry = WorkorderLog(
            workorder_id=workorder_id,
            workorder_items_id=item_id,
            event_type=EventType(event_type).value,
            user_id=normalize_actor_id(actor_id),
            item_status=item_status,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry
