# Overview: Append-only change events; the boundary to the realtime notification channel.

from __future__ import annotations

from typing import Any, Optional

from ..extensions import db
from ..models import ChangeEvent
from washbay.time_utils import utcnow
"""
Change event invariants

- Append-only. No updates or deletes of existing events.
- No domain logic here; callers decide what happened.
- Events are added to the caller's session and committed together with the
  mutation they describe, so an event never exists for a rolled-back change.
- Delivery to clients is somebody else's job; nothing here waits on it.
"""


def append_change_event(
    *,
    org_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    payload: Optional[dict[str, Any]] = None,
) -> ChangeEvent:
    ev = ChangeEvent(
        org_id=org_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        payload=payload,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    return ev


def list_change_events(
    org_id: int,
    *,
    after_id: int = 0,
    entity_type: str | None = None,
    limit: int = 200,
) -> list[ChangeEvent]:
    """Events for one tenant with id > after_id, oldest first (cursor-style polling)."""
    q = db.session.query(ChangeEvent).filter(
        ChangeEvent.org_id == org_id,
        ChangeEvent.id > after_id,
    )
    if entity_type:
        q = q.filter(ChangeEvent.entity_type == entity_type)
    return q.order_by(ChangeEvent.id.asc()).limit(limit).all()
