from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.armory_models import Allocation, AllocationEvent, AuditLog
from services.allocation_errors import NotFound
from services.storage import run_in_transaction


ALLOCATION_CREATED = "AllocationCreated"
ALLOCATION_RETURNED = "AllocationReturned"


def log_audit(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    details: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=now or datetime.now(),
        )
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def emit_allocation_event(
    db: Session,
    event_type: str,
    allocation: Allocation,
    *,
    destination: str | None = None,
    now: datetime | None = None,
) -> AllocationEvent:
    payload = {
        "allocationID": allocation.AllocationID,
        "weaponID": allocation.WeaponID,
        "userID": allocation.UserID,
        "allocatedAt": _iso(allocation.AllocatedAt),
        "returnedAt": _iso(allocation.ReturnedAt),
        "status": allocation.Status,
    }
    if destination:
        payload["destination"] = destination
        payload["maintenanceReason"] = allocation.MaintenanceReason
    event = AllocationEvent(
        EventType=event_type,
        AllocationID=allocation.AllocationID,
        WeaponID=allocation.WeaponID,
        UserID=allocation.UserID,
        Payload=json.dumps(payload, ensure_ascii=True),
        CreatedAt=now or datetime.now(),
    )
    db.add(event)
    return event


def serialize_event(event: AllocationEvent) -> dict:
    try:
        payload = json.loads(event.Payload) if event.Payload else {}
    except (TypeError, ValueError):
        payload = {}
    return {
        "eventID": event.EventID,
        "type": event.EventType,
        "allocationID": event.AllocationID,
        "weaponID": event.WeaponID,
        "userID": event.UserID,
        "payload": payload,
        "createdAt": event.CreatedAt,
        "consumedAt": event.ConsumedAt,
    }


def list_pending_events(db: Session, limit: int = 100) -> list[AllocationEvent]:
    return db.execute(
        select(AllocationEvent)
        .where(AllocationEvent.ConsumedAt.is_(None))
        .order_by(AllocationEvent.EventID)
        .limit(max(1, int(limit)))
    ).scalars().all()


def acknowledge_event(db: Session, event_id: int, now: datetime | None = None) -> AllocationEvent:
    def _op() -> AllocationEvent:
        event = db.get(AllocationEvent, event_id)
        if not event:
            raise NotFound(f"Event {event_id} not found.")
        if event.ConsumedAt is None:
            event.ConsumedAt = now or datetime.now()
        return event

    return run_in_transaction(db, _op)
