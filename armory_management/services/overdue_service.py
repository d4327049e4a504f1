from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.armory_models import ALLOCATION_ACTIVE, Allocation


OVERDUE_HOURS = float(os.environ.get("ARMORY_OVERDUE_HOURS") or "24")
WARNING_MINUTES = int(os.environ.get("ARMORY_WARNING_MINUTES") or "60")
OVERDUE_POLL_SECONDS = int(os.environ.get("ARMORY_OVERDUE_POLL_SECONDS") or "60")
OVERDUE_LOGGER = logging.getLogger("armory.overdue")

_ONE_MINUTE = timedelta(minutes=1)


class OverdueLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class OverdueStatus:
    level: OverdueLevel
    elapsed_minutes: int
    minutes_remaining: int


def _naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def classify_allocation(
    allocated_at: datetime,
    now: datetime,
    overdue_after: timedelta | None = None,
    warning_window: timedelta | None = None,
) -> OverdueStatus:
    """
    Classify an active allocation by how long it has been out.

    Overdue once the elapsed time reaches ``overdue_after``. Otherwise a
    warning when the whole minutes left before that point fit inside
    ``warning_window``. Elapsed time is counted in whole minutes, so an
    allocation 22.999 hours old still has 61 minutes left.
    """
    threshold = overdue_after if overdue_after is not None else timedelta(hours=OVERDUE_HOURS)
    window = warning_window if warning_window is not None else timedelta(minutes=WARNING_MINUTES)

    elapsed = _naive(now) - _naive(allocated_at)
    elapsed_minutes = max(elapsed // _ONE_MINUTE, 0)
    remaining = int(threshold // _ONE_MINUTE) - elapsed_minutes

    if elapsed >= threshold:
        return OverdueStatus(OverdueLevel.OVERDUE, elapsed_minutes, min(remaining, 0))
    if remaining <= window // _ONE_MINUTE:
        return OverdueStatus(OverdueLevel.WARNING, elapsed_minutes, remaining)
    return OverdueStatus(OverdueLevel.NORMAL, elapsed_minutes, remaining)


def classify(
    allocated_at: datetime,
    now: datetime,
    overdue_after: timedelta | None = None,
    warning_window: timedelta | None = None,
) -> OverdueLevel:
    return classify_allocation(allocated_at, now, overdue_after, warning_window).level


def scan_active_allocations(
    db: Session,
    now: datetime | None = None,
    user_id: int | None = None,
    *,
    include_normal: bool = False,
    overdue_after: timedelta | None = None,
    warning_window: timedelta | None = None,
) -> list[dict]:
    """Evaluate every active allocation against ``now``. Nothing is cached between calls."""
    current = now or datetime.now()
    stmt = (
        select(Allocation)
        .options(selectinload(Allocation.Weapon))
        .where(Allocation.Status == ALLOCATION_ACTIVE)
        .order_by(Allocation.AllocatedAt)
    )
    if user_id is not None:
        stmt = stmt.where(Allocation.UserID == user_id)

    notifications = []
    for allocation in db.execute(stmt).scalars().all():
        status = classify_allocation(allocation.AllocatedAt, current, overdue_after, warning_window)
        if status.level == OverdueLevel.NORMAL and not include_normal:
            continue
        weapon = allocation.Weapon
        notifications.append(
            {
                "allocationID": allocation.AllocationID,
                "userID": allocation.UserID,
                "weaponID": allocation.WeaponID,
                "weaponModel": weapon.Model if weapon else None,
                "serialNumber": weapon.SerialNumber if weapon else None,
                "allocatedAt": allocation.AllocatedAt,
                "type": status.level.value,
                "elapsedMinutes": status.elapsed_minutes,
                "minutesRemaining": status.minutes_remaining,
            }
        )

    OVERDUE_LOGGER.debug("Overdue scan user_id=%s flagged=%s", user_id, len(notifications))
    return notifications
