from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from models.armory_models import (
    ALLOCATION_ACTIVE,
    ALLOCATION_RETURNED,
    WEAPON_STATUSES,
    WEAPON_TYPES,
    Allocation,
    Weapon,
)
from services.overdue_service import OverdueLevel, scan_active_allocations
from services.user_service import get_user


def _hours_between(start: datetime, end: datetime) -> float:
    return max((end - start).total_seconds(), 0) / 3600


def fleet_stats(db: Session, now: datetime | None = None) -> dict:
    current = now or datetime.now()
    by_status = {status: 0 for status in WEAPON_STATUSES}
    for status, total in db.execute(select(Weapon.Status, func.count(Weapon.WeaponID)).group_by(Weapon.Status)).all():
        by_status[status] = int(total)

    by_type = {weapon_type: 0 for weapon_type in WEAPON_TYPES}
    for weapon_type, total in db.execute(
        select(Weapon.WeaponType, func.count(Weapon.WeaponID)).group_by(Weapon.WeaponType)
    ).all():
        by_type[weapon_type] = int(total)

    active = db.execute(
        select(func.count(Allocation.AllocationID)).where(Allocation.Status == ALLOCATION_ACTIVE)
    ).scalar() or 0

    flagged = scan_active_allocations(db, current)
    return {
        "weaponsByStatus": by_status,
        "weaponsByType": by_type,
        "totalWeapons": sum(by_status.values()),
        "activeAllocations": int(active),
        "overdueAllocations": sum(1 for item in flagged if item["type"] == OverdueLevel.OVERDUE.value),
        "warningAllocations": sum(1 for item in flagged if item["type"] == OverdueLevel.WARNING.value),
    }


def user_stats(db: Session, user_id: int, now: datetime | None = None, top: int = 5) -> dict:
    current = now or datetime.now()
    user = get_user(db, user_id)
    allocations = db.execute(
        select(Allocation)
        .options(selectinload(Allocation.Weapon))
        .where(Allocation.UserID == user.UserID)
    ).scalars().all()

    durations = []
    hours_by_type: dict[str, float] = {}
    holdings = []
    for allocation in allocations:
        weapon = allocation.Weapon
        hours = _hours_between(allocation.AllocatedAt, allocation.ReturnedAt or current)
        durations.append(
            {
                "allocationID": allocation.AllocationID,
                "weaponID": allocation.WeaponID,
                "model": weapon.Model if weapon else None,
                "durationHours": round(hours),
            }
        )
        weapon_type = weapon.WeaponType if weapon else "unknown"
        hours_by_type[weapon_type] = hours_by_type.get(weapon_type, 0.0) + hours
        if allocation.Status == ALLOCATION_ACTIVE:
            holdings.append(
                {
                    "allocationID": allocation.AllocationID,
                    "weaponID": allocation.WeaponID,
                    "type": weapon_type,
                    "allocatedAt": allocation.AllocatedAt,
                }
            )

    total_hours = sum(hours_by_type.values())
    durations.sort(key=lambda item: item["durationHours"], reverse=True)
    return {
        "userID": user.UserID,
        "activeAllocations": len(holdings),
        "returnedAllocations": sum(1 for allocation in allocations if allocation.Status == ALLOCATION_RETURNED),
        "holdings": holdings,
        "longestAllocations": durations[: max(top, 0)],
        "typeShare": [
            {
                "type": weapon_type,
                "totalHours": round(hours),
                "percentage": round(hours / total_hours * 100) if total_hours > 0 else 0,
            }
            for weapon_type, hours in sorted(hours_by_type.items())
        ],
    }
