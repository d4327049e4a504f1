from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from models.armory_models import (
    ALLOCATION_ACTIVE,
    ALLOCATION_RETURNED,
    WEAPON_ALLOCATED,
    WEAPON_AVAILABLE,
    WEAPON_MAINTENANCE,
    Allocation,
    ArmoryUser,
    Weapon,
)
from services.allocation_errors import (
    ConcurrentModification,
    InvalidInput,
    NotFound,
    NotOwner,
    ReasonRequired,
    ValidationFailed,
)
from services.eligibility_service import check_eligibility, holdings_allowed
from services.event_service import ALLOCATION_CREATED, emit_allocation_event, log_audit
from services.event_service import ALLOCATION_RETURNED as EVENT_ALLOCATION_RETURNED
from services.overdue_service import classify_allocation
from services.storage import lock_for_update, run_in_transaction


DESTINATION_STOCK = "stock"
DESTINATION_MAINTENANCE = "maintenance"
RETURN_DESTINATIONS = {
    DESTINATION_STOCK: WEAPON_AVAILABLE,
    DESTINATION_MAINTENANCE: WEAPON_MAINTENANCE,
}

ALLOCATION_LOGGER = logging.getLogger("armory.allocations")


def get_active_weapon_types(db: Session, user_id: int) -> list[str]:
    return list(
        db.execute(
            select(Weapon.WeaponType)
            .join(Allocation, Allocation.WeaponID == Weapon.WeaponID)
            .where(Allocation.UserID == user_id)
            .where(Allocation.Status == ALLOCATION_ACTIVE)
        ).scalars().all()
    )


def _load_weapon(db: Session, weapon_id: int) -> Weapon:
    weapon = db.execute(
        lock_for_update(select(Weapon).where(Weapon.WeaponID == weapon_id)).execution_options(populate_existing=True)
    ).scalars().first()
    if not weapon:
        raise NotFound(f"Weapon {weapon_id} not found.")
    return weapon


def _load_user(db: Session, user_id: int, lock: bool = False) -> ArmoryUser:
    stmt = select(ArmoryUser).where(ArmoryUser.UserID == user_id)
    if lock:
        stmt = lock_for_update(stmt)
    user = db.execute(stmt.execution_options(populate_existing=True)).scalars().first()
    if not user:
        raise NotFound(f"User {user_id} not found.")
    return user


def evaluate_request(
    db: Session,
    weapon_id: int,
    user_id: int,
    requesting_user_id: int | None = None,
):
    """Read the weapon, the users and the current holdings, then run the eligibility check."""
    weapon = _load_weapon(db, weapon_id)
    # Serializes requests for the same user so holdings are read after any competing claim.
    user = _load_user(db, user_id, lock=True)
    requester = None
    if requesting_user_id is not None and requesting_user_id != user_id:
        requester = _load_user(db, requesting_user_id)
    held_types = get_active_weapon_types(db, user_id)
    rejection = check_eligibility(weapon, user, held_types, requester=requester)
    return weapon, rejection


def allocate(
    db: Session,
    weapon_id: int,
    user_id: int,
    notes: str | None = None,
    *,
    requesting_user_id: int | None = None,
    now: datetime | None = None,
) -> Allocation:
    """
    Assign a weapon to a user.

    The eligibility read and the writes happen inside one transaction. The
    weapon is claimed with a conditional update on ``status = available`` so
    that of two racing requests only one can flip it; the other gets
    ConcurrentModification and nothing it did is kept. The user row is locked
    and the user's holdings are read again after the claim, so two requests
    for different weapons cannot leave the user with a disallowed set.
    """

    def _op() -> Allocation:
        allocated_at = now or datetime.now()
        weapon, rejection = evaluate_request(db, weapon_id, user_id, requesting_user_id)
        if rejection is not None:
            ALLOCATION_LOGGER.warning(
                "Allocation rejected weapon_id=%s user_id=%s reason=%s", weapon_id, user_id, rejection.value
            )
            raise ValidationFailed(rejection)

        claimed = db.execute(
            update(Weapon)
            .where(Weapon.WeaponID == weapon.WeaponID)
            .where(Weapon.Status == WEAPON_AVAILABLE)
            .values(Status=WEAPON_ALLOCATED, UpdatedDate=allocated_at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            ALLOCATION_LOGGER.warning("Allocation lost race weapon_id=%s user_id=%s", weapon_id, user_id)
            raise ConcurrentModification(f"Weapon {weapon_id} changed while the allocation was in progress.")

        allocation = Allocation(
            WeaponID=weapon.WeaponID,
            UserID=user_id,
            AllocatedAt=allocated_at,
            Status=ALLOCATION_ACTIVE,
            Notes=(notes or "").strip() or None,
            MaintenanceRequired=False,
        )
        db.add(allocation)
        db.flush()

        # The write lock is held from the claim on, so this sees every committed holding.
        held_now = get_active_weapon_types(db, user_id)
        if not holdings_allowed(held_now):
            ALLOCATION_LOGGER.warning(
                "Allocation lost race user_id=%s holdings=%s", user_id, ",".join(sorted(held_now))
            )
            raise ConcurrentModification(f"User {user_id} received another weapon while the allocation was in progress.")

        emit_allocation_event(db, ALLOCATION_CREATED, allocation, now=allocated_at)
        log_audit(
            db,
            "Allocation",
            allocation.AllocationID,
            "Allocate",
            f"Weapon {weapon.SerialNumber} allocated to user {user_id}",
            user_id=requesting_user_id or user_id,
            now=allocated_at,
        )
        return allocation

    allocation = run_in_transaction(db, _op)
    db.refresh(allocation)
    if allocation.Weapon is not None:
        db.refresh(allocation.Weapon)
    ALLOCATION_LOGGER.info(
        "Allocation created allocation_id=%s weapon_id=%s user_id=%s",
        allocation.AllocationID,
        weapon_id,
        user_id,
    )
    return allocation


def return_allocation(
    db: Session,
    allocation_id: int,
    requesting_user_id: int,
    destination: str,
    maintenance_reason: str | None = None,
    *,
    now: datetime | None = None,
) -> Allocation:
    """
    Close an active allocation and send the weapon to stock or maintenance.

    Both records change in one transaction, each through a conditional update
    on its expected current status.
    """
    if destination not in RETURN_DESTINATIONS:
        raise InvalidInput(f"destination must be one of: {', '.join(sorted(RETURN_DESTINATIONS))}.")
    reason = (maintenance_reason or "").strip()
    to_maintenance = destination == DESTINATION_MAINTENANCE
    if to_maintenance and not reason:
        raise ReasonRequired("A maintenance reason is required when returning to maintenance.")

    def _op() -> Allocation:
        returned_at = now or datetime.now()
        allocation = db.execute(
            lock_for_update(select(Allocation).where(Allocation.AllocationID == allocation_id))
            .execution_options(populate_existing=True)
        ).scalars().first()
        if not allocation:
            raise NotFound(f"Allocation {allocation_id} not found.")
        if allocation.UserID != requesting_user_id:
            ALLOCATION_LOGGER.warning(
                "Return refused allocation_id=%s owner=%s requested_by=%s",
                allocation_id,
                allocation.UserID,
                requesting_user_id,
            )
            raise NotOwner("Only the user holding this allocation can return it.")
        if allocation.Status != ALLOCATION_ACTIVE:
            raise NotFound(f"Allocation {allocation_id} is not active.")

        closed = db.execute(
            update(Allocation)
            .where(Allocation.AllocationID == allocation_id)
            .where(Allocation.Status == ALLOCATION_ACTIVE)
            .values(
                Status=ALLOCATION_RETURNED,
                ReturnedAt=returned_at,
                MaintenanceRequired=to_maintenance,
                MaintenanceReason=reason if to_maintenance else None,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if closed != 1:
            raise ConcurrentModification(f"Allocation {allocation_id} was closed by another request.")

        weapon_values = {"Status": RETURN_DESTINATIONS[destination], "UpdatedDate": returned_at}
        if to_maintenance:
            weapon_values["MaintenanceAt"] = returned_at
        released = db.execute(
            update(Weapon)
            .where(Weapon.WeaponID == allocation.WeaponID)
            .where(Weapon.Status == WEAPON_ALLOCATED)
            .values(**weapon_values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if released != 1:
            raise ConcurrentModification(f"Weapon {allocation.WeaponID} is no longer marked as allocated.")

        db.flush()
        db.refresh(allocation)
        emit_allocation_event(db, EVENT_ALLOCATION_RETURNED, allocation, destination=destination, now=returned_at)
        log_audit(
            db,
            "Allocation",
            allocation_id,
            "Return",
            f"Returned to {destination}" + (f": {reason}" if to_maintenance else ""),
            user_id=requesting_user_id,
            now=returned_at,
        )
        return allocation

    allocation = run_in_transaction(db, _op)
    db.refresh(allocation)
    if allocation.Weapon is not None:
        db.refresh(allocation.Weapon)
    ALLOCATION_LOGGER.info(
        "Allocation returned allocation_id=%s weapon_id=%s destination=%s",
        allocation_id,
        allocation.WeaponID,
        destination,
    )
    return allocation


def get_allocation(db: Session, allocation_id: int) -> Allocation:
    allocation = db.execute(
        select(Allocation)
        .options(selectinload(Allocation.Weapon), selectinload(Allocation.User))
        .where(Allocation.AllocationID == allocation_id)
    ).scalars().first()
    if not allocation:
        raise NotFound(f"Allocation {allocation_id} not found.")
    return allocation


def list_allocations(db: Session, user_id: int | None = None, status: str | None = None) -> list[Allocation]:
    stmt = (
        select(Allocation)
        .options(selectinload(Allocation.Weapon), selectinload(Allocation.User))
        .order_by(Allocation.AllocatedAt.desc(), Allocation.AllocationID.desc())
    )
    if user_id is not None:
        stmt = stmt.where(Allocation.UserID == user_id)
    if status:
        stmt = stmt.where(Allocation.Status == status)
    return db.execute(stmt).scalars().all()


def serialize_allocation(allocation: Allocation, now: datetime | None = None) -> dict:
    weapon = allocation.Weapon
    user = allocation.User
    overdue = None
    if allocation.Status == ALLOCATION_ACTIVE:
        overdue = classify_allocation(allocation.AllocatedAt, now or datetime.now()).level.value
    return {
        "allocationID": allocation.AllocationID,
        "weaponID": allocation.WeaponID,
        "userID": allocation.UserID,
        "allocatedAt": allocation.AllocatedAt,
        "returnedAt": allocation.ReturnedAt,
        "status": allocation.Status,
        "notes": allocation.Notes,
        "maintenanceRequired": bool(allocation.MaintenanceRequired),
        "maintenanceReason": allocation.MaintenanceReason,
        "overdueStatus": overdue,
        "weapon": {
            "weaponID": weapon.WeaponID,
            "serialNumber": weapon.SerialNumber,
            "model": weapon.Model,
            "type": weapon.WeaponType,
        } if weapon else None,
        "user": {
            "userID": user.UserID,
            "fullName": user.FullName,
            "email": user.Email,
        } if user else None,
    }
