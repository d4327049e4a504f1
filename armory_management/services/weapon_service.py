from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.armory_models import (
    WEAPON_ALLOCATED,
    WEAPON_AVAILABLE,
    WEAPON_MAINTENANCE,
    WEAPON_STATUSES,
    WEAPON_TYPES,
    Weapon,
)
from services.allocation_errors import (
    ArmoryError,
    ConcurrentModification,
    DuplicateSerial,
    InvalidInput,
    NotFound,
    WeaponInUse,
)
from services.event_service import log_audit
from services.storage import run_in_transaction


WEAPON_LOGGER = logging.getLogger("armory.weapons")

DESCRIPTIVE_FIELDS = {
    "serialNumber": "SerialNumber",
    "model": "Model",
    "caliber": "Caliber",
    "manufacturer": "Manufacturer",
}


def _duplicate_serial(exc: IntegrityError) -> ArmoryError:
    return DuplicateSerial("A weapon with this serial number is already registered.")


def _clean_text(field: str, value) -> str:
    text = str(value or "").strip()
    if not text:
        raise InvalidInput(f"{field} is required.")
    return text


def _validate_type(value) -> str:
    weapon_type = str(value or "").strip().lower()
    if weapon_type not in WEAPON_TYPES:
        raise InvalidInput(f"type must be one of: {', '.join(WEAPON_TYPES)}.")
    return weapon_type


def _validate_status(value) -> str:
    status = str(value or "").strip().lower()
    if status not in WEAPON_STATUSES:
        raise InvalidInput(f"status must be one of: {', '.join(WEAPON_STATUSES)}.")
    return status


def _serial_taken(db: Session, serial_number: str, exclude_weapon_id: int | None = None) -> bool:
    stmt = select(Weapon.WeaponID).where(Weapon.SerialNumber == serial_number)
    if exclude_weapon_id is not None:
        stmt = stmt.where(Weapon.WeaponID != exclude_weapon_id)
    return db.execute(stmt).first() is not None


def get_weapon(db: Session, weapon_id: int) -> Weapon:
    weapon = db.get(Weapon, weapon_id, populate_existing=True)
    if not weapon:
        raise NotFound(f"Weapon {weapon_id} not found.")
    return weapon


def list_weapons(db: Session, status: str | None = None, weapon_type: str | None = None) -> list[Weapon]:
    stmt = select(Weapon).order_by(Weapon.SerialNumber)
    if status:
        stmt = stmt.where(Weapon.Status == _validate_status(status))
    if weapon_type:
        stmt = stmt.where(Weapon.WeaponType == _validate_type(weapon_type))
    return db.execute(stmt).scalars().all()


def create_weapon(db: Session, fields: dict, actor_user_id: int | None = None) -> Weapon:
    values = {column: _clean_text(field, fields.get(field)) for field, column in DESCRIPTIVE_FIELDS.items()}
    values["WeaponType"] = _validate_type(fields.get("type"))

    def _op() -> Weapon:
        if _serial_taken(db, values["SerialNumber"]):
            raise DuplicateSerial(f"Serial number {values['SerialNumber']} is already registered.")
        created_at = datetime.now()
        weapon = Weapon(
            **values,
            Status=WEAPON_AVAILABLE,
            CreatedDate=created_at,
            UpdatedDate=created_at,
        )
        db.add(weapon)
        db.flush()
        log_audit(db, "Weapon", weapon.WeaponID, "Create", f"Serial {weapon.SerialNumber}", user_id=actor_user_id)
        return weapon

    weapon = run_in_transaction(db, _op, on_conflict=_duplicate_serial)
    WEAPON_LOGGER.info("Weapon created weapon_id=%s serial=%s", weapon.WeaponID, weapon.SerialNumber)
    return weapon


def update_weapon(db: Session, weapon_id: int, fields: dict, actor_user_id: int | None = None) -> Weapon:
    """
    Apply an administrative edit.

    While a weapon is allocated neither its status nor its type may change;
    it has to be returned first. Nobody may set ``allocated`` by hand. The
    write is conditional on the status read at the start so a concurrent
    allocation or return makes the edit fail instead of overwriting it.
    """

    def _op() -> Weapon:
        weapon = get_weapon(db, weapon_id)
        current_status = weapon.Status
        now = datetime.now()
        values: dict = {}

        for field, column in DESCRIPTIVE_FIELDS.items():
            if field in fields and fields[field] is not None:
                values[column] = _clean_text(field, fields[field])
        if "SerialNumber" in values and _serial_taken(db, values["SerialNumber"], exclude_weapon_id=weapon_id):
            raise DuplicateSerial(f"Serial number {values['SerialNumber']} is already registered.")

        if fields.get("type") is not None:
            new_type = _validate_type(fields["type"])
            if new_type != weapon.WeaponType:
                if current_status == WEAPON_ALLOCATED:
                    raise WeaponInUse("The weapon type cannot change while it is allocated.")
                values["WeaponType"] = new_type

        if fields.get("status") is not None:
            new_status = _validate_status(fields["status"])
            if new_status != current_status:
                if current_status == WEAPON_ALLOCATED:
                    raise WeaponInUse("The weapon is allocated. It must be returned first.")
                if new_status == WEAPON_ALLOCATED:
                    raise WeaponInUse("Weapons are only marked allocated by an allocation request.")
                values["Status"] = new_status
                values["MaintenanceAt"] = now if new_status == WEAPON_MAINTENANCE else None

        if not values:
            return weapon

        values["UpdatedDate"] = now
        changed = db.execute(
            update(Weapon)
            .where(Weapon.WeaponID == weapon_id)
            .where(Weapon.Status == current_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if changed != 1:
            raise ConcurrentModification(f"Weapon {weapon_id} changed while it was being edited.")
        log_audit(
            db,
            "Weapon",
            weapon_id,
            "Update",
            ", ".join(sorted(column for column in values if column != "UpdatedDate")),
            user_id=actor_user_id,
        )
        return weapon

    weapon = run_in_transaction(db, _op, on_conflict=_duplicate_serial)
    db.refresh(weapon)
    WEAPON_LOGGER.info("Weapon updated weapon_id=%s status=%s", weapon_id, weapon.Status)
    return weapon


def delete_weapon(db: Session, weapon_id: int, actor_user_id: int | None = None) -> None:
    def _op() -> None:
        weapon = get_weapon(db, weapon_id)
        if weapon.Status == WEAPON_ALLOCATED:
            raise WeaponInUse("The weapon is allocated. It must be returned before deletion.")
        removed = db.execute(
            delete(Weapon)
            .where(Weapon.WeaponID == weapon_id)
            .where(Weapon.Status != WEAPON_ALLOCATED)
            .execution_options(synchronize_session=False)
        ).rowcount
        if removed != 1:
            raise WeaponInUse("The weapon was allocated while the deletion was in progress.")
        log_audit(db, "Weapon", weapon_id, "Delete", f"Serial {weapon.SerialNumber}", user_id=actor_user_id)
        db.expunge(weapon)

    run_in_transaction(db, _op)
    WEAPON_LOGGER.info("Weapon deleted weapon_id=%s", weapon_id)


def serialize_weapon(weapon: Weapon) -> dict:
    return {
        "weaponID": weapon.WeaponID,
        "serialNumber": weapon.SerialNumber,
        "model": weapon.Model,
        "caliber": weapon.Caliber,
        "manufacturer": weapon.Manufacturer,
        "type": weapon.WeaponType,
        "status": weapon.Status,
        "maintenanceAt": weapon.MaintenanceAt,
        "createdDate": weapon.CreatedDate,
        "updatedDate": weapon.UpdatedDate,
    }
