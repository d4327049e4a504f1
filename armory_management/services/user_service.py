from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.armory_models import ALLOCATION_ACTIVE, Allocation, ArmoryUser
from services.allocation_errors import ArmoryError, InvalidInput, NotFound, WeaponInUse
from services.event_service import log_audit
from services.storage import lock_for_update, run_in_transaction


def _normalize_email(raw: str | None) -> str:
    email = (raw or "").strip().lower()
    if not email or "@" not in email:
        raise InvalidInput("A valid email is required.")
    return email


def _normalize_name(raw: str | None) -> str:
    name = " ".join((raw or "").split())
    if not name:
        raise InvalidInput("fullName is required.")
    return name


def _duplicate_email(exc: IntegrityError) -> ArmoryError:
    return InvalidInput("A user with this email already exists.")


def _active_allocation_count(db: Session, user_id: int) -> int:
    return db.execute(
        select(func.count(Allocation.AllocationID))
        .where(Allocation.UserID == user_id)
        .where(Allocation.Status == ALLOCATION_ACTIVE)
    ).scalar() or 0


def get_user(db: Session, user_id: int) -> ArmoryUser:
    user = db.get(ArmoryUser, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found.")
    return user


def find_user_by_email(db: Session, email: str) -> ArmoryUser | None:
    return db.execute(
        select(ArmoryUser).where(ArmoryUser.Email == _normalize_email(email))
    ).scalars().first()


def list_users(db: Session, include_admins: bool = True) -> list[ArmoryUser]:
    stmt = select(ArmoryUser).order_by(ArmoryUser.FullName)
    if not include_admins:
        stmt = stmt.where(ArmoryUser.IsAdmin.is_(False))
    return db.execute(stmt).scalars().all()


def create_user(db: Session, full_name: str, email: str, is_admin: bool = False) -> ArmoryUser:
    name = _normalize_name(full_name)
    normalized_email = _normalize_email(email)

    def _op() -> ArmoryUser:
        if find_user_by_email(db, normalized_email):
            raise InvalidInput("A user with this email already exists.")
        user = ArmoryUser(
            FullName=name,
            Email=normalized_email,
            IsAdmin=bool(is_admin),
            IsActive=True,
            CreatedDate=datetime.now(),
        )
        db.add(user)
        db.flush()
        log_audit(db, "User", user.UserID, "Create", f"admin={bool(is_admin)}")
        return user

    return run_in_transaction(db, _op, on_conflict=_duplicate_email)


def upsert_user(db: Session, full_name: str, email: str, is_admin: bool = False) -> tuple[ArmoryUser, bool]:
    """Create the user, or update name and role when the email is already known."""
    name = _normalize_name(full_name)
    normalized_email = _normalize_email(email)

    def _op() -> tuple[ArmoryUser, bool]:
        # Same row lock as an allocation request, so a promotion cannot slip past one in flight.
        user = db.execute(
            lock_for_update(select(ArmoryUser).where(ArmoryUser.Email == normalized_email))
            .execution_options(populate_existing=True)
        ).scalars().first()
        created = user is None
        if not created and is_admin and not user.IsAdmin and _active_allocation_count(db, user.UserID):
            raise WeaponInUse("The user holds weapons. Return held weapons first before granting admin rights.")
        if created:
            user = ArmoryUser(Email=normalized_email, IsActive=True, CreatedDate=datetime.now())
            db.add(user)
        user.FullName = name
        user.IsAdmin = bool(is_admin)
        db.flush()
        log_audit(db, "User", user.UserID, "Create" if created else "Update", f"admin={bool(is_admin)}")
        return user, created

    return run_in_transaction(db, _op, on_conflict=_duplicate_email)


def serialize_user(user: ArmoryUser) -> dict:
    return {
        "userID": user.UserID,
        "fullName": user.FullName,
        "email": user.Email,
        "isAdmin": bool(user.IsAdmin),
        "isActive": bool(user.IsActive),
        "createdDate": user.CreatedDate,
    }
