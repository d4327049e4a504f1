from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


WEAPON_TYPES = ("pistol", "shotgun", "rifle")

WEAPON_AVAILABLE = "available"
WEAPON_ALLOCATED = "allocated"
WEAPON_MAINTENANCE = "maintenance"
WEAPON_STATUSES = (WEAPON_AVAILABLE, WEAPON_ALLOCATED, WEAPON_MAINTENANCE)

ALLOCATION_ACTIVE = "active"
ALLOCATION_RETURNED = "returned"
ALLOCATION_STATUSES = (ALLOCATION_ACTIVE, ALLOCATION_RETURNED)


class Weapon(Base):
    __tablename__ = "Weapons"

    WeaponID = Column(Integer, primary_key=True)
    SerialNumber = Column(String(100), nullable=False, unique=True)
    Model = Column(String(255), nullable=False)
    Caliber = Column(String(50), nullable=False)
    Manufacturer = Column(String(255), nullable=False)
    WeaponType = Column(String(20), nullable=False)
    Status = Column(String(20), nullable=False, default=WEAPON_AVAILABLE)
    MaintenanceAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Allocations = relationship("Allocation", back_populates="Weapon", passive_deletes=True)


class ArmoryUser(Base):
    __tablename__ = "ArmoryUsers"

    UserID = Column(Integer, primary_key=True)
    FullName = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    IsAdmin = Column(Boolean, nullable=False, default=False)
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())

    Allocations = relationship("Allocation", back_populates="User")


class Allocation(Base):
    __tablename__ = "Allocations"

    AllocationID = Column(Integer, primary_key=True)
    WeaponID = Column(Integer, ForeignKey("Weapons.WeaponID", ondelete="SET NULL"))
    UserID = Column(Integer, ForeignKey("ArmoryUsers.UserID"), nullable=False)
    AllocatedAt = Column(DateTime, nullable=False)
    ReturnedAt = Column(DateTime)
    Status = Column(String(20), nullable=False, default=ALLOCATION_ACTIVE)
    Notes = Column(String(1000))
    MaintenanceRequired = Column(Boolean, nullable=False, default=False)
    MaintenanceReason = Column(String(1000))

    Weapon = relationship("Weapon", back_populates="Allocations")
    User = relationship("ArmoryUser", back_populates="Allocations")


# One active allocation per weapon, enforced by the store as well as the engine.
Index(
    "UX_Allocations_ActiveWeapon",
    Allocation.WeaponID,
    unique=True,
    sqlite_where=Allocation.Status == ALLOCATION_ACTIVE,
    postgresql_where=Allocation.Status == ALLOCATION_ACTIVE,
    mssql_where=Allocation.Status == ALLOCATION_ACTIVE,
)
Index("IX_Allocations_UserStatus", Allocation.UserID, Allocation.Status)


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())


class AllocationEvent(Base):
    __tablename__ = "AllocationEvents"

    EventID = Column(Integer, primary_key=True)
    EventType = Column(String(50), nullable=False)
    AllocationID = Column(Integer, nullable=False)
    WeaponID = Column(Integer, nullable=False)
    UserID = Column(Integer, nullable=False)
    Payload = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
    ConsumedAt = Column(DateTime)
