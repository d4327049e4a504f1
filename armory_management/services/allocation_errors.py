from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ADMIN_NOT_ALLOWED = "AdminNotAllowed"
    WEAPON_NOT_AVAILABLE = "WeaponNotAvailable"
    INVALID_TYPE_COMBINATION = "InvalidTypeCombination"
    TYPE_LIMIT_REACHED = "TypeLimitReached"
    VALIDATION_FAILED = "ValidationFailed"
    NOT_FOUND = "NotFound"
    NOT_OWNER = "NotOwner"
    REASON_REQUIRED = "ReasonRequired"
    WEAPON_IN_USE = "WeaponInUse"
    CONCURRENT_MODIFICATION = "ConcurrentModification"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    DUPLICATE_SERIAL = "DuplicateSerial"
    INVALID_INPUT = "InvalidInput"


class Rejection(str, Enum):
    """Reasons the eligibility check can refuse an allocation request."""

    ADMIN_NOT_ALLOWED = ErrorKind.ADMIN_NOT_ALLOWED.value
    WEAPON_NOT_AVAILABLE = ErrorKind.WEAPON_NOT_AVAILABLE.value
    INVALID_TYPE_COMBINATION = ErrorKind.INVALID_TYPE_COMBINATION.value
    TYPE_LIMIT_REACHED = ErrorKind.TYPE_LIMIT_REACHED.value


class ArmoryError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, *, reason: Rejection | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.message,
        }


class ValidationFailed(ArmoryError):
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, reason: Rejection, message: str | None = None):
        super().__init__(message or f"Allocation rejected: {reason.value}", reason=reason)


class NotFound(ArmoryError):
    kind = ErrorKind.NOT_FOUND


class NotOwner(ArmoryError):
    kind = ErrorKind.NOT_OWNER


class ReasonRequired(ArmoryError):
    kind = ErrorKind.REASON_REQUIRED


class WeaponInUse(ArmoryError):
    kind = ErrorKind.WEAPON_IN_USE


class ConcurrentModification(ArmoryError):
    kind = ErrorKind.CONCURRENT_MODIFICATION


class StorageUnavailable(ArmoryError):
    kind = ErrorKind.STORAGE_UNAVAILABLE


class DuplicateSerial(ArmoryError):
    kind = ErrorKind.DUPLICATE_SERIAL


class InvalidInput(ArmoryError):
    kind = ErrorKind.INVALID_INPUT
