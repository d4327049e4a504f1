from __future__ import annotations

import logging
import os
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from services.allocation_errors import ArmoryError, ConcurrentModification, StorageUnavailable


STORAGE_RETRY_ATTEMPTS = int(os.environ.get("ARMORY_STORAGE_RETRY_ATTEMPTS") or "3")
STORAGE_RETRY_BACKOFF = float(os.environ.get("ARMORY_STORAGE_RETRY_BACKOFF") or "0.1")
STORAGE_LOGGER = logging.getLogger("armory.storage")

T = TypeVar("T")


def lock_for_update(stmt):
    """
    Apply row-level locking to a select.

    SQLite ignores SELECT ... FOR UPDATE. There the allocation service relies
    on its conditional weapon updates and on reading the user's holdings again
    once its write has taken the database lock.
    """
    return stmt.with_for_update()


def _is_transient(exc: DBAPIError) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return bool(getattr(exc, "connection_invalidated", False))


def _default_conflict(exc: IntegrityError) -> ArmoryError:
    return ConcurrentModification("Another transition changed this record first.")


def run_in_transaction(
    db: Session,
    func: Callable[[], T],
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    on_conflict: Callable[[IntegrityError], ArmoryError] | None = None,
) -> T:
    """
    Run ``func`` and commit, or roll back everything it did.

    Transient storage failures (lock timeouts, dropped connections) are
    retried with exponential backoff and surface as StorageUnavailable once
    the attempts are exhausted. ``func`` must re-read whatever state it needs
    since a retry starts from a clean session.
    """
    total = max(attempts if attempts is not None else STORAGE_RETRY_ATTEMPTS, 1)
    backoff = STORAGE_RETRY_BACKOFF if backoff_base is None else backoff_base
    conflict = on_conflict or _default_conflict

    for attempt in range(total):
        try:
            result = func()
            db.commit()
            return result
        except ArmoryError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            raise conflict(exc) from exc
        except (DBAPIError, PoolTimeoutError) as exc:
            db.rollback()
            if isinstance(exc, DBAPIError) and not _is_transient(exc):
                raise
            if attempt >= total - 1:
                STORAGE_LOGGER.error("Storage unavailable after %s attempts: %s", total, exc)
                raise StorageUnavailable("The inventory store is unavailable. Try again later.") from exc
            STORAGE_LOGGER.warning("Transient storage failure attempt=%s error=%s", attempt + 1, exc)
            time.sleep(backoff * (2 ** attempt))
        except Exception:
            db.rollback()
            raise
    raise StorageUnavailable("The inventory store is unavailable. Try again later.")
