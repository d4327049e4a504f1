from __future__ import annotations

import os
from collections import Counter
from typing import Iterable

from models.armory_models import WEAPON_AVAILABLE
from services.allocation_errors import Rejection


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


# Blocks any second allocation while the user still holds one, instead of
# evaluating the composition rule. Off unless the armory policy asks for it.
STRICT_SINGLE_ALLOCATION = _env_flag("ARMORY_STRICT_SINGLE_ALLOCATION")

SIDEARMS = frozenset({"pistol"})
LONG_GUNS = frozenset({"shotgun", "rifle"})

ALLOWED_COMPOSITIONS = (
    frozenset({"pistol"}),
    frozenset({"shotgun"}),
    frozenset({"rifle"}),
    frozenset({"pistol", "shotgun"}),
    frozenset({"pistol", "rifle"}),
)


def is_allowed_composition(weapon_types: Iterable[str]) -> bool:
    counts = Counter(weapon_types)
    if not counts:
        return True
    if any(count > 1 for count in counts.values()):
        return False
    return frozenset(counts) in ALLOWED_COMPOSITIONS


def holdings_allowed(weapon_types: Iterable[str], strict: bool | None = None) -> bool:
    """Whether a user may hold exactly these weapon types at once."""
    held = list(weapon_types)
    if strict is None:
        strict = STRICT_SINGLE_ALLOCATION
    if strict and len(held) > 1:
        return False
    return is_allowed_composition(held)


def check_composition(held_types: Iterable[str], requested_type: str) -> Rejection | None:
    held = list(held_types)
    if not held:
        return None
    if requested_type in LONG_GUNS and LONG_GUNS.intersection(held):
        return Rejection.INVALID_TYPE_COMBINATION
    if requested_type in held:
        return Rejection.TYPE_LIMIT_REACHED
    if not is_allowed_composition(held + [requested_type]):
        return Rejection.INVALID_TYPE_COMBINATION
    return None


def check_eligibility(
    weapon,
    user,
    held_types: Iterable[str],
    requester=None,
    strict: bool | None = None,
) -> Rejection | None:
    """
    Decide whether ``user`` may take ``weapon`` on top of what they hold.

    Returns None when the allocation is allowed, otherwise the first failing
    Rejection in check order: role, weapon availability, composition.
    ``held_types`` are the weapon types of the user's active allocations,
    read from the same snapshot as ``weapon``.
    """
    if user.IsAdmin or (requester is not None and requester.IsAdmin):
        return Rejection.ADMIN_NOT_ALLOWED

    if weapon.Status != WEAPON_AVAILABLE:
        return Rejection.WEAPON_NOT_AVAILABLE

    held = list(held_types)
    if strict is None:
        strict = STRICT_SINGLE_ALLOCATION
    if strict and held:
        return Rejection.TYPE_LIMIT_REACHED

    return check_composition(held, weapon.WeaponType)
