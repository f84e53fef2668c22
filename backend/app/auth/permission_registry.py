"""
Permission registry - static catalogue of admin capabilities.

This module is the single definition of:
- Tiers (moderator < admin < super_admin) and their ordering
- Granular, namespaced permission keys
- Per-tier ceilings (what a tier may be granted explicitly)
- Per-tier baselines (what a tier receives without asking)
- The versioned legacy permission map

Consumers:
- PermissionResolver, for inheritance and legacy expansion
- RoleAdministration, for validating requested permission sets
- The admin API, read-only, grouped into display categories

The whole registry is checked at import time; an inconsistent edit fails
the process at startup instead of producing a wrong authorization decision.
"""
from __future__ import annotations

from enum import Enum
from typing import Final, Iterable


class Tier(str, Enum):
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank < other.rank


_TIER_RANK: Final[dict[Tier, int]] = {
    Tier.MODERATOR: 0,
    Tier.ADMIN: 1,
    Tier.SUPER_ADMIN: 2,
}

TIERS_ASCENDING: Final[tuple[Tier, ...]] = (Tier.MODERATOR, Tier.ADMIN, Tier.SUPER_ADMIN)


def parse_tier(value: str | Tier) -> Tier:
    try:
        return Tier(value)
    except ValueError:
        raise ValueError(
            f"Invalid tier '{value}'. Must be one of: "
            f"{', '.join(tier.value for tier in TIERS_ASCENDING)}"
        ) from None


# ============================================================================
# PERMISSION KEYS
# ============================================================================

DASHBOARD_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "dashboard.view",
    "dashboard.viewAnalytics",
})

USER_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "users.view",
    "users.edit",
    "users.delete",
    "users.ban",
    "users.unban",
})

IMAGE_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "images.view",
    "images.edit",
    "images.delete",
    "images.moderate",
})

CATEGORY_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "categories.view",
    "categories.create",
    "categories.edit",
    "categories.delete",
})

ADMIN_MANAGEMENT_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "admins.view",
    "admins.create",
    "admins.edit",
    "admins.delete",
})

COLLECTION_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "collections.view",
    "collections.manage",
})

FAVORITE_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "favorites.manage",
})

MODERATION_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "content.moderate",
})

SYSTEM_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "system.viewLogs",
    "system.exportData",
    "system.manageSettings",
})

PERMISSION_KEYS: Final[frozenset[str]] = (
    DASHBOARD_PERMISSIONS
    | USER_PERMISSIONS
    | IMAGE_PERMISSIONS
    | CATEGORY_PERMISSIONS
    | ADMIN_MANAGEMENT_PERMISSIONS
    | COLLECTION_PERMISSIONS
    | FAVORITE_PERMISSIONS
    | MODERATION_PERMISSIONS
    | SYSTEM_PERMISSIONS
)

# Display grouping only. Categories carry no authorization meaning.
PERMISSION_CATEGORIES: Final[dict[str, frozenset[str]]] = {
    "Dashboard": DASHBOARD_PERMISSIONS,
    "Users": USER_PERMISSIONS,
    "Images": IMAGE_PERMISSIONS,
    "Categories": CATEGORY_PERMISSIONS,
    "Admins": ADMIN_MANAGEMENT_PERMISSIONS,
    "Collections": COLLECTION_PERMISSIONS,
    "Favorites": FAVORITE_PERMISSIONS,
    "Moderation": MODERATION_PERMISSIONS,
    "System": SYSTEM_PERMISSIONS,
}

# Only a super_admin grant may carry these
SUPER_ADMIN_ONLY_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "admins.create",
    "admins.edit",
    "admins.delete",
})


# ============================================================================
# TIER CEILINGS AND BASELINES
# ============================================================================

_MODERATOR_CEILING: Final[frozenset[str]] = frozenset({
    "dashboard.view",
    "dashboard.viewAnalytics",
    "users.view",
    "images.view",
    "categories.view",
    "collections.view",
    "images.moderate",
    "content.moderate",
    "favorites.manage",
    "system.viewLogs",
})

_ADMIN_CEILING: Final[frozenset[str]] = _MODERATOR_CEILING | frozenset({
    "users.edit",
    "users.delete",
    "users.ban",
    "users.unban",
    "images.edit",
    "images.delete",
    "categories.create",
    "categories.edit",
    "categories.delete",
    "collections.manage",
    "system.exportData",
    "system.manageSettings",
    "admins.view",
})

TIER_CEILINGS: Final[dict[Tier, frozenset[str]]] = {
    Tier.MODERATOR: _MODERATOR_CEILING,
    Tier.ADMIN: _ADMIN_CEILING,
    Tier.SUPER_ADMIN: PERMISSION_KEYS,
}

_MODERATOR_BASELINE: Final[frozenset[str]] = frozenset({"dashboard.view"})

TIER_BASELINES: Final[dict[Tier, frozenset[str]]] = {
    Tier.MODERATOR: _MODERATOR_BASELINE,
    Tier.ADMIN: _MODERATOR_BASELINE | frozenset({"dashboard.viewAnalytics"}),
    Tier.SUPER_ADMIN: PERMISSION_KEYS,
}


# ============================================================================
# LEGACY PERMISSION MAP
# ============================================================================

LEGACY_MAP_VERSION: Final[int] = 1

LEGACY_PERMISSION_MAP: Final[dict[str, frozenset[str]]] = {
    "manageUsers": USER_PERMISSIONS,
    "manageImages": IMAGE_PERMISSIONS,
    "manageCategories": CATEGORY_PERMISSIONS,
    "manageAdmins": ADMIN_MANAGEMENT_PERMISSIONS,
}

LEGACY_KEYS: Final[frozenset[str]] = frozenset(LEGACY_PERMISSION_MAP)

# Everything a grant may list in its explicit permissions
ACCEPTED_KEYS: Final[frozenset[str]] = PERMISSION_KEYS | LEGACY_KEYS


def inherited_permissions(tier: Tier) -> frozenset[str]:
    return TIER_BASELINES[tier]


def expand_legacy(keys: Iterable[str]) -> frozenset[str]:
    """Replace legacy names with the granular keys they map to.

    Registered granular keys pass through unchanged; unknown keys are dropped.
    """
    expanded: set[str] = set()
    for key in keys:
        if key in LEGACY_PERMISSION_MAP:
            expanded |= LEGACY_PERMISSION_MAP[key]
        elif key in PERMISSION_KEYS:
            expanded.add(key)
    return frozenset(expanded)


def is_permission_allowed_for_tier(tier: Tier, key: str) -> bool:
    return key in TIER_CEILINGS[tier]


def validate_permission_key(key: str) -> None:
    """
    Validate that a key names a registered capability.

    Raises:
        ValueError: If the key is a wildcard or is not registered
    """
    if key.endswith("*"):
        raise ValueError(f"Wildcard permission '{key}' is not allowed")
    if key not in PERMISSION_KEYS:
        raise ValueError(f"Unknown permission '{key}'")


def validate_permissions_for_tier(tier: Tier, keys: Iterable[str]) -> list[str]:
    """
    Check a requested explicit permission set against the registry and the tier.

    Legacy names are accepted and checked through their expansion.

    Returns:
        list[str]: Human-readable problems; empty when the set is valid
    """
    errors: list[str] = []
    ceiling = TIER_CEILINGS[tier]

    for key in sorted(set(keys)):
        if key.endswith("*"):
            errors.append(f"Wildcard permission '{key}' is not allowed")
            continue
        if key not in ACCEPTED_KEYS:
            errors.append(f"Unknown permission '{key}'")
            continue

        granular = LEGACY_PERMISSION_MAP.get(key, frozenset({key}))
        illegal = sorted(granular - ceiling)
        if not illegal:
            continue
        if tier != Tier.SUPER_ADMIN and set(illegal) & SUPER_ADMIN_ONLY_PERMISSIONS:
            errors.append(
                f"Permission '{key}' is only allowed for the super_admin tier"
            )
        else:
            errors.append(
                f"Permission '{key}' is not allowed for tier '{tier.value}' "
                f"(grants {', '.join(illegal)})"
            )

    return errors


def tier_description(tier: Tier) -> str:
    if tier == Tier.MODERATOR:
        return (
            "Moderators can view content, moderate images and content, manage "
            "favorites and read logs. They cannot modify users or settings."
        )
    if tier == Tier.ADMIN:
        return (
            "Admins manage users, content and system settings. They cannot "
            "create, edit or delete admin grants."
        )
    return "Super admins hold every permission including admin grant management."


def _validate_registry() -> None:
    errors: list[str] = []

    categorised = frozenset().union(*PERMISSION_CATEGORIES.values())
    if categorised != PERMISSION_KEYS:
        errors.append(
            f"Uncategorised permissions: {sorted(PERMISSION_KEYS - categorised)}"
        )

    for tier in TIERS_ASCENDING:
        if not TIER_CEILINGS[tier] <= PERMISSION_KEYS:
            errors.append(f"Ceiling for '{tier.value}' has unknown keys")
        if not TIER_BASELINES[tier] <= TIER_CEILINGS[tier]:
            errors.append(f"Baseline for '{tier.value}' exceeds its ceiling")

    for lower, higher in zip(TIERS_ASCENDING, TIERS_ASCENDING[1:]):
        if not TIER_CEILINGS[lower] <= TIER_CEILINGS[higher]:
            errors.append(f"Ceiling of '{higher.value}' does not contain '{lower.value}'")
        if not TIER_BASELINES[lower] <= TIER_BASELINES[higher]:
            errors.append(f"Baseline of '{higher.value}' does not contain '{lower.value}'")

    for tier in (Tier.MODERATOR, Tier.ADMIN):
        leaked = TIER_CEILINGS[tier] & SUPER_ADMIN_ONLY_PERMISSIONS
        if leaked:
            errors.append(f"Tier '{tier.value}' may be granted {sorted(leaked)}")

    for legacy, targets in LEGACY_PERMISSION_MAP.items():
        if legacy in PERMISSION_KEYS:
            errors.append(f"Legacy name '{legacy}' collides with a registered key")
        if not targets <= PERMISSION_KEYS:
            errors.append(f"Legacy name '{legacy}' maps to unknown keys")

    if errors:
        raise RuntimeError(
            "Permission registry validation failed:\n"
            + "\n".join(f"  - {error}" for error in errors)
        )


_validate_registry()
