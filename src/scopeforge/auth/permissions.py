"""Route-level permission checks for compiled routes."""

from __future__ import annotations

from typing import Iterable

from scopeforge.auth.types import AuthContext
from scopeforge.endpoints.contracts import RouteContract
from scopeforge.errors import PermissionDenied

# Tier levels - higher number = more permissions
# A higher tier satisfies every check a lower tier does
TIER_LEVELS = {
    "read": 1,
    "write": 2,
    "owner": 3,
}


def tier_level(tier: str | None) -> int:
    """Return numeric level for a tier label, 0 if unknown/None."""
    return TIER_LEVELS.get(tier or "", 0)


def is_owner_tier(tier: str | None) -> bool:
    return tier_level(tier) >= TIER_LEVELS["owner"]


def can_write_tier(tier: str | None) -> bool:
    return tier_level(tier) >= TIER_LEVELS["write"]


def has_any_permission(auth: AuthContext | None, permissions: Iterable[str]) -> bool:
    if auth is None:
        return False
    return not auth.permissions.isdisjoint(permissions)


def check_route(auth: AuthContext, route: RouteContract) -> None:
    """Raise PermissionDenied when the caller fails a route's gate.

    Object-scoped routes are gated per row in SQL instead, where a failed
    check reads as not-found.
    """
    if route.object_scope:
        return
    if not has_any_permission(auth, route.required_permissions):
        raise PermissionDenied(
            f"One of {', '.join(route.required_permissions)} is required to {route.operation}"
        )
