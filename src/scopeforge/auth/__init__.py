"""Caller identity and route-level permission checks."""

from scopeforge.auth.types import AuthContext
from scopeforge.auth.dependencies import get_auth_context, require_authenticated
from scopeforge.auth.permissions import (
    TIER_LEVELS,
    can_write_tier,
    check_route,
    has_any_permission,
    is_owner_tier,
)

__all__ = [
    "AuthContext",
    "get_auth_context",
    "require_authenticated",
    "TIER_LEVELS",
    "can_write_tier",
    "check_route",
    "has_any_permission",
    "is_owner_tier",
]
