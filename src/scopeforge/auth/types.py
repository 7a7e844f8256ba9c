"""Type definitions for the caller identity seen by generated routes."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field


@dataclass
class AuthContext:
    """The authenticated caller.

    Attributes:
        organization_id: The active organization (tenant)
        user_id: The authenticated user's ID
        role_ids: Roles the user holds in the organization
        permissions: Model-wide permission names granted to the user or any role
    """

    organization_id: uuid.UUID
    user_id: uuid.UUID
    role_ids: list[uuid.UUID] = field(default_factory=list)
    permissions: set[str] = field(default_factory=set)

    @property
    def actor_ids(self) -> list[uuid.UUID]:
        """The user id followed by every role id; permissions are unioned over these."""
        return [self.user_id, *self.role_ids]
