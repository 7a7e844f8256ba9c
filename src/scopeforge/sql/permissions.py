"""Permission clause compiler.

Emits the three permission-check shapes every statement is built from:

- an ``EXISTS`` existence check for single-tier gates,
- an ``is_owner`` / ``is_user`` boolean lookup for downgrade-protected updates,
- a ``_permission`` label lookup joined laterally into SELECTs, which drops
  rows the actor cannot see.

All placeholders go through the caller's :class:`ParamCursor`.
"""

from __future__ import annotations

from scopeforge.metadata.catalog import ORG_ADMIN, AuthScope, FieldWritePolicy, Model
from scopeforge.sql import bindings
from scopeforge.sql.query_builder import ParamCursor, sql_string

OWNER_FLAG = "permissions.is_owner"


def render_write(
    policy: FieldWritePolicy, new: str, current: str, owner_flag: str = OWNER_FLAG
) -> str:
    """Value expression assigned to a field by an UPDATE."""
    if policy is FieldWritePolicy.ALWAYS:
        return new
    return f"CASE WHEN {owner_flag} THEN {new} ELSE {current} END"


def _in_list(values: tuple[str, ...]) -> str:
    return ", ".join(sql_string(v) for v in values)


class PermissionCompiler:
    def __init__(self, model: Model, auth_schema: str = "public"):
        self.model = model
        self.auth_schema = auth_schema

    @property
    def object_scoped(self) -> bool:
        return self.model.auth_scope is AuthScope.OBJECT

    @property
    def table(self) -> str:
        name = "object_permissions" if self.object_scoped else "permissions"
        return f"{self.auth_schema}.{name}"

    # Permission sets for each gate, org_admin first as the implicit super-tier

    @property
    def read_permissions(self) -> tuple[str, ...]:
        p = self.model.permissions
        return (ORG_ADMIN, p.owner, p.write, p.read)

    @property
    def write_permissions(self) -> tuple[str, ...]:
        p = self.model.permissions
        return (ORG_ADMIN, p.owner, p.write)

    @property
    def owner_permissions(self) -> tuple[str, ...]:
        return (ORG_ADMIN, self.model.permissions.owner)

    @property
    def create_permissions(self) -> tuple[str, ...]:
        return (ORG_ADMIN, self.model.permissions.create)

    def _where(
        self, cursor: ParamCursor, permissions: tuple[str, ...], object_ref: str | None
    ) -> str:
        conditions = []
        if not self.model.is_global:
            conditions.append(
                f"organization_id = {cursor.bind(bindings.ORGANIZATION_ID, 'uuid')}"
            )
        conditions.append(f"actor_id = ANY({cursor.bind(bindings.ACTOR_IDS, 'uuid[]')})")
        if self.object_scoped:
            if object_ref is None:
                raise ValueError(
                    f"Model '{self.model.name}' uses object permissions; an object id is required"
                )
            conditions.append(f"object_id = {object_ref}")
        conditions.append(f"permission IN ({_in_list(permissions)})")
        return " AND ".join(conditions)

    def existence_check(
        self,
        cursor: ParamCursor,
        permissions: tuple[str, ...],
        object_ref: str | None = None,
    ) -> str:
        return (
            f"EXISTS (SELECT 1 FROM {self.table} "
            f"WHERE {self._where(cursor, permissions, object_ref)})"
        )

    def owner_user_lookup(self, cursor: ParamCursor, object_ref: str | None = None) -> str:
        """SELECT producing one row of ``is_owner``, ``is_user`` booleans.

        Every owner permission is also a user permission, so is_owner implies
        is_user for any set of permission rows.
        """
        owner = _in_list(self.owner_permissions)
        user = _in_list(self.write_permissions)
        return (
            f"SELECT COALESCE(bool_or(permission IN ({owner})), false) AS is_owner, "
            f"COALESCE(bool_or(permission IN ({user})), false) AS is_user "
            f"FROM {self.table} "
            f"WHERE {self._where(cursor, self.write_permissions, object_ref)}"
        )

    def owner_user_cte(self, cursor: ParamCursor, object_ref: str | None = None) -> str:
        return f"WITH permissions AS ({self.owner_user_lookup(cursor, object_ref)})"

    def label_lookup(self, cursor: ParamCursor, object_ref: str | None = None) -> str:
        """SELECT producing the actor's highest tier, or NULL when it has none."""
        p = self.model.permissions
        return (
            f"SELECT CASE "
            f"WHEN bool_or(permission IN ({_in_list(self.owner_permissions)})) THEN 'owner' "
            f"WHEN bool_or(permission = {sql_string(p.write)}) THEN 'write' "
            f"WHEN bool_or(permission = {sql_string(p.read)}) THEN 'read' "
            f"ELSE NULL END AS _permission "
            f"FROM {self.table} "
            f"WHERE {self._where(cursor, self.read_permissions, object_ref)}"
        )

    def label_join(self, cursor: ParamCursor, object_ref: str | None = None) -> str:
        return (
            f"JOIN LATERAL ({self.label_lookup(cursor, object_ref)}) perm "
            f"ON perm._permission IS NOT NULL"
        )
