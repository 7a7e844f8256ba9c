"""PostgreSQL repository executing compiled statements.

Uses psycopg v3 for database access. Every write runs its plan inside
``conn.transaction()``; when the caller already holds a transaction this
becomes a savepoint, so parent and children still commit or roll back
together.

Constraint failures are translated into the runtime error taxonomy:
a foreign-key violation on a known parent constraint is ``MissingParent``,
anything else from the driver is ``DatabaseError``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

import psycopg
from psycopg.rows import dict_row

from scopeforge.auth.permissions import can_write_tier, is_owner_tier
from scopeforge.auth.types import AuthContext
from scopeforge.compiler import CompiledModel
from scopeforge.errors import DatabaseError, MissingParent, NotFound, PermissionDenied
from scopeforge.runtime.binder import BoundQuery, ListRequest, bind_list, bind_statement
from scopeforge.sql import bindings
from scopeforge.sql.cascade import ChildPlan
from scopeforge.sql.query_builder import CompiledStatement

logger = logging.getLogger(__name__)


class ModelRepository:
    """Runs one compiled model's statements against a psycopg connection."""

    def __init__(
        self,
        conn: psycopg.Connection,
        compiled: CompiledModel,
        parent_constraints: Iterable[str] = (),
    ):
        self.conn = conn
        self.compiled = compiled
        self.parent_constraints = (
            set(parent_constraints)
            | set(compiled.parent_constraints)
            | {plan.parent_constraint for plan in compiled.child_plans.values()}
        )

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    def _fetch(self, query: BoundQuery) -> list[dict[str, Any]]:
        sql, params = query.psycopg()
        try:
            with self.conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return cur.fetchall() if cur.description else []
        except psycopg.errors.ForeignKeyViolation as exc:
            constraint = exc.diag.constraint_name
            logger.debug("Foreign key violation on %s in %s", constraint, query.statement.name)
            if constraint in self.parent_constraints:
                message = f"Parent row referenced by {constraint} does not exist"
                raise MissingParent(message) from exc
            raise DatabaseError(str(exc)) from exc
        except psycopg.Error as exc:
            logger.debug("Database error in %s: %s", query.statement.name, exc)
            raise DatabaseError(str(exc)) from exc

    def _run(self, statement: CompiledStatement, **values: Any) -> list[dict[str, Any]]:
        return self._fetch(bind_statement(statement, values))

    def _scope(self, auth: AuthContext) -> dict[str, Any]:
        return {
            bindings.ORGANIZATION_ID: auth.organization_id,
            bindings.ACTOR_IDS: auth.actor_ids,
        }

    def _plan(self, relationship: str) -> ChildPlan:
        plan = self.compiled.child_plans.get(relationship)
        if plan is None:
            raise NotFound(f"{self.compiled.name} has no child collection '{relationship}'")
        return plan

    # ------------------------------------------------------------------
    # Model operations
    # ------------------------------------------------------------------

    def get(self, auth: AuthContext, id: Any, populated: bool = True) -> dict[str, Any]:
        statements = self.compiled.statements
        statement = statements["select_one"]
        if populated and "select_one_populated" in statements:
            statement = statements["select_one_populated"]

        rows = self._run(statement, id=id, **self._scope(auth))
        if not rows:
            raise NotFound(f"{self.compiled.name} {id} not found")
        return rows[0]

    def list(
        self, auth: AuthContext, request: ListRequest, populated: bool = True
    ) -> list[dict[str, Any]]:
        lists = self.compiled.lists
        compiled = lists["list"]
        if populated and "list_populated" in lists:
            compiled = lists["list_populated"]
        query = bind_list(compiled, request, auth.organization_id, auth.actor_ids)
        return self._fetch(query)

    def lookup_permission(self, auth: AuthContext, id: Any = None) -> str | None:
        rows = self._run(
            self.compiled.statements["lookup_object_permissions"], id=id, **self._scope(auth)
        )
        return rows[0]["_permission"] if rows else None

    def create(self, auth: AuthContext, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert the row, then any child collections present in the payload."""
        new_id = uuid.uuid4()
        with self.conn.transaction():
            values = {f.name: payload.get(f.name) for f in self.compiled.model.writable_fields}
            rows = self._run(
                self.compiled.statements["insert"],
                id=new_id,
                organization_id=auth.organization_id,
                **values,
            )
            row = rows[0]
            for rel, plan in self.compiled.child_plans.items():
                children = _child_rows(plan, payload.get(rel))
                if children:
                    # The creator owns the new parent
                    self._upsert_children(plan, auth, new_id, children, is_owner=True)
        logger.debug("Created %s %s", self.compiled.name, new_id)
        return row

    def update(self, auth: AuthContext, id: Any, payload: dict[str, Any]) -> dict[str, Any]:
        """Update the row and replace every child collection named in the payload.

        A collection key that is absent leaves the children untouched; an
        empty list or null deletes them all.
        """
        with self.conn.transaction():
            values = {f.name: payload.get(f.name) for f in self.compiled.model.writable_fields}
            rows = self._run(
                self.compiled.statements["update"], id=id, **self._scope(auth), **values
            )
            if not rows:
                raise NotFound(f"{self.compiled.name} {id} not found")
            is_owner = rows[0][bindings.IS_OWNER]

            for rel, plan in self.compiled.child_plans.items():
                if rel not in payload:
                    continue
                self._replace_children(plan, auth, id, _child_rows(plan, payload[rel]), is_owner)

            return self.get(auth, id)

    def delete(self, auth: AuthContext, id: Any) -> None:
        with self.conn.transaction():
            rows = self._run(self.compiled.statements["delete"], id=id, **self._scope(auth))
        if not rows:
            raise NotFound(f"{self.compiled.name} {id} not found")

    # ------------------------------------------------------------------
    # Child collections
    # ------------------------------------------------------------------

    def _upsert_children(
        self,
        plan: ChildPlan,
        auth: AuthContext,
        parent_id: Any,
        children: list[dict[str, Any]],
        is_owner: bool,
    ) -> list[Any]:
        statement, params = plan.upsert.bind_rows(
            children, is_owner, auth.organization_id, parent_id
        )
        rows = self._fetch(BoundQuery(statement=statement, params=params, page=None))
        return [r["id"] for r in rows]

    def _replace_children(
        self,
        plan: ChildPlan,
        auth: AuthContext,
        parent_id: Any,
        children: list[dict[str, Any]],
        is_owner: bool,
    ) -> None:
        """Upsert ``children`` and delete every other child of the parent."""
        if not children:
            self._run(plan.delete_all, organization_id=auth.organization_id, parent_id=parent_id)
            return
        kept = self._upsert_children(plan, auth, parent_id, children, is_owner)
        self._run(
            plan.delete_removed,
            organization_id=auth.organization_id,
            parent_id=parent_id,
            ids=kept,
        )

    def _parent_tier(self, auth: AuthContext, parent_id: Any, write: bool) -> str:
        """The caller's tier on a visible parent; NotFound when it is hidden."""
        tier = self.get(auth, parent_id, populated=False)["_permission"]
        if write and not can_write_tier(tier):
            raise PermissionDenied(f"Write access to {self.compiled.name} {parent_id} is required")
        return tier

    def list_children(
        self, auth: AuthContext, relationship: str, parent_id: Any, request: ListRequest
    ) -> list[dict[str, Any]]:
        plan = self._plan(relationship)
        self._parent_tier(auth, parent_id, write=False)
        query = bind_list(
            plan.list_with_parent, request, auth.organization_id, auth.actor_ids, parent_id
        )
        return self._fetch(query)

    def get_child(
        self, auth: AuthContext, relationship: str, parent_id: Any, child_id: Any
    ) -> dict[str, Any]:
        plan = self._plan(relationship)
        self._parent_tier(auth, parent_id, write=False)
        rows = self._run(
            plan.select_one_with_parent, id=child_id, parent_id=parent_id, **self._scope(auth)
        )
        if not rows:
            raise NotFound(f"{plan.child.name} {child_id} not found")
        return rows[0]

    def get_single_child(
        self, auth: AuthContext, relationship: str, parent_id: Any
    ) -> dict[str, Any]:
        rows = self.list_children(auth, relationship, parent_id, ListRequest())
        if not rows:
            raise NotFound(f"{relationship} of {self.compiled.name} {parent_id} not found")
        return rows[0]

    def create_child(
        self, auth: AuthContext, relationship: str, parent_id: Any, payload: dict[str, Any]
    ) -> dict[str, Any]:
        plan = self._plan(relationship)
        with self.conn.transaction():
            tier = self._parent_tier(auth, parent_id, write=True)
            values = {f.name: payload.get(f.name) for f in plan.upsert.row_fields}
            rows = self._run(
                plan.insert,
                id=uuid.uuid4(),
                organization_id=auth.organization_id,
                parent_id=parent_id,
                is_owner=is_owner_tier(tier),
                **values,
            )
        return rows[0]

    def update_child(
        self,
        auth: AuthContext,
        relationship: str,
        parent_id: Any,
        child_id: Any,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        plan = self._plan(relationship)
        with self.conn.transaction():
            self._parent_tier(auth, parent_id, write=True)
            values = {f.name: payload.get(f.name) for f in plan.child.writable_fields}
            # The row stays under the parent named by the path
            values[plan.relationship.parent_field] = parent_id
            rows = self._run(
                plan.update_with_parent,
                id=child_id,
                parent_id=parent_id,
                **self._scope(auth),
                **values,
            )
            if not rows:
                raise NotFound(f"{plan.child.name} {child_id} not found")
            return self.get_child(auth, relationship, parent_id, child_id)

    def delete_child(
        self, auth: AuthContext, relationship: str, parent_id: Any, child_id: Any
    ) -> None:
        plan = self._plan(relationship)
        with self.conn.transaction():
            self._parent_tier(auth, parent_id, write=True)
            rows = self._run(
                plan.delete_with_parent, id=child_id, parent_id=parent_id, **self._scope(auth)
            )
        if not rows:
            raise NotFound(f"{plan.child.name} {child_id} not found")

    def upsert_single_child(
        self, auth: AuthContext, relationship: str, parent_id: Any, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Create or replace a one-cardinality child."""
        plan = self._plan(relationship)
        with self.conn.transaction():
            tier = self._parent_tier(auth, parent_id, write=True)
            self._replace_children(
                plan, auth, parent_id, _child_rows(plan, payload), is_owner_tier(tier)
            )
            return self.get_single_child(auth, relationship, parent_id)

    def delete_all_children(self, auth: AuthContext, relationship: str, parent_id: Any) -> None:
        plan = self._plan(relationship)
        with self.conn.transaction():
            self._parent_tier(auth, parent_id, write=True)
            self._run(plan.delete_all, organization_id=auth.organization_id, parent_id=parent_id)


def _child_rows(plan: ChildPlan, value: Any) -> list[dict[str, Any]]:
    """Normalize a payload value to child rows, assigning ids to new ones."""
    if value is None:
        return []
    items = value if plan.relationship.many else [value]
    rows = []
    for item in items:
        row = dict(item)
        if row.get("id") is None:
            row["id"] = uuid.uuid4()
        rows.append(row)
    return rows
