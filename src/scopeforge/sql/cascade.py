"""Relationship cascade planner.

Keeps a parent's child collections consistent with a parent write. A
collection in a payload fully replaces the stored one: rows are upserted,
then every stored child of the same parent that was not just upserted is
deleted.

Owner-only child fields are gated by the caller's ``is_owner`` flag on the
parent (bound as ``$1``), the same way the parent UPDATE gates its own
fields. The ``ON CONFLICT`` update keeps the stored value and a newly
inserted row takes the column default when the caller is not an owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from scopeforge.metadata.catalog import Field, FieldWritePolicy, Model, Relationship
from scopeforge.sql import bindings
from scopeforge.sql.permissions import PermissionCompiler, render_write
from scopeforge.sql.query_builder import CompiledStatement, QueryBuilder
from scopeforge.sql.statements import (
    CompiledList,
    build_delete,
    build_list,
    build_select_one,
    build_update,
    select_columns,
)

logger = logging.getLogger(__name__)

CHILD_ALIAS = "ct"


def parent_constraint_name(child: Model, parent_column: str) -> str:
    """PostgreSQL's default name for the child's foreign key to its parent."""
    return f"{child.table}_{parent_column}_fkey"


def insert_value(f: Field, value: str, is_owner: str) -> str:
    """VALUES entry for a new row; owner-only fields fall back to the column default."""
    if f.write_policy is FieldWritePolicy.ALWAYS:
        return value
    fallback = f.default or "NULL"
    return f"CASE WHEN {is_owner} THEN {value}::{f.sql_type.storage_type} ELSE {fallback} END"


class CompiledUpsert:
    """Child upsert whose VALUES list is rendered per row count.

    Fixed parameters come first: ``is_owner``, ``organization_id`` (unless
    global) and ``parent_id``. Each row then binds its id and the child's
    owner-writable fields other than the parent key.
    """

    def __init__(self, relationship: Relationship, child: Model):
        self.relationship = relationship
        self.child = child
        self.parent_field: Field = child.field(relationship.parent_field)
        self.row_fields: tuple[Field, ...] = tuple(
            f for f in child.writable_fields if f.name != relationship.parent_field
        )
        self.name = "upsert_children" if relationship.many else "upsert_single_child"
        self._variants: dict[int, CompiledStatement] = {}

    @property
    def fixed_columns(self) -> list[str]:
        columns = ["id"]
        if not self.child.is_global:
            columns.append("organization_id")
        columns.append(self.parent_field.column)
        return columns

    @property
    def row_width(self) -> int:
        return len(self.fixed_columns) + len(self.row_fields)

    @property
    def conflict_target(self) -> str:
        if not self.relationship.many and self.relationship.unique:
            return self.parent_field.column
        return "id"

    def _binding(self, name: str, index: int) -> str:
        return f"{name}_{index}" if self.relationship.many else name

    def render(self, row_count: int) -> CompiledStatement:
        if row_count < 1:
            raise ValueError("An upsert needs at least one row")
        if not self.relationship.many and row_count != 1:
            raise ValueError(f"'{self.relationship.name}' holds at most one child")

        statement = self._variants.get(row_count)
        if statement is None:
            statement = self._render(row_count)
            self._variants[row_count] = statement
        return statement

    def _render(self, row_count: int) -> CompiledStatement:
        q = QueryBuilder()
        is_owner = q.bind(bindings.IS_OWNER, "boolean")
        org = None if self.child.is_global else q.bind(bindings.ORGANIZATION_ID, "uuid")
        parent = q.bind(bindings.PARENT_ID, "uuid")

        columns = ["id"] + ([] if org is None else ["organization_id"])
        columns += [f.column for f in self.row_fields] + [self.parent_field.column]

        rows = []
        for i in range(row_count):
            values = [q.bind(self._binding(bindings.ID, i), "uuid")]
            if org is not None:
                values.append(org)
            for f in self.row_fields:
                value = q.bind(self._binding(f.name, i), f.sql_type.name)
                values.append(insert_value(f, value, is_owner))
            values.append(parent)
            rows.append(f"({', '.join(values)})")

        assignments = []
        for f in self.row_fields:
            value = render_write(
                f.write_policy, f"EXCLUDED.{f.column}", f"{CHILD_ALIAS}.{f.column}", is_owner
            )
            assignments.append(f"{f.column} = {value}")
        assignments.append("updated_at = now()")

        scope = [f"{CHILD_ALIAS}.{self.parent_field.column} = {parent}"]
        if org is not None:
            scope.insert(0, f"{CHILD_ALIAS}.organization_id = {org}")

        q.push(f"INSERT INTO {self.child.qualified_table} AS {CHILD_ALIAS} ")
        q.push(f"({', '.join(columns)}) VALUES ").push(", ".join(rows))
        q.push(f" ON CONFLICT ({self.conflict_target}) DO UPDATE SET ")
        q.push(", ".join(assignments))
        q.push(" WHERE ").push(" AND ".join(scope))
        q.push(f" RETURNING {CHILD_ALIAS}.id")

        return q.finish(
            self.name, f"Upsert {self.relationship.name} of one parent ({row_count} row(s))"
        )

    def bind_rows(
        self,
        rows: Sequence[Mapping[str, Any]],
        is_owner: bool,
        organization_id: Any,
        parent_id: Any,
    ) -> tuple[CompiledStatement, list[Any]]:
        """Pick the variant for ``rows`` and order its values.

        Each row must carry an ``id``; absent field values bind as NULL.
        """
        statement = self.render(len(rows))
        values: dict[str, Any] = {
            bindings.IS_OWNER: is_owner,
            bindings.ORGANIZATION_ID: organization_id,
            bindings.PARENT_ID: parent_id,
        }
        for i, row in enumerate(rows):
            values[self._binding(bindings.ID, i)] = row[bindings.ID]
            for f in self.row_fields:
                values[self._binding(f.name, i)] = row.get(f.name)
        return statement, statement.bind(values)

    def to_contract(self) -> dict[str, Any]:
        return {
            **self.render(1).to_contract(),
            "row_width": self.row_width,
            "conflict_target": self.conflict_target,
        }


def build_child_insert(child: Model, parent_field: Field) -> CompiledStatement:
    """Insert one child under a parent the caller can write.

    The parent key is always bound, even when it is not a writable field.
    The returned row is labelled with the caller's tier on the parent.
    """
    q = QueryBuilder()
    is_owner = q.bind(bindings.IS_OWNER, "boolean")
    columns = ["id"]
    values = [q.bind(bindings.ID, "uuid")]
    if not child.is_global:
        columns.append("organization_id")
        values.append(q.bind(bindings.ORGANIZATION_ID, "uuid"))
    for f in child.writable_fields:
        if f.name == parent_field.name:
            continue
        columns.append(f.column)
        values.append(insert_value(f, q.bind(f.name, f.sql_type.name), is_owner))
    columns.append(parent_field.column)
    values.append(q.bind(bindings.PARENT_ID, "uuid"))

    label = f"CASE WHEN {is_owner} THEN 'owner' ELSE 'write' END AS _permission"
    q.push(f"INSERT INTO {child.qualified_table} AS {CHILD_ALIAS} ({', '.join(columns)}) ")
    q.push(f"VALUES ({', '.join(values)}) ")
    q.push("RETURNING ").push(", ".join(select_columns(child, CHILD_ALIAS) + [label]))

    return q.finish("insert", f"Create a {child.name} under a parent the actor can write")


def _scoped_delete(child: Model, parent_column: str, keep_ids: bool) -> CompiledStatement:
    q = QueryBuilder()
    conditions = []
    if not child.is_global:
        conditions.append(
            f"{CHILD_ALIAS}.organization_id = {q.bind(bindings.ORGANIZATION_ID, 'uuid')}"
        )
    conditions.append(f"{CHILD_ALIAS}.{parent_column} = {q.bind(bindings.PARENT_ID, 'uuid')}")
    if keep_ids:
        conditions.append(f"{CHILD_ALIAS}.id <> ALL({q.bind(bindings.IDS, 'uuid[]')})")

    q.push(f"DELETE FROM {child.qualified_table} AS {CHILD_ALIAS} WHERE ")
    q.push(" AND ".join(conditions))

    if keep_ids:
        return q.finish(
            "delete_removed_children", f"Delete {child.name} rows missing from the payload"
        )
    return q.finish("delete_all_children", f"Delete every {child.name} of one parent")


@dataclass
class ChildPlan:
    """Every statement needed to maintain one relationship."""

    relationship: Relationship
    parent: Model
    child: Model
    parent_column: str
    parent_constraint: str
    insert: CompiledStatement
    upsert: CompiledUpsert
    delete_removed: CompiledStatement
    delete_all: CompiledStatement
    list_with_parent: CompiledList
    select_one_with_parent: CompiledStatement
    update_with_parent: CompiledStatement
    delete_with_parent: CompiledStatement

    @property
    def statements(self) -> dict[str, CompiledStatement]:
        """Fixed-text statements keyed by their name."""
        return {
            s.name: s
            for s in (
                self.insert,
                self.delete_removed,
                self.delete_all,
                self.select_one_with_parent,
                self.update_with_parent,
                self.delete_with_parent,
            )
        }


def plan_child(
    parent: Model,
    relationship: Relationship,
    child: Model,
    auth_schema: str = "public",
) -> ChildPlan:
    """Compile the cascade and nested-route statements for one relationship."""
    parent_column = child.field(relationship.parent_field).column
    permissions = PermissionCompiler(child, auth_schema)
    logger.debug("Planning %s.%s -> %s", parent.name, relationship.name, child.name)

    return ChildPlan(
        relationship=relationship,
        parent=parent,
        child=child,
        parent_column=parent_column,
        parent_constraint=parent_constraint_name(child, parent_column),
        insert=build_child_insert(child, child.field(relationship.parent_field)),
        upsert=CompiledUpsert(relationship, child),
        delete_removed=_scoped_delete(child, parent_column, keep_ids=True),
        delete_all=_scoped_delete(child, parent_column, keep_ids=False),
        list_with_parent=build_list(
            child, permissions, parent_column=parent_column, name="list_with_parent"
        ),
        select_one_with_parent=build_select_one(
            child, permissions, parent_column=parent_column, name="select_one_with_parent"
        ),
        update_with_parent=build_update(
            child, permissions, parent_column=parent_column, name="update_one_with_parent"
        ),
        delete_with_parent=build_delete(
            child, permissions, parent_column=parent_column, name="delete_with_parent"
        ),
    )
