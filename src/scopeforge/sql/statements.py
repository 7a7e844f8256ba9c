"""Statement assembler.

Stitches permission, filter, order-by and population fragments into final
SELECT / INSERT / UPDATE / DELETE templates. Each builder pre-binds the
statement's fixed parameters in contract order, so fragments rendered later
reuse those positions.
"""

from __future__ import annotations

from scopeforge.errors import InvalidFilterOrOrder
from scopeforge.metadata.catalog import Field, Model, OrderBy, Pagination
from scopeforge.sql import bindings
from scopeforge.sql.filters import FilterPredicate, OrderByCatalog, compile_filters
from scopeforge.sql.permissions import PermissionCompiler, render_write
from scopeforge.sql.population import population_selects
from scopeforge.sql.query_builder import (
    CompiledStatement,
    Param,
    ParamCursor,
    QueryBuilder,
)

ALIAS = "tb"


def select_column(f: Field, alias: str = ALIAS) -> str:
    if f.column == f.name:
        return f"{alias}.{f.column}"
    return f'{alias}.{f.column} AS "{f.name}"'


def select_columns(model: Model, alias: str = ALIAS) -> list[str]:
    """Readable columns; never-read fields are left out."""
    return [select_column(f, alias) for f in model.readable_fields]


def _bind_scope(
    cursor: ParamCursor, model: Model, with_id: bool = True, parent_column: str | None = None
) -> tuple[str | None, list[str]]:
    """Bind id, parent id and organization in contract order.

    Returns the id placeholder and the tenant/identity conditions.
    """
    conditions = []
    id_ref = None
    if with_id:
        id_ref = cursor.bind(bindings.ID, "uuid")
        conditions.append(f"{ALIAS}.id = {id_ref}")
    if parent_column:
        conditions.append(f"{ALIAS}.{parent_column} = {cursor.bind(bindings.PARENT_ID, 'uuid')}")
    if not model.is_global:
        conditions.append(
            f"{ALIAS}.organization_id = {cursor.bind(bindings.ORGANIZATION_ID, 'uuid')}"
        )
    return id_ref, conditions


def build_select_one(
    model: Model,
    permissions: PermissionCompiler,
    children: dict[str, Model] | None = None,
    parent_column: str | None = None,
    name: str = "select_one",
) -> CompiledStatement:
    """Fetch one row with its ``_permission`` label, optionally populated."""
    q = QueryBuilder()
    id_ref, conditions = _bind_scope(q.cursor, model, parent_column=parent_column)
    q.bind(bindings.ACTOR_IDS, "uuid[]")

    columns = select_columns(model)
    if children is not None:
        columns += population_selects(model, children, q.cursor, on_list=False)
    columns.append("perm._permission")

    q.push("SELECT ").push(", ".join(columns))
    q.push(f" FROM {model.qualified_table} {ALIAS} ")
    q.push(permissions.label_join(q.cursor, object_ref=id_ref))
    q.push(" WHERE ").push(" AND ".join(conditions))

    return q.finish(name, f"Fetch one {model.name} visible to the actor")


class CompiledList:
    """A list query whose text is rendered per (filter set, order-by) choice.

    The fixed prefix (tenant, actor, paging and parent bindings) has stable
    positions; active filters bind after it in catalog order. Each distinct
    combination renders once and is memoized.
    """

    def __init__(
        self,
        name: str,
        model: Model,
        head: str,
        conditions: list[str],
        params: tuple[Param, ...],
        pagination: Pagination | None,
        description: str = "",
    ):
        self.name = name
        self.model = model
        self.head = head
        self.conditions = conditions
        self.params = params
        self.pagination = pagination
        self.description = description
        self.filters: dict[str, FilterPredicate] = compile_filters(model)
        self.order_by = OrderByCatalog(model)
        self._variants: dict[tuple[frozenset[str], OrderBy], CompiledStatement] = {}

    def render(
        self, active_filters: frozenset[str] | set[str] = frozenset(), order: OrderBy | None = None
    ) -> CompiledStatement:
        active = frozenset(active_filters)
        unknown = active - self.filters.keys()
        if unknown:
            raise InvalidFilterOrOrder(f"Unknown filter(s): {', '.join(sorted(unknown))}")
        order = order or self.order_by.default

        key = (active, order)
        statement = self._variants.get(key)
        if statement is None:
            statement = self._render(active, order)
            self._variants[key] = statement
        return statement

    def _render(self, active: frozenset[str], order: OrderBy) -> CompiledStatement:
        q = QueryBuilder(ParamCursor.from_params(self.params))
        q.push(self.head)

        conditions = list(self.conditions)
        for key, predicate in self.filters.items():
            if key in active:
                conditions.append(predicate.render(q.cursor))
        if conditions:
            q.push(" WHERE ").push(" AND ".join(conditions))

        q.push(" ").push(self.order_by.render(order))
        if self.pagination is not None:
            limit = q.bind(bindings.LIMIT, "int")
            offset = q.bind(bindings.OFFSET, "int")
            q.push(f" LIMIT {limit} OFFSET {offset}")

        return q.finish(self.name, self.description)

    @property
    def cached_variants(self) -> int:
        return len(self._variants)

    def to_contract(self) -> dict:
        base = self.render()
        return {
            **base.to_contract(),
            "filters": {k: p.param_type for k, p in self.filters.items()},
            "order_by": self.order_by.choices,
            "default_order_by": str(self.order_by.default),
            "paginated": self.pagination is not None,
        }


def build_list(
    model: Model,
    permissions: PermissionCompiler,
    children: dict[str, Model] | None = None,
    parent_column: str | None = None,
    name: str = "list",
) -> CompiledList:
    """List rows visible to the actor, filtered, ordered and paginated."""
    cursor = ParamCursor()
    conditions = []
    if not model.is_global:
        conditions.append(
            f"{ALIAS}.organization_id = {cursor.bind(bindings.ORGANIZATION_ID, 'uuid')}"
        )
    cursor.bind(bindings.ACTOR_IDS, "uuid[]")
    if model.pagination is not None:
        cursor.bind(bindings.LIMIT, "int")
        cursor.bind(bindings.OFFSET, "int")
    if parent_column:
        conditions.append(f"{ALIAS}.{parent_column} = {cursor.bind(bindings.PARENT_ID, 'uuid')}")

    columns = select_columns(model)
    if children is not None:
        columns += population_selects(model, children, cursor, on_list=True)
    columns.append("perm._permission")

    head = (
        f"SELECT {', '.join(columns)} FROM {model.qualified_table} {ALIAS} "
        f"{permissions.label_join(cursor, object_ref=f'{ALIAS}.id')}"
    )
    return CompiledList(
        name=name,
        model=model,
        head=head,
        conditions=conditions,
        params=cursor.params,
        pagination=model.pagination,
        description=f"List {model.name} rows visible to the actor",
    )


def build_insert(model: Model) -> CompiledStatement:
    """Insert a row. The route gate has already checked the create permission."""
    q = QueryBuilder()
    columns = ["id"]
    values = [q.bind(bindings.ID, "uuid")]
    if not model.is_global:
        columns.append("organization_id")
        values.append(q.bind(bindings.ORGANIZATION_ID, "uuid"))
    for f in model.writable_fields:
        columns.append(f.column)
        values.append(q.bind(f.name, f.sql_type.name))

    q.push(f"INSERT INTO {model.qualified_table} AS {ALIAS} ({', '.join(columns)}) ")
    q.push(f"VALUES ({', '.join(values)}) ")
    q.push("RETURNING ").push(", ".join(select_columns(model) + ["'owner' AS _permission"]))

    return q.finish("insert", f"Create a {model.name}; the creator owns the new row")


def build_update(
    model: Model,
    permissions: PermissionCompiler,
    parent_column: str | None = None,
    name: str = "update",
) -> CompiledStatement:
    """Update every owner-writable field, gating owner-only fields on is_owner.

    Returns ``is_owner`` so child upserts can apply the same gate; no row
    means the target is absent or not writable by the actor.
    """
    q = QueryBuilder()
    id_ref, conditions = _bind_scope(q.cursor, model, parent_column=parent_column)
    q.bind(bindings.ACTOR_IDS, "uuid[]")

    assignments = []
    for f in model.writable_fields:
        new = q.bind(f.name, f.sql_type.name)
        value = render_write(f.write_policy, new, f"{ALIAS}.{f.column}")
        assignments.append(f"{f.column} = {value}")
    assignments.append("updated_at = now()")

    q.push(permissions.owner_user_cte(q.cursor, object_ref=id_ref))
    q.push(f" UPDATE {model.qualified_table} AS {ALIAS} SET ").push(", ".join(assignments))
    q.push(" FROM permissions WHERE ").push(" AND ".join(conditions))
    q.push(" AND (permissions.is_owner OR permissions.is_user)")
    q.push(" RETURNING permissions.is_owner AS is_owner")

    return q.finish(name, f"Update a {model.name} the actor can write")


def build_delete(
    model: Model,
    permissions: PermissionCompiler,
    parent_column: str | None = None,
    name: str = "delete",
) -> CompiledStatement:
    q = QueryBuilder()
    id_ref, conditions = _bind_scope(q.cursor, model, parent_column=parent_column)
    q.bind(bindings.ACTOR_IDS, "uuid[]")
    conditions.append(
        permissions.existence_check(q.cursor, permissions.write_permissions, object_ref=id_ref)
    )

    q.push(f"DELETE FROM {model.qualified_table} AS {ALIAS} WHERE ")
    q.push(" AND ".join(conditions))
    q.push(f" RETURNING {ALIAS}.id")

    return q.finish(name, f"Delete a {model.name} the actor can write")


def build_lookup_object_permissions(
    model: Model, permissions: PermissionCompiler
) -> CompiledStatement:
    """The actor's tier label on a model (or one object), NULL when none."""
    q = QueryBuilder()
    object_ref = q.bind(bindings.ID, "uuid") if permissions.object_scoped else None
    if not model.is_global:
        q.bind(bindings.ORGANIZATION_ID, "uuid")
    q.bind(bindings.ACTOR_IDS, "uuid[]")
    q.push(permissions.label_lookup(q.cursor, object_ref=object_ref))
    return q.finish("lookup_object_permissions", f"Resolve the actor's tier on {model.name}")
