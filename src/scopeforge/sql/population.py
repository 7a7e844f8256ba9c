"""Correlated sub-selects that embed child rows into GET and LIST results."""

from __future__ import annotations

from scopeforge.core.naming import to_snake_case
from scopeforge.metadata.catalog import Model, PopulateMode, Relationship
from scopeforge.sql import bindings
from scopeforge.sql.query_builder import ParamCursor, sql_string


def populate_key(rel: Relationship, mode: PopulateMode) -> str:
    """Result column holding a populated relationship."""
    if mode is PopulateMode.DATA:
        return rel.name
    child = to_snake_case(rel.child_model)
    return f"{child}_ids" if rel.many else f"{child}_id"


def _json_object(child: Model, alias: str) -> str:
    pairs = []
    for f in child.readable_fields:
        pairs.append(f"{sql_string(f.name)}, {alias}.{f.column}")
    pairs.append("'_permission', perm._permission")
    return f"JSONB_BUILD_OBJECT({', '.join(pairs)})"


def population_select(
    child: Model,
    rel: Relationship,
    mode: PopulateMode,
    cursor: ParamCursor,
    parent_ref: str = "tb.id",
) -> str:
    """Render ``(SELECT ...) AS "key"`` for one relationship.

    Many children aggregate into an array that is empty, never NULL, when the
    parent has none. One children use ``LIMIT 1`` and surface as NULL.
    """
    alias = "ct"
    parent_field = child.field(rel.parent_field)
    conditions = [f"{alias}.{parent_field.column} = {parent_ref}"]
    if not child.is_global:
        conditions.append(
            f"{alias}.organization_id = {cursor.bind(bindings.ORGANIZATION_ID, 'uuid')}"
        )
    source = f"FROM {child.qualified_table} {alias} WHERE {' AND '.join(conditions)}"

    if mode is PopulateMode.DATA:
        value, empty = _json_object(child, alias), "ARRAY[]::jsonb[]"
    else:
        value, empty = f"{alias}.id", "ARRAY[]::uuid[]"

    if rel.many:
        order = f"ORDER BY {alias}.created_at, {alias}.id"
        body = f"SELECT COALESCE(ARRAY_AGG({value} {order}), {empty}) {source}"
    else:
        body = f"SELECT {value} {source} LIMIT 1"

    return f'({body}) AS "{populate_key(rel, mode)}"'


def population_selects(
    parent: Model,
    children: dict[str, Model],
    cursor: ParamCursor,
    on_list: bool,
) -> list[str]:
    """Sub-selects for every relationship populated in the given context."""
    result = []
    for rel in parent.children:
        mode = rel.populate_on_list if on_list else rel.populate_on_get
        if mode is PopulateMode.NONE:
            continue
        result.append(population_select(children[rel.child_model], rel, mode, cursor))
    return result
