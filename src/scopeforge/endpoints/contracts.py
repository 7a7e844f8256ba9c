"""Route contracts and the per-tier field capability table.

A thin projection of compiled models for HTTP bindings and type generators.
Object-scoped routes cannot be gated on the caller's model-wide
permissions, so their tier check happens row by row in SQL.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from scopeforge.metadata.catalog import AuthScope, Model
from scopeforge.sql.permissions import PermissionCompiler


@dataclass(frozen=True)
class RouteContract:
    method: str
    path: str
    operation: str
    statement: str
    required_permissions: tuple[str, ...]
    object_scope: bool
    relationship: str | None = None
    parent_match: str | None = None  # child column that must equal {id}

    def to_dict(self) -> dict:
        d = asdict(self)
        d["required_permissions"] = list(self.required_permissions)
        return d


@dataclass(frozen=True)
class FieldCapability:
    name: str
    type: str
    nullable: bool
    owner_read: bool
    user_read: bool
    owner_write: bool
    user_write: bool

    def readable_at(self, tier: str) -> bool:
        """Whether a row labelled ``tier`` exposes this field."""
        if tier == "owner":
            return self.owner_read
        return self.user_read


def capability_table(model: Model) -> list[FieldCapability]:
    return [
        FieldCapability(
            name=f.name,
            type=f.sql_type.name,
            nullable=f.nullable,
            owner_read=f.owner_read,
            user_read=f.user_read,
            owner_write=f.owner_write,
            user_write=f.user_write,
        )
        for f in model.fields
    ]


def base_path(model: Model) -> str:
    return "/" + model.table.replace("_", "-")


def emit_routes(
    model: Model,
    children: dict[str, Model],
    auth_schema: str = "public",
    populated_get: bool = False,
    populated_list: bool = False,
) -> list[RouteContract]:
    """Routes for a model and its nested child collections."""
    perms = PermissionCompiler(model, auth_schema)
    object_scope = model.auth_scope is AuthScope.OBJECT
    root = base_path(model)
    item = f"{root}/{{id}}"

    routes = [
        RouteContract(
            "GET", root, "list",
            "list_populated" if populated_list else "list",
            perms.read_permissions, object_scope,
        ),
        RouteContract(
            "GET", item, "get",
            "select_one_populated" if populated_get else "select_one",
            perms.read_permissions, object_scope,
        ),
        # Creation is gated on the model-wide create permission even for
        # object-scoped models, since the object does not exist yet.
        RouteContract("POST", root, "create", "insert", perms.create_permissions, False),
        RouteContract("PUT", item, "update", "update", perms.write_permissions, object_scope),
        RouteContract("DELETE", item, "delete", "delete", perms.write_permissions, object_scope),
    ]

    for rel in model.children:
        child = children[rel.child_model]
        parent_match = child.field(rel.parent_field).column
        nested = f"{item}/{rel.name.replace('_', '-')}"
        prefix = f"{rel.name}/"

        if rel.many:
            child_item = f"{nested}/{{child_id}}"
            specs = [
                ("GET", nested, "child_list", "list_with_parent", perms.read_permissions),
                ("POST", nested, "child_create", "insert", perms.write_permissions),
                ("GET", child_item, "child_get", "select_one_with_parent", perms.read_permissions),
                ("PUT", child_item, "child_update", "update_one_with_parent",
                 perms.write_permissions),
                ("DELETE", child_item, "child_delete", "delete_with_parent",
                 perms.write_permissions),
            ]
        else:
            specs = [
                ("GET", nested, "child_get", "list_with_parent", perms.read_permissions),
                ("PUT", nested, "child_upsert", "upsert_single_child", perms.write_permissions),
                ("DELETE", nested, "child_delete", "delete_all_children",
                 perms.write_permissions),
            ]

        for method, path, operation, statement, required in specs:
            routes.append(
                RouteContract(
                    method=method,
                    path=path,
                    operation=operation,
                    statement=prefix + statement,
                    required_permissions=required,
                    object_scope=object_scope,
                    relationship=rel.name,
                    parent_match=parent_match,
                )
            )

    return routes
