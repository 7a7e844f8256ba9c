"""Normalize model declarations into the canonical catalog.

Every downstream compiler reads the frozen records defined here. Schema
problems are never coerced away: each one becomes a :class:`SchemaIssue`
and the offending model is left out of the catalog, while the remaining
models are still normalized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Iterator

from scopeforge.core.naming import is_field_name, is_sql_identifier, pluralize, to_snake_case
from scopeforge.core.types import SqlType, get_sql_type
from scopeforge.errors import SchemaIssue
from scopeforge.metadata.loader import ChildDeclaration, FieldDeclaration, ModelDeclaration

logger = logging.getLogger(__name__)

ORG_ADMIN = "org_admin"

# Names used for bindings and list-request keys; fields may not shadow them.
RESERVED_NAMES = {
    "actor_ids",
    "ids",
    "is_owner",
    "limit",
    "offset",
    "order_by",
    "page",
    "parent_id",
    "per_page",
    "_permission",
}


class FilterClass(Enum):
    NONE = "none"
    EXACT = "exact"
    RANGE = "range"


class SortClass(Enum):
    NONE = "none"
    ASCENDING_ONLY = "ascending_only"
    DESCENDING_ONLY = "descending_only"
    BOTH = "both"

    def allows(self, descending: bool) -> bool:
        if self is SortClass.NONE:
            return False
        if self is SortClass.ASCENDING_ONLY:
            return not descending
        if self is SortClass.DESCENDING_ONLY:
            return descending
        return True


class Access(Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"
    READ_WRITE = "read_write"

    @property
    def can_read(self) -> bool:
        return self in (Access.READ, Access.READ_WRITE)

    @property
    def can_write(self) -> bool:
        return self in (Access.WRITE, Access.READ_WRITE)


class AuthScope(Enum):
    MODEL = "model"
    OBJECT = "object"


class Cardinality(Enum):
    ONE = "one"
    MANY = "many"


class PopulateMode(Enum):
    NONE = "none"
    ID = "id"
    DATA = "data"


class FieldWritePolicy(Enum):
    """How an UPDATE treats a field for callers that passed the write gate."""

    ALWAYS = "always"
    OWNER_ONLY = "owner_only"


@dataclass(frozen=True)
class Field:
    name: str
    column: str
    sql_type: SqlType
    nullable: bool = False
    unique: bool = False
    default: str = ""
    filter_class: FilterClass = FilterClass.NONE
    sort_class: SortClass = SortClass.NONE
    sort_key: str = ""
    owner_read: bool = True
    user_read: bool = True
    owner_write: bool = False
    user_write: bool = False
    fixed: bool = False  # Standard columns managed by the compiler

    @property
    def never_read(self) -> bool:
        return not self.owner_read and not self.user_read

    @property
    def write_policy(self) -> FieldWritePolicy | None:
        """None when the field is not writable at all."""
        if not self.owner_write:
            return None
        return FieldWritePolicy.ALWAYS if self.user_write else FieldWritePolicy.OWNER_ONLY

    @property
    def filter_keys(self) -> tuple[str, ...]:
        """Request keys this field answers to when listing."""
        if self.filter_class is FilterClass.EXACT:
            return (self.name,)
        if self.filter_class is FilterClass.RANGE:
            return (f"{self.name}_lte", f"{self.name}_gte")
        return ()


@dataclass(frozen=True)
class Pagination:
    default_per_page: int
    max_per_page: int


@dataclass(frozen=True)
class PermissionNames:
    read: str
    write: str
    owner: str
    create: str


@dataclass(frozen=True)
class OrderBy:
    key: str
    descending: bool = False

    def __str__(self) -> str:
        return f"-{self.key}" if self.descending else self.key


@dataclass(frozen=True)
class Relationship:
    """A parent's child collection."""

    name: str
    child_model: str
    parent_field: str  # Field name on the child
    cardinality: Cardinality = Cardinality.MANY
    unique: bool = False
    populate_on_get: PopulateMode = PopulateMode.NONE
    populate_on_list: PopulateMode = PopulateMode.NONE

    @property
    def many(self) -> bool:
        return self.cardinality is Cardinality.MANY


@dataclass(frozen=True)
class Model:
    name: str
    table: str
    schema: str
    is_global: bool
    auth_scope: AuthScope
    permissions: PermissionNames
    pagination: Pagination | None  # None when disabled
    default_order: OrderBy
    fields: tuple[Field, ...]
    children: tuple[Relationship, ...] = ()

    @property
    def qualified_table(self) -> str:
        return f"{self.schema}.{self.table}"

    @property
    def snake_name(self) -> str:
        return to_snake_case(self.name)

    def field(self, name: str) -> Field | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def readable_fields(self) -> tuple[Field, ...]:
        return tuple(f for f in self.fields if not f.never_read)

    @property
    def writable_fields(self) -> tuple[Field, ...]:
        """Owner-writable fields in catalog order."""
        return tuple(f for f in self.fields if f.owner_write)

    @property
    def filterable_fields(self) -> tuple[Field, ...]:
        return tuple(f for f in self.fields if f.filter_class is not FilterClass.NONE)

    @property
    def sortable_fields(self) -> tuple[Field, ...]:
        return tuple(f for f in self.fields if f.sort_class is not SortClass.NONE)

    @property
    def has_filterable_fields(self) -> bool:
        return any(f.filter_class is not FilterClass.NONE for f in self.fields)

    @property
    def owner_write_field_count(self) -> int:
        return len(self.writable_fields)

    def child(self, name: str) -> Relationship | None:
        for rel in self.children:
            if rel.name == name:
                return rel
        return None


class Catalog:
    """The set of successfully normalized models, with parent lookups."""

    def __init__(self, models: dict[str, Model]):
        self.models = models

    def __contains__(self, name: str) -> bool:
        return name in self.models

    def __iter__(self) -> Iterator[Model]:
        for name in sorted(self.models):
            yield self.models[name]

    def __len__(self) -> int:
        return len(self.models)

    def get(self, name: str) -> Model:
        return self.models[name]

    def parents_of(self, child_name: str) -> list[tuple[Model, Relationship]]:
        """All (parent, relationship) pairs whose child is ``child_name``."""
        result = []
        for parent in self:
            for rel in parent.children:
                if rel.child_model == child_name:
                    result.append((parent, rel))
        return result


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _enum_value(enum_cls, raw, default, issues, model, path):
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        issues.append(
            SchemaIssue(model=model, path=path, message=f"'{raw}' is not one of: {allowed}")
        )
        return default


def _standard_fields(is_global: bool) -> list[Field]:
    """The fixed columns every model carries ahead of its declared fields."""
    uuid_type = get_sql_type("uuid")
    timestamp_type = get_sql_type("timestamp")
    fields = [
        Field(
            name="id",
            column="id",
            sql_type=uuid_type,
            fixed=True,
        )
    ]
    if not is_global:
        fields.append(
            Field(name="organization_id", column="organization_id", sql_type=uuid_type, fixed=True)
        )
    for name in ("updated_at", "created_at"):
        fields.append(
            Field(
                name=name,
                column=name,
                sql_type=timestamp_type,
                default="now()",
                sort_class=SortClass.BOTH,
                sort_key=name,
                fixed=True,
            )
        )
    return fields


def _normalize_field(
    decl: FieldDeclaration, index: int, model: str, issues: list[SchemaIssue]
) -> Field | None:
    path = f"fields[{index}]"
    start = len(issues)

    if not is_field_name(decl.name):
        issues.append(SchemaIssue(model, f"'{decl.name}' is not a valid field name", path))
    elif decl.name in RESERVED_NAMES:
        issues.append(SchemaIssue(model, f"Field name '{decl.name}' is reserved", path))

    column = decl.column or to_snake_case(decl.name)
    if not is_sql_identifier(column):
        issues.append(
            SchemaIssue(model, f"'{column}' is not a valid SQL column name", f"{path}.column")
        )

    sql_type = get_sql_type(decl.type)
    if sql_type is None:
        issues.append(SchemaIssue(model, f"Unknown field type '{decl.type}'", f"{path}.type"))

    filter_class = _enum_value(
        FilterClass, decl.filterable, FilterClass.NONE, issues, model, f"{path}.filterable"
    )
    sort_class = _enum_value(
        SortClass, decl.sortable, SortClass.NONE, issues, model, f"{path}.sortable"
    )
    owner_access = _enum_value(
        Access, decl.owner_access, Access.READ_WRITE, issues, model, f"{path}.ownerAccess"
    )
    user_access = _enum_value(
        Access, decl.user_access, Access.READ_WRITE, issues, model, f"{path}.userAccess"
    )

    if user_access.can_write and not owner_access.can_write:
        issues.append(
            SchemaIssue(
                model,
                f"Field '{decl.name}' is writable by users but not by owners",
                f"{path}.ownerAccess",
            )
        )

    if len(issues) > start:
        return None

    return Field(
        name=decl.name,
        column=column,
        sql_type=sql_type,
        nullable=decl.nullable,
        unique=decl.unique,
        default=decl.default,
        filter_class=filter_class,
        sort_class=sort_class,
        sort_key=(decl.sort_key or decl.name) if sort_class is not SortClass.NONE else "",
        # Owners can always read what users can read
        owner_read=owner_access.can_read or user_access.can_read,
        user_read=user_access.can_read,
        owner_write=owner_access.can_write,
        user_write=user_access.can_write,
    )


def _check_field_catalog(fields: list[Field], model: str, issues: list[SchemaIssue]) -> None:
    names: set[str] = set()
    columns: set[str] = set()
    sort_keys: dict[str, str] = {}
    filter_keys: dict[str, str] = {}

    for f in fields:
        if f.name in names:
            issues.append(SchemaIssue(model, f"Duplicate field name '{f.name}'"))
        names.add(f.name)

        if f.column in columns:
            issues.append(SchemaIssue(model, f"Duplicate column name '{f.column}'"))
        columns.add(f.column)

        if f.sort_class is not SortClass.NONE:
            if f.sort_key in sort_keys:
                issues.append(
                    SchemaIssue(
                        model,
                        f"Sort key '{f.sort_key}' is used by both "
                        f"'{sort_keys[f.sort_key]}' and '{f.name}'",
                    )
                )
            sort_keys[f.sort_key] = f.name

        for key in f.filter_keys:
            if key in filter_keys:
                issues.append(
                    SchemaIssue(
                        model,
                        f"Filter key '{key}' is used by both '{filter_keys[key]}' and '{f.name}'",
                    )
                )
            filter_keys[key] = f.name


def _normalize_pagination(decl: ModelDeclaration, issues: list[SchemaIssue]) -> Pagination | None:
    p = decl.pagination
    if p.disabled:
        return None
    if not isinstance(p.max_per_page, int) or p.max_per_page < 1:
        issues.append(SchemaIssue(decl.name, "maxPerPage must be at least 1", "pagination"))
        return None
    if not isinstance(p.default_per_page, int) or not 1 <= p.default_per_page <= p.max_per_page:
        issues.append(
            SchemaIssue(
                decl.name, "defaultPerPage must be between 1 and maxPerPage", "pagination"
            )
        )
        return None
    return Pagination(default_per_page=p.default_per_page, max_per_page=p.max_per_page)


def _normalize_default_order(
    decl: ModelDeclaration, fields: list[Field], issues: list[SchemaIssue]
) -> OrderBy:
    raw = decl.default_sort or "-updated_at"
    descending = raw.startswith("-")
    key = raw[1:] if descending else raw
    order = OrderBy(key=key, descending=descending)

    by_key = {f.sort_key: f for f in fields if f.sort_class is not SortClass.NONE}
    target = by_key.get(key)
    if target is None:
        issues.append(
            SchemaIssue(decl.name, f"Default sort '{raw}' is not a sortable field", "defaultSort")
        )
    elif not target.sort_class.allows(descending):
        issues.append(
            SchemaIssue(
                decl.name,
                f"Default sort '{raw}' uses a direction '{target.name}' does not allow",
                "defaultSort",
            )
        )
    return order


def _normalize_permissions(decl: ModelDeclaration, issues: list[SchemaIssue]) -> PermissionNames:
    unknown = set(decl.permissions) - {"read", "write", "owner", "create"}
    for key in sorted(unknown):
        issues.append(SchemaIssue(decl.name, f"Unknown permission key '{key}'", "permissions"))

    owner = decl.permissions.get("owner", f"{decl.name}::owner")
    return PermissionNames(
        read=decl.permissions.get("read", f"{decl.name}::read"),
        write=decl.permissions.get("write", f"{decl.name}::write"),
        owner=owner,
        create=decl.permissions.get("create", owner),
    )


def _normalize_child(
    decl: ChildDeclaration, index: int, parent: ModelDeclaration, issues: list[SchemaIssue]
) -> Relationship | None:
    path = f"children[{index}]"
    start = len(issues)

    cardinality = _enum_value(
        Cardinality, decl.cardinality, Cardinality.MANY, issues, parent.name,
        f"{path}.cardinality",
    )
    on_get = _enum_value(
        PopulateMode, decl.populate_on_get, PopulateMode.NONE, issues, parent.name,
        f"{path}.populateOnGet",
    )
    on_list = _enum_value(
        PopulateMode, decl.populate_on_list, PopulateMode.NONE, issues, parent.name,
        f"{path}.populateOnList",
    )

    child_snake = to_snake_case(decl.model)
    if decl.name:
        name = decl.name
    elif cardinality is Cardinality.MANY:
        name = pluralize(child_snake)
    else:
        name = child_snake

    if not is_sql_identifier(name):
        issues.append(SchemaIssue(parent.name, f"'{name}' is not a valid child name", path))

    if len(issues) > start:
        return None

    return Relationship(
        name=name,
        child_model=decl.model,
        parent_field=decl.parent_field or f"{to_snake_case(parent.name)}_id",
        cardinality=cardinality,
        populate_on_get=on_get,
        populate_on_list=on_list,
    )


def normalize_model(decl: ModelDeclaration) -> tuple[Model | None, list[SchemaIssue]]:
    """Normalize one declaration without resolving its children's models."""
    issues: list[SchemaIssue] = []

    if not is_field_name(decl.name):
        issues.append(SchemaIssue(decl.name, f"'{decl.name}' is not a valid model name"))

    table = decl.table or pluralize(to_snake_case(decl.name))
    if not is_sql_identifier(table):
        issues.append(SchemaIssue(decl.name, f"'{table}' is not a valid table name", "table"))
    if not is_sql_identifier(decl.schema):
        issues.append(
            SchemaIssue(decl.name, f"'{decl.schema}' is not a valid schema name", "schema")
        )

    auth_scope = _enum_value(
        AuthScope, decl.auth_scope, AuthScope.MODEL, issues, decl.name, "authScope"
    )

    fields = _standard_fields(decl.is_global)
    for index, field_decl in enumerate(decl.fields):
        normalized = _normalize_field(field_decl, index, decl.name, issues)
        if normalized is not None:
            fields.append(normalized)

    _check_field_catalog(fields, decl.name, issues)

    pagination = _normalize_pagination(decl, issues)
    default_order = _normalize_default_order(decl, fields, issues)
    permissions = _normalize_permissions(decl, issues)

    children: list[Relationship] = []
    for index, child_decl in enumerate(decl.children):
        rel = _normalize_child(child_decl, index, decl, issues)
        if rel is None:
            continue
        if any(c.name == rel.name for c in children):
            issues.append(SchemaIssue(decl.name, f"Duplicate child name '{rel.name}'"))
        if any(c.child_model == rel.child_model for c in children):
            issues.append(
                SchemaIssue(decl.name, f"Child model '{rel.child_model}' is declared twice")
            )
        if any(f.name == rel.name for f in fields):
            issues.append(
                SchemaIssue(decl.name, f"Child name '{rel.name}' collides with a field name")
            )
        children.append(rel)

    if issues:
        return None, issues

    model = Model(
        name=decl.name,
        table=table,
        schema=decl.schema,
        is_global=decl.is_global,
        auth_scope=auth_scope,
        permissions=permissions,
        pagination=pagination,
        default_order=default_order,
        fields=tuple(fields),
        children=tuple(children),
    )
    return model, issues


def _resolve_children(
    model: Model, models: dict[str, Model], failed: set[str]
) -> tuple[Model | None, list[SchemaIssue]]:
    """Check each relationship against the child's catalog and fill in uniqueness."""
    issues: list[SchemaIssue] = []
    resolved: list[Relationship] = []

    for index, rel in enumerate(model.children):
        path = f"children[{index}]"
        if rel.child_model in failed:
            issues.append(
                SchemaIssue(model.name, f"Child model '{rel.child_model}' has schema errors", path)
            )
            continue
        child = models.get(rel.child_model)
        if child is None:
            issues.append(
                SchemaIssue(model.name, f"Unknown child model '{rel.child_model}'", path)
            )
            continue

        parent_field = child.field(rel.parent_field)
        if parent_field is None:
            issues.append(
                SchemaIssue(
                    model.name,
                    f"Parent field '{rel.parent_field}' does not exist on '{child.name}'",
                    f"{path}.parentField",
                )
            )
            continue
        if parent_field.fixed:
            issues.append(
                SchemaIssue(
                    model.name,
                    f"Parent field '{rel.parent_field}' is a standard column",
                    f"{path}.parentField",
                )
            )
            continue
        if parent_field.sql_type.name != "uuid":
            issues.append(
                SchemaIssue(
                    model.name,
                    f"Parent field '{rel.parent_field}' must have type uuid",
                    f"{path}.parentField",
                )
            )
            continue
        if rel.many and parent_field.unique:
            issues.append(
                SchemaIssue(
                    model.name,
                    f"Parent field '{rel.parent_field}' is unique but the relationship is many",
                    f"{path}.cardinality",
                )
            )
            continue
        if child.is_global != model.is_global:
            issues.append(
                SchemaIssue(
                    model.name,
                    f"Child '{child.name}' must share the parent's global setting",
                    path,
                )
            )
            continue

        resolved.append(replace(rel, unique=not rel.many and parent_field.unique))

    if issues:
        return None, issues
    return replace(model, children=tuple(resolved)), issues


def normalize_models(
    declarations: Iterable[ModelDeclaration],
) -> tuple[Catalog, list[SchemaIssue]]:
    """Normalize every declaration, collecting all schema issues.

    A model with issues is left out of the catalog; so is any parent whose
    child is left out. Every other model is still returned.
    """
    issues: list[SchemaIssue] = []
    models: dict[str, Model] = {}
    failed: set[str] = set()

    for decl in declarations:
        if decl.name in models or decl.name in failed:
            issues.append(SchemaIssue(decl.name, "Model is defined more than once"))
            failed.add(decl.name)
            models.pop(decl.name, None)
            continue
        model, model_issues = normalize_model(decl)
        if model is None:
            failed.add(decl.name)
            issues.extend(model_issues)
        else:
            models[decl.name] = model

    # A failure can cascade up through parents, so repeat until stable.
    unresolved = {name for name, m in models.items() if m.children}
    while True:
        newly_failed = False
        for name in sorted(unresolved):
            resolved, rel_issues = _resolve_children(models[name], models, failed)
            if resolved is None:
                issues.extend(rel_issues)
                failed.add(name)
                del models[name]
                unresolved.discard(name)
                newly_failed = True
                break
            models[name] = resolved
        if not newly_failed:
            break

    for issue in issues:
        logger.warning("Schema error: %s", issue)

    return Catalog(models), issues
