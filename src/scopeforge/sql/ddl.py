"""CREATE TABLE statements for compiled models and the permission tables."""

from __future__ import annotations

from scopeforge.metadata.catalog import Catalog, Field, Model


def _column_def(f: Field) -> str:
    col_def = f"{f.column} {f.sql_type.storage_type}"
    if f.name == "id":
        return col_def + " PRIMARY KEY"
    if not f.nullable:
        col_def += " NOT NULL"
    if f.default:
        col_def += f" DEFAULT {f.default}"
    if f.unique:
        col_def += " UNIQUE"
    return col_def


def create_table(model: Model, catalog: Catalog) -> str:
    """DDL for one model, including foreign keys to every parent.

    Foreign keys use PostgreSQL's default ``<table>_<column>_fkey`` name,
    which is how a violation is traced back to a missing parent.
    """
    lines = [_column_def(f) for f in model.fields]
    for parent, rel in catalog.parents_of(model.name):
        column = model.field(rel.parent_field).column
        lines.append(
            f"CONSTRAINT {model.table}_{column}_fkey FOREIGN KEY ({column}) "
            f"REFERENCES {parent.qualified_table} (id) ON DELETE CASCADE"
        )

    body = ",\n  ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {model.qualified_table} (\n  {body}\n);"


def create_permission_tables(auth_schema: str = "public") -> list[str]:
    """The model-wide and per-object permission tables."""
    return [
        f"CREATE TABLE IF NOT EXISTS {auth_schema}.permissions (\n"
        "  organization_id UUID NOT NULL,\n"
        "  actor_id UUID NOT NULL,\n"
        "  permission TEXT NOT NULL,\n"
        "  PRIMARY KEY (organization_id, actor_id, permission)\n"
        ");",
        f"CREATE TABLE IF NOT EXISTS {auth_schema}.object_permissions (\n"
        "  organization_id UUID NOT NULL,\n"
        "  actor_id UUID NOT NULL,\n"
        "  object_id UUID NOT NULL,\n"
        "  permission TEXT NOT NULL,\n"
        "  PRIMARY KEY (organization_id, actor_id, object_id, permission)\n"
        ");",
    ]
