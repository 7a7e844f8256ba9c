"""Pydantic request models and per-tier response projection."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, create_model

from scopeforge.compiler import CompiledModel
from scopeforge.endpoints.contracts import FieldCapability, capability_table
from scopeforge.metadata.catalog import Field, Model, PopulateMode


def _field_definition(f: Field) -> tuple[Any, Any]:
    annotation = f.sql_type.python_type
    if f.nullable:
        return Optional[annotation], None
    return annotation, ...


def child_row_model(child: Model, parent_field: str) -> type[BaseModel]:
    """One child row inside a parent payload; ``id`` is optional for new rows."""
    fields: dict[str, Any] = {"id": (Optional[uuid.UUID], None)}
    for f in child.writable_fields:
        if f.name != parent_field:
            fields[f.name] = _field_definition(f)
    return create_model(
        f"{child.name}Row", __config__=ConfigDict(extra="forbid"), **fields
    )


def payload_model(compiled: CompiledModel, with_children: bool = True) -> type[BaseModel]:
    """Create/update body: owner-writable fields plus optional child collections."""
    model = compiled.model
    fields: dict[str, Any] = {f.name: _field_definition(f) for f in model.writable_fields}

    if with_children:
        for rel, plan in compiled.child_plans.items():
            row = child_row_model(plan.child, plan.relationship.parent_field)
            if plan.relationship.many:
                fields[rel] = (Optional[list[row]], None)
            else:
                fields[rel] = (Optional[row], None)

    return create_model(
        f"{model.name}Payload", __config__=ConfigDict(extra="forbid"), **fields
    )


def child_payload_model(child: Model, parent_field: str) -> type[BaseModel]:
    """Body for nested child routes; the parent key comes from the path."""
    fields: dict[str, Any] = {}
    for f in child.writable_fields:
        if f.name != parent_field:
            fields[f.name] = _field_definition(f)
    return create_model(
        f"{child.name}ChildPayload", __config__=ConfigDict(extra="forbid"), **fields
    )


def project_row(
    row: dict[str, Any],
    capabilities: list[FieldCapability],
    nested: dict[str, list[FieldCapability]] | None = None,
) -> dict[str, Any]:
    """Drop fields the row's ``_permission`` tier may not read.

    Populated child objects carry the parent's tier and are projected with
    the child's capabilities.
    """
    tier = row.get("_permission")
    hidden = {c.name for c in capabilities if not c.readable_at(tier)}
    result = {}
    for key, value in row.items():
        if key in hidden:
            continue
        if nested and key in nested and value is not None:
            if isinstance(value, list):
                value = [project_row(v, nested[key]) for v in value]
            else:
                value = project_row(value, nested[key])
        result[key] = value
    return result


def nested_capabilities(compiled: CompiledModel) -> dict[str, list[FieldCapability]]:
    """Capabilities for relationships populated as full objects."""
    result = {}
    for rel, plan in compiled.child_plans.items():
        modes = (plan.relationship.populate_on_get, plan.relationship.populate_on_list)
        if PopulateMode.DATA in modes:
            result[rel] = capability_table(plan.child)
    return result
