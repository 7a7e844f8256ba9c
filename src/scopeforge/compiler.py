"""Compile normalized models into statement templates, plans and contracts.

Usage:
    from scopeforge.compiler import compile_models

    result = compile_models(loader.models.values())
    result.raise_for_issues()
    post = result.models["Post"]
    print(post.statements["update"].sql)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from scopeforge.endpoints.contracts import (
    FieldCapability,
    RouteContract,
    capability_table,
    emit_routes,
)
from scopeforge.errors import CompileFailed, SchemaIssue
from scopeforge.metadata.catalog import Catalog, Model, PopulateMode, normalize_models
from scopeforge.metadata.loader import ModelDeclaration
from scopeforge.sql.cascade import ChildPlan, parent_constraint_name, plan_child
from scopeforge.sql.ddl import create_permission_tables, create_table
from scopeforge.sql.permissions import PermissionCompiler
from scopeforge.sql.query_builder import CompiledStatement
from scopeforge.sql.statements import (
    CompiledList,
    build_delete,
    build_insert,
    build_list,
    build_lookup_object_permissions,
    build_select_one,
    build_update,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteStep:
    """One statement of a write plan, run in order inside one transaction."""

    statement: str
    relationship: str | None = None
    when: str = "always"  # "always" | "children_present" | "children_empty"

    def to_dict(self) -> dict[str, Any]:
        return {"statement": self.statement, "relationship": self.relationship, "when": self.when}


@dataclass
class CompiledModel:
    model: Model
    statements: dict[str, CompiledStatement]
    lists: dict[str, CompiledList]
    child_plans: dict[str, ChildPlan]
    write_plans: dict[str, list[WriteStep]]
    routes: list[RouteContract]
    capabilities: list[FieldCapability]
    ddl: str
    # Foreign keys from this model to its parents; a violation means a missing parent
    parent_constraints: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.model.name

    def statement(self, name: str) -> CompiledStatement:
        """Look up a statement, including ``<relationship>/<name>`` child statements."""
        if "/" in name:
            rel, child_name = name.split("/", 1)
            return self.child_plans[rel].statements[child_name]
        return self.statements[name]

    def all_statements(self) -> dict[str, CompiledStatement]:
        """Every fixed-text statement plus the base render of lists and upserts."""
        result: dict[str, CompiledStatement] = dict(self.statements)
        for name, compiled_list in self.lists.items():
            result[name] = compiled_list.render()
        for rel, plan in self.child_plans.items():
            for name, statement in plan.statements.items():
                result[f"{rel}/{name}"] = statement
            result[f"{rel}/list_with_parent"] = plan.list_with_parent.render()
            result[f"{rel}/{plan.upsert.name}"] = plan.upsert.render(1)
        return result

    def to_manifest(self) -> dict[str, Any]:
        m = self.model
        statements: dict[str, Any] = {n: s.to_contract() for n, s in self.statements.items()}
        for name, compiled_list in self.lists.items():
            statements[name] = compiled_list.to_contract()
        for rel, plan in self.child_plans.items():
            for name, statement in plan.statements.items():
                statements[f"{rel}/{name}"] = statement.to_contract()
            statements[f"{rel}/list_with_parent"] = plan.list_with_parent.to_contract()
            statements[f"{rel}/{plan.upsert.name}"] = plan.upsert.to_contract()

        return {
            "model": m.name,
            "table": m.qualified_table,
            "global": m.is_global,
            "auth_scope": m.auth_scope.value,
            "permissions": {
                "read": m.permissions.read,
                "write": m.permissions.write,
                "owner": m.permissions.owner,
                "create": m.permissions.create,
            },
            "pagination": (
                None
                if m.pagination is None
                else {
                    "default_per_page": m.pagination.default_per_page,
                    "max_per_page": m.pagination.max_per_page,
                }
            ),
            "capabilities": [asdict(c) for c in self.capabilities],
            "statements": statements,
            "write_plans": {
                op: [step.to_dict() for step in steps] for op, steps in self.write_plans.items()
            },
            "routes": [r.to_dict() for r in self.routes],
            "children": {
                rel: {
                    "model": plan.child.name,
                    "parent_column": plan.parent_column,
                    "parent_constraint": plan.parent_constraint,
                    "cardinality": plan.relationship.cardinality.value,
                    "unique": plan.relationship.unique,
                }
                for rel, plan in self.child_plans.items()
            },
            "parent_constraints": list(self.parent_constraints),
            "ddl": self.ddl,
        }


@dataclass
class CompileResult:
    models: dict[str, CompiledModel] = field(default_factory=dict)
    issues: list[SchemaIssue] = field(default_factory=list)
    auth_ddl: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(i.severity == "error" for i in self.issues)

    def raise_for_issues(self) -> None:
        errors = [i for i in self.issues if i.severity == "error"]
        if errors:
            raise CompileFailed(errors)

    def to_manifest(self) -> dict[str, Any]:
        return {
            "models": {name: cm.to_manifest() for name, cm in sorted(self.models.items())},
            "auth_ddl": self.auth_ddl,
        }


def _write_plans(model: Model, plans: dict[str, ChildPlan]) -> dict[str, list[WriteStep]]:
    """Ordered statements for create and update: parent, child upserts, deletions."""
    create = [WriteStep("insert")]
    update = [WriteStep("update")]

    for rel, plan in plans.items():
        upsert = f"{rel}/{plan.upsert.name}"
        create.append(WriteStep(upsert, rel, "children_present"))
        update.append(WriteStep(upsert, rel, "children_present"))
    for rel, plan in plans.items():
        update.append(WriteStep(f"{rel}/delete_removed_children", rel, "children_present"))
        update.append(WriteStep(f"{rel}/delete_all_children", rel, "children_empty"))

    return {"create": create, "update": update}


class ModelCompiler:
    """Compiles one model at a time against a normalized catalog."""

    def __init__(self, catalog: Catalog, auth_schema: str = "public"):
        self.catalog = catalog
        self.auth_schema = auth_schema

    def compile(self, model: Model) -> CompiledModel:
        logger.debug("Compiling %s", model.name)
        permissions = PermissionCompiler(model, self.auth_schema)
        children = {rel.child_model: self.catalog.get(rel.child_model) for rel in model.children}

        statements = {
            "select_one": build_select_one(model, permissions),
            "insert": build_insert(model),
            "update": build_update(model, permissions),
            "delete": build_delete(model, permissions),
            "lookup_object_permissions": build_lookup_object_permissions(model, permissions),
        }
        populated_get = any(r.populate_on_get is not PopulateMode.NONE for r in model.children)
        if populated_get:
            statements["select_one_populated"] = build_select_one(
                model, permissions, children, name="select_one_populated"
            )

        lists = {"list": build_list(model, permissions)}
        populated_list = any(r.populate_on_list is not PopulateMode.NONE for r in model.children)
        if populated_list:
            lists["list_populated"] = build_list(
                model, permissions, children, name="list_populated"
            )

        child_plans = {
            rel.name: plan_child(model, rel, children[rel.child_model], self.auth_schema)
            for rel in model.children
        }

        compiled = CompiledModel(
            model=model,
            statements=statements,
            lists=lists,
            child_plans=child_plans,
            write_plans=_write_plans(model, child_plans),
            routes=emit_routes(
                model,
                children,
                self.auth_schema,
                populated_get=populated_get,
                populated_list=populated_list,
            ),
            capabilities=capability_table(model),
            ddl=create_table(model, self.catalog),
            parent_constraints=tuple(
                parent_constraint_name(model, model.field(rel.parent_field).column)
                for _, rel in self.catalog.parents_of(model.name)
            ),
        )
        logger.debug("Compiled %s: %d statement(s)", model.name, len(compiled.all_statements()))
        return compiled


def compile_catalog(
    catalog: Catalog, auth_schema: str = "public", workers: int = 1
) -> CompileResult:
    """Compile every model in an already-normalized catalog."""
    compiler = ModelCompiler(catalog, auth_schema)
    models = list(catalog)

    if workers > 1 and len(models) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            compiled = list(pool.map(compiler.compile, models))
    else:
        compiled = [compiler.compile(m) for m in models]

    return CompileResult(
        models={cm.name: cm for cm in compiled},
        auth_ddl=create_permission_tables(auth_schema),
    )


def compile_models(
    declarations: Iterable[ModelDeclaration],
    auth_schema: str = "public",
    workers: int = 1,
) -> CompileResult:
    """Normalize and compile declarations.

    Models with schema errors are left out of ``models``; their issues, and
    those of every other broken model, are collected in ``issues``.
    """
    catalog, issues = normalize_models(declarations)
    result = compile_catalog(catalog, auth_schema, workers)
    result.issues = issues
    logger.info(
        "Compiled %d model(s), %d schema error(s)", len(result.models), len(result.issues)
    )
    return result
