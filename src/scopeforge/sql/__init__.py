"""SQL fragment compilers and the statement assembler."""

from scopeforge.sql.query_builder import (
    CompiledStatement,
    Param,
    ParamCursor,
    QueryBuilder,
)
from scopeforge.sql.permissions import PermissionCompiler, render_write
from scopeforge.sql.filters import OrderByCatalog, Page, clamp_pagination, compile_filters
from scopeforge.sql.statements import CompiledList
from scopeforge.sql.cascade import ChildPlan, CompiledUpsert, plan_child

__all__ = [
    "CompiledStatement",
    "Param",
    "ParamCursor",
    "QueryBuilder",
    "PermissionCompiler",
    "render_write",
    "OrderByCatalog",
    "Page",
    "clamp_pagination",
    "compile_filters",
    "CompiledList",
    "ChildPlan",
    "CompiledUpsert",
    "plan_child",
]
