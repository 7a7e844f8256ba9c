"""Bind list requests and positional parameters at request time.

Statement text is fixed at compile time; this module only picks a list
variant, coerces request values and orders them into the parameter
contract.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from psycopg.types.json import Jsonb
from pydantic import TypeAdapter, ValidationError

from scopeforge.errors import InvalidFilterOrOrder
from scopeforge.sql import bindings
from scopeforge.sql.filters import FilterOperator, FilterPredicate, Page, clamp_pagination
from scopeforge.sql.query_builder import CompiledStatement
from scopeforge.sql.statements import CompiledList

_PLACEHOLDER = re.compile(r"\$(\d+)")

_RESERVED_KEYS = {"page", "per_page", "order_by"}


def _int_param(name: str, raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidFilterOrOrder(f"{name} must be an integer") from None


@dataclass
class ListRequest:
    """A parsed list request. Filter values arrive as lists of raw strings."""

    filters: dict[str, list[Any]] = field(default_factory=dict)
    order_by: str | None = None
    page: int | None = None
    per_page: int | None = None

    @classmethod
    def from_query(cls, items: Iterable[tuple[str, str]]) -> ListRequest:
        """Build from query-string pairs; repeated keys accumulate."""
        request = cls()
        for key, value in items:
            if key == "order_by":
                request.order_by = value or None
            elif key == "page":
                request.page = _int_param("page", value)
            elif key == "per_page":
                request.per_page = _int_param("per_page", value)
            else:
                request.filters.setdefault(key, []).append(value)
        return request


@dataclass
class BoundQuery:
    statement: CompiledStatement
    params: list[Any]
    page: Page | None

    def psycopg(self) -> tuple[str, dict[str, Any]]:
        """SQL and values for psycopg; json values are wrapped for adaptation."""
        values = [
            Jsonb(v) if p.type == "json" and v is not None else v
            for p, v in zip(self.statement.params, self.params)
        ]
        return to_psycopg(self.statement.sql, values)


def _coerce(predicate: FilterPredicate, values: list[Any]) -> Any:
    python_type = predicate.field.sql_type.python_type
    if predicate.operator is FilterOperator.ANY:
        adapter = TypeAdapter(list[python_type])
        raw: Any = values
    else:
        if len(values) != 1:
            raise InvalidFilterOrOrder(f"Filter '{predicate.key}' takes a single value")
        adapter = TypeAdapter(python_type)
        raw = values[0]
    try:
        return adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidFilterOrOrder(
            f"Invalid value for filter '{predicate.key}': {exc.errors()[0]['msg']}"
        ) from None


def bind_list(
    compiled: CompiledList,
    request: ListRequest,
    organization_id: Any,
    actor_ids: list[Any],
    parent_id: Any = None,
) -> BoundQuery:
    """Select the statement variant for ``request`` and bind its values.

    Raises InvalidFilterOrOrder for unknown filters, disallowed order-by
    choices, unparseable values and negative pages.
    """
    order = compiled.order_by.parse(request.order_by)
    page = clamp_pagination(compiled.pagination, request.page, request.per_page)
    active = {k for k, v in request.filters.items() if k not in _RESERVED_KEYS and v}
    statement = compiled.render(active, order)

    values: dict[str, Any] = {
        bindings.ORGANIZATION_ID: organization_id,
        bindings.ACTOR_IDS: actor_ids,
        bindings.PARENT_ID: parent_id,
    }
    if page is not None:
        values[bindings.LIMIT] = page.limit
        values[bindings.OFFSET] = page.offset
    for key in active:
        values[key] = _coerce(compiled.filters[key], request.filters[key])

    return BoundQuery(statement=statement, params=statement.bind(values), page=page)


def bind_statement(statement: CompiledStatement, values: Mapping[str, Any]) -> BoundQuery:
    return BoundQuery(statement=statement, params=statement.bind(values), page=None)


def to_psycopg(sql: str, params: list[Any]) -> tuple[str, dict[str, Any]]:
    """Convert ``$n`` placeholders to psycopg named placeholders.

    Literal ``%`` characters are doubled so psycopg does not read them as
    placeholders.
    """
    converted = _PLACEHOLDER.sub(r"%(p\1)s", sql.replace("%", "%%"))
    return converted, {f"p{i}": value for i, value in enumerate(params, start=1)}
