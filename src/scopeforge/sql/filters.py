"""Filter predicates, the order-by enumeration and pagination clamping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from scopeforge.errors import InvalidFilterOrOrder
from scopeforge.metadata.catalog import Field, FilterClass, Model, OrderBy, Pagination
from scopeforge.sql.query_builder import ParamCursor, array_type


class FilterOperator(Enum):
    ANY = "any"  # col = ANY($n) over a bound array
    EQ = "eq"
    LTE = "lte"
    GTE = "gte"


@dataclass(frozen=True)
class FilterPredicate:
    key: str  # request key and binding name
    field: Field
    operator: FilterOperator

    @property
    def param_type(self) -> str:
        if self.operator is FilterOperator.ANY:
            return array_type(self.field.sql_type.name)
        return self.field.sql_type.name

    def render(self, cursor: ParamCursor, alias: str = "tb") -> str:
        column = f"{alias}.{self.field.column}"
        placeholder = cursor.bind(self.key, self.param_type)
        if self.operator is FilterOperator.ANY:
            return f"{column} = ANY({placeholder})"
        if self.operator is FilterOperator.EQ:
            return f"{column} = {placeholder}"
        if self.operator is FilterOperator.LTE:
            return f"{column} <= {placeholder}"
        return f"{column} >= {placeholder}"


def compile_filters(model: Model) -> dict[str, FilterPredicate]:
    """Predicates keyed by request key, in catalog order."""
    predicates: dict[str, FilterPredicate] = {}
    for f in model.filterable_fields:
        if f.filter_class is FilterClass.EXACT:
            operator = FilterOperator.EQ if f.sql_type.scalar_filter else FilterOperator.ANY
            predicates[f.name] = FilterPredicate(f.name, f, operator)
        elif f.filter_class is FilterClass.RANGE:
            lte, gte = f.filter_keys
            predicates[lte] = FilterPredicate(lte, f, FilterOperator.LTE)
            predicates[gte] = FilterPredicate(gte, f, FilterOperator.GTE)
    return predicates


class OrderByCatalog:
    """The closed set of order-by choices a model accepts."""

    def __init__(self, model: Model):
        self.fields: dict[str, Field] = {f.sort_key: f for f in model.sortable_fields}
        self.default = model.default_order

    @property
    def choices(self) -> list[str]:
        result = []
        for key, f in self.fields.items():
            if f.sort_class.allows(False):
                result.append(key)
            if f.sort_class.allows(True):
                result.append(f"-{key}")
        return result

    def parse(self, raw: str | None) -> OrderBy:
        """Parse ``[-]key``; None or empty selects the model default."""
        if not raw:
            return self.default
        descending = raw.startswith("-")
        key = raw[1:] if descending else raw
        f = self.fields.get(key)
        if f is None:
            raise InvalidFilterOrOrder(f"Unknown order-by field '{key}'")
        if not f.sort_class.allows(descending):
            direction = "descending" if descending else "ascending"
            raise InvalidFilterOrOrder(f"Field '{key}' cannot be sorted {direction}")
        return OrderBy(key=key, descending=descending)

    def render(self, order: OrderBy, alias: str = "tb") -> str:
        f = self.fields[order.key]
        direction = "DESC" if order.descending else "ASC"
        clause = f"ORDER BY {alias}.{f.column} {direction}"
        if f.column != "id":
            clause += f", {alias}.id {direction}"
        return clause


@dataclass(frozen=True)
class Page:
    limit: int
    offset: int


def clamp_pagination(
    pagination: Pagination | None, page: int | None = None, per_page: int | None = None
) -> Page | None:
    """Clamp a page request; None when pagination is disabled."""
    if pagination is None:
        return None
    page = page or 0
    if page < 0:
        raise InvalidFilterOrOrder("page must not be negative")
    if per_page is None:
        per_page = pagination.default_per_page
    per_page = max(1, min(per_page, pagination.max_per_page))
    return Page(limit=per_page, offset=page * per_page)
