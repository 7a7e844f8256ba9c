"""Tests for filter predicates, order-by parsing and pagination clamping."""

import pytest

from scopeforge.errors import InvalidFilterOrOrder
from scopeforge.metadata.catalog import OrderBy, Pagination
from scopeforge.sql.filters import (
    FilterOperator,
    OrderByCatalog,
    Page,
    clamp_pagination,
    compile_filters,
)
from scopeforge.sql.query_builder import ParamCursor


class TestCompileFilters:
    def test_exact_filters(self, sample_catalog):
        filters = compile_filters(sample_catalog.get("Post"))
        assert list(filters) == ["subject", "pinned"]
        assert filters["subject"].operator is FilterOperator.ANY
        assert filters["subject"].param_type == "text[]"
        # Booleans compare with `=` rather than against an array
        assert filters["pinned"].operator is FilterOperator.EQ
        assert filters["pinned"].param_type == "boolean"

    def test_range_filters(self, sample_catalog):
        filters = compile_filters(sample_catalog.get("Tag"))
        assert list(filters) == ["label", "weight_lte", "weight_gte"]
        assert filters["weight_lte"].operator is FilterOperator.LTE
        assert filters["weight_gte"].param_type == "int"

    def test_no_filters(self, sample_catalog):
        assert compile_filters(sample_catalog.get("ReportSection")) == {}

    def test_render_binds_by_request_key(self, sample_catalog):
        filters = compile_filters(sample_catalog.get("Tag"))
        cursor = ParamCursor()
        cursor.bind("actor_ids", "uuid[]")

        assert filters["weight_gte"].render(cursor) == "tb.weight >= $2"
        assert filters["weight_lte"].render(cursor) == "tb.weight <= $3"
        assert filters["label"].render(cursor, alias="ct") == "ct.label = ANY($4)"
        assert cursor.params[1].name == "weight_gte"

    def test_render_uses_column(self, sample_catalog):
        filters = compile_filters(sample_catalog.get("Reaction"))
        assert filters["type"].render(ParamCursor()) == "tb.typ = ANY($1)"


class TestOrderByCatalog:
    def test_choices(self, sample_catalog):
        catalog = OrderByCatalog(sample_catalog.get("Post"))
        assert catalog.choices == [
            "updated_at",
            "-updated_at",
            "created_at",
            "-created_at",
            "subject",
            "-subject",
        ]

    def test_directional_choices(self, sample_catalog):
        assert "title" in OrderByCatalog(sample_catalog.get("Report")).choices
        assert "-title" not in OrderByCatalog(sample_catalog.get("Report")).choices
        tag_choices = OrderByCatalog(sample_catalog.get("Tag")).choices
        assert "-weight" in tag_choices
        assert "weight" not in tag_choices

    @pytest.mark.parametrize("raw", [None, ""])
    def test_empty_selects_default(self, sample_catalog, raw):
        catalog = OrderByCatalog(sample_catalog.get("Post"))
        assert catalog.parse(raw) == OrderBy("updated_at", descending=True)

    def test_parse(self, sample_catalog):
        catalog = OrderByCatalog(sample_catalog.get("Post"))
        assert catalog.parse("subject") == OrderBy("subject")
        assert catalog.parse("-created_at") == OrderBy("created_at", descending=True)

    def test_unknown_key(self, sample_catalog):
        catalog = OrderByCatalog(sample_catalog.get("Post"))
        with pytest.raises(InvalidFilterOrOrder, match="Unknown order-by field 'body'"):
            catalog.parse("body")

    def test_disallowed_direction(self, sample_catalog):
        catalog = OrderByCatalog(sample_catalog.get("Report"))
        with pytest.raises(InvalidFilterOrOrder, match="cannot be sorted descending") as exc:
            catalog.parse("-title")
        assert exc.value.status_code == 400

    def test_render_appends_id_tiebreaker(self, sample_catalog):
        catalog = OrderByCatalog(sample_catalog.get("Post"))
        assert catalog.render(OrderBy("subject")) == "ORDER BY tb.subject ASC, tb.id ASC"
        assert catalog.render(OrderBy("updated_at", True)) == (
            "ORDER BY tb.updated_at DESC, tb.id DESC"
        )


class TestClampPagination:
    PAGINATION = Pagination(default_per_page=20, max_per_page=50)

    def test_disabled(self):
        assert clamp_pagination(None, page=3, per_page=10) is None

    def test_defaults(self):
        assert clamp_pagination(self.PAGINATION) == Page(limit=20, offset=0)

    def test_offset(self):
        assert clamp_pagination(self.PAGINATION, page=2, per_page=20) == Page(20, 40)

    def test_per_page_clamped_to_max(self):
        assert clamp_pagination(self.PAGINATION, per_page=500) == Page(50, 0)

    def test_per_page_clamped_to_one(self):
        assert clamp_pagination(self.PAGINATION, page=1, per_page=0) == Page(1, 1)

    def test_negative_page(self):
        with pytest.raises(InvalidFilterOrOrder, match="page must not be negative"):
            clamp_pagination(self.PAGINATION, page=-1)
