"""Tests for model normalization and the catalog's derived values."""

import pytest

from scopeforge.metadata.catalog import (
    AuthScope,
    Cardinality,
    FieldWritePolicy,
    FilterClass,
    OrderBy,
    Pagination,
    PopulateMode,
    SortClass,
    normalize_model,
    normalize_models,
)
from scopeforge.metadata.loader import resolve_model


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _declare(name: str, fields: list[dict] | None = None, **extra):
    return resolve_model({"model": name, "fields": fields or [], **extra})


def _messages(*declarations) -> list[str]:
    _, issues = normalize_models(declarations)
    return [i.message for i in issues]


def _post(**extra):
    return _declare(
        "Post",
        [{"name": "subject", "type": "text"}],
        children=[{"model": "Note"}],
        **extra,
    )


# ---------------------------------------------------------------------------
# Sample models
# ---------------------------------------------------------------------------


class TestSampleCatalog:
    def test_standard_fields_come_first(self, sample_catalog):
        post = sample_catalog.get("Post")
        assert [f.name for f in post.fields] == [
            "id",
            "organization_id",
            "updated_at",
            "created_at",
            "subject",
            "body",
            "pinned",
        ]
        assert all(f.fixed for f in post.fields[:4])
        assert not any(f.fixed for f in post.fields[4:])

    def test_global_model_has_no_organization(self, sample_catalog):
        tag = sample_catalog.get("Tag")
        assert tag.is_global
        assert tag.field("organization_id") is None

    def test_table_names(self, sample_catalog):
        assert sample_catalog.get("Post").qualified_table == "public.posts"
        assert sample_catalog.get("ReportSection").table == "report_sections"

    def test_default_permissions(self, sample_catalog):
        perms = sample_catalog.get("Post").permissions
        assert perms.read == "Post::read"
        assert perms.write == "Post::write"
        assert perms.owner == "Post::owner"
        assert perms.create == "Post::owner"

    def test_explicit_create_permission(self, sample_catalog):
        perms = sample_catalog.get("Tag").permissions
        assert perms.create == "Tag::admin"
        assert perms.owner == "Tag::owner"

    def test_pagination(self, sample_catalog):
        assert sample_catalog.get("Post").pagination == Pagination(20, 50)
        assert sample_catalog.get("Comment").pagination == Pagination(50, 200)
        assert sample_catalog.get("Reaction").pagination is None

    def test_default_order(self, sample_catalog):
        assert sample_catalog.get("Post").default_order == OrderBy("updated_at", descending=True)
        assert sample_catalog.get("Report").default_order == OrderBy("title")
        assert str(sample_catalog.get("Post").default_order) == "-updated_at"

    def test_auth_scope(self, sample_catalog):
        assert sample_catalog.get("Report").auth_scope is AuthScope.OBJECT
        assert sample_catalog.get("Post").auth_scope is AuthScope.MODEL

    def test_write_policies(self, sample_catalog):
        post = sample_catalog.get("Post")
        assert post.field("subject").write_policy is FieldWritePolicy.ALWAYS
        assert post.field("pinned").write_policy is FieldWritePolicy.OWNER_ONLY
        assert post.field("id").write_policy is None
        assert [f.name for f in post.writable_fields] == ["subject", "body", "pinned"]
        assert post.owner_write_field_count == 3

    def test_read_access(self, sample_catalog):
        notes = sample_catalog.get("Report").field("internal_notes")
        assert notes.owner_read
        assert not notes.user_read
        assert not notes.never_read

    def test_column_override(self, sample_catalog):
        field = sample_catalog.get("Reaction").field("type")
        assert field.column == "typ"

    def test_filterable_fields(self, sample_catalog):
        assert sample_catalog.get("Post").has_filterable_fields
        assert not sample_catalog.get("ReportSection").has_filterable_fields
        weight = sample_catalog.get("Tag").field("weight")
        assert weight.filter_class is FilterClass.RANGE
        assert weight.filter_keys == ("weight_lte", "weight_gte")

    def test_standard_timestamps_sort_both_ways(self, sample_catalog):
        created = sample_catalog.get("Comment").field("created_at")
        assert created.sort_class is SortClass.BOTH
        assert created.filter_class is FilterClass.NONE

    def test_relationships(self, sample_catalog):
        post = sample_catalog.get("Post")
        assert [r.name for r in post.children] == ["comments", "reactions", "poll"]

        comments = post.child("comments")
        assert comments.cardinality is Cardinality.MANY
        assert comments.parent_field == "post_id"
        assert comments.populate_on_get is PopulateMode.ID
        assert not comments.unique

        poll = post.child("poll")
        assert not poll.many
        assert poll.unique
        assert poll.populate_on_list is PopulateMode.ID

    def test_parents_of(self, sample_catalog):
        parents = sample_catalog.parents_of("Comment")
        assert [(p.name, r.name) for p, r in parents] == [("Post", "comments")]
        assert sample_catalog.parents_of("Post") == []

    def test_iterates_in_name_order(self, sample_catalog):
        names = [m.name for m in sample_catalog]
        assert names == sorted(names)
        assert len(sample_catalog) == 7
        assert "Tag" in sample_catalog


# ---------------------------------------------------------------------------
# Field-level errors
# ---------------------------------------------------------------------------


class TestFieldErrors:
    def test_user_write_requires_owner_write(self):
        decl = _declare("Doc", [{"name": "x", "ownerAccess": "read", "userAccess": "read_write"}])
        model, issues = normalize_model(decl)
        assert model is None
        assert "writable by users but not by owners" in issues[0].message
        assert issues[0].path == "fields[0].ownerAccess"

    def test_reserved_name(self):
        messages = _messages(_declare("Doc", [{"name": "limit", "type": "int"}]))
        assert "Field name 'limit' is reserved" in messages

    def test_duplicate_field(self):
        messages = _messages(_declare("Doc", [{"name": "a"}, {"name": "a"}]))
        assert "Duplicate field name 'a'" in messages
        assert "Duplicate column name 'a'" in messages

    def test_field_shadowing_standard_column(self):
        messages = _messages(_declare("Doc", [{"name": "id", "type": "uuid"}]))
        assert "Duplicate field name 'id'" in messages

    def test_unknown_type(self):
        messages = _messages(_declare("Doc", [{"name": "price", "type": "money"}]))
        assert "Unknown field type 'money'" in messages

    def test_unknown_enum_value(self):
        messages = _messages(_declare("Doc", [{"name": "a", "filterable": "fuzzy"}]))
        assert "'fuzzy' is not one of: none, exact, range" in messages

    def test_invalid_column(self):
        messages = _messages(_declare("Doc", [{"name": "a", "column": "Bad Column"}]))
        assert "'Bad Column' is not a valid SQL column name" in messages

    def test_sort_key_collision(self):
        decl = _declare("Doc", [{"name": "a", "sortable": "both", "sortKey": "created_at"}])
        assert "Sort key 'created_at' is used by both 'created_at' and 'a'" in _messages(decl)

    def test_filter_key_collision(self):
        decl = _declare(
            "Doc",
            [
                {"name": "weight", "type": "int", "filterable": "range"},
                {"name": "weight_lte", "type": "int", "filterable": "exact"},
            ],
        )
        assert "Filter key 'weight_lte' is used by both 'weight' and 'weight_lte'" in _messages(
            decl
        )


# ---------------------------------------------------------------------------
# Model-level errors
# ---------------------------------------------------------------------------


class TestModelErrors:
    def test_invalid_model_name(self):
        messages = _messages(_declare("bad-name"))
        assert "'bad-name' is not a valid model name" in messages

    def test_pagination_bounds(self):
        decl = _declare("Doc", pagination={"defaultPerPage": 100, "maxPerPage": 10})
        assert "defaultPerPage must be between 1 and maxPerPage" in _messages(decl)

    def test_pagination_disabled(self):
        model, issues = normalize_model(_declare("Doc", pagination=False))
        assert issues == []
        assert model.pagination is None

    def test_default_sort_must_be_sortable(self):
        decl = _declare("Doc", [{"name": "body"}], defaultSort="body")
        assert "Default sort 'body' is not a sortable field" in _messages(decl)

    def test_default_sort_direction(self):
        decl = _declare(
            "Doc", [{"name": "title", "sortable": "ascending_only"}], defaultSort="-title"
        )
        assert "Default sort '-title' uses a direction 'title' does not allow" in _messages(decl)

    def test_unknown_permission_key(self):
        decl = _declare("Doc", permissions={"admin": "Doc::admin"})
        assert "Unknown permission key 'admin'" in _messages(decl)

    def test_defined_twice(self):
        catalog, issues = normalize_models([_declare("Doc"), _declare("Doc"), _declare("Other")])
        assert [i.message for i in issues] == ["Model is defined more than once"]
        assert "Doc" not in catalog
        assert "Other" in catalog

    def test_every_broken_model_is_reported(self):
        catalog, issues = normalize_models(
            [
                _declare("Good", [{"name": "a"}]),
                _declare("BadOne", [{"name": "limit"}]),
                _declare("BadTwo", [{"name": "a", "type": "money"}]),
            ]
        )
        assert {i.model for i in issues} == {"BadOne", "BadTwo"}
        assert [m.name for m in catalog] == ["Good"]


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


class TestRelationships:
    def test_default_child_names(self):
        many = _declare("Post", children=[{"model": "PostTag"}])
        one = _declare("Page", children=[{"model": "PageBody", "cardinality": "one"}])
        many_model, _ = normalize_model(many)
        one_model, _ = normalize_model(one)
        assert many_model.children[0].name == "post_tags"
        assert many_model.children[0].parent_field == "post_id"
        assert one_model.children[0].name == "page_body"

    def test_unknown_child_model(self):
        assert "Unknown child model 'Note'" in _messages(_post())

    def test_missing_parent_field(self):
        note = _declare("Note", [{"name": "body"}])
        assert "Parent field 'post_id' does not exist on 'Note'" in _messages(_post(), note)

    def test_parent_field_must_be_uuid(self):
        note = _declare("Note", [{"name": "post_id", "type": "text"}])
        assert "Parent field 'post_id' must have type uuid" in _messages(_post(), note)

    def test_parent_field_cannot_be_standard(self):
        post = _declare("Post", children=[{"model": "Note", "parentField": "organization_id"}])
        note = _declare("Note")
        assert "Parent field 'organization_id' is a standard column" in _messages(post, note)

    def test_unique_parent_field_on_many(self):
        note = _declare("Note", [{"name": "post_id", "type": "uuid", "unique": True}])
        assert (
            "Parent field 'post_id' is unique but the relationship is many"
            in _messages(_post(), note)
        )

    def test_global_setting_must_match(self):
        note = _declare("Note", [{"name": "post_id", "type": "uuid"}], **{"global": True})
        assert "Child 'Note' must share the parent's global setting" in _messages(_post(), note)

    def test_non_unique_one_child(self):
        post = _declare("Post", children=[{"model": "Note", "cardinality": "one"}])
        note = _declare("Note", [{"name": "post_id", "type": "uuid"}])
        catalog, issues = normalize_models([post, note])
        assert issues == []
        assert not catalog.get("Post").children[0].unique

    def test_child_declared_twice(self):
        post = _declare(
            "Post", children=[{"model": "Note"}, {"model": "Note", "name": "other_notes"}]
        )
        assert "Child model 'Note' is declared twice" in _messages(post)

    def test_duplicate_child_name(self):
        post = _declare(
            "Post", children=[{"model": "Note"}, {"model": "Memo", "name": "notes"}]
        )
        assert "Duplicate child name 'notes'" in _messages(post)

    def test_child_name_collides_with_field(self):
        post = _declare("Post", [{"name": "notes"}], children=[{"model": "Note"}])
        assert "Child name 'notes' collides with a field name" in _messages(post)

    @pytest.mark.parametrize("order", [("Top", "Middle", "Leaf"), ("Leaf", "Middle", "Top")])
    def test_failure_cascades_to_ancestors(self, order):
        decls = {
            "Top": _declare("Top", children=[{"model": "Middle"}]),
            "Middle": _declare(
                "Middle",
                [{"name": "top_id", "type": "uuid"}],
                children=[{"model": "Leaf"}],
            ),
            "Leaf": _declare("Leaf", [{"name": "middle_id", "type": "money"}]),
            "Bystander": _declare("Bystander"),
        }
        catalog, issues = normalize_models([decls[n] for n in order] + [decls["Bystander"]])

        assert [m.name for m in catalog] == ["Bystander"]
        messages = {(i.model, i.message) for i in issues}
        assert ("Middle", "Child model 'Leaf' has schema errors") in messages
        assert ("Top", "Child model 'Middle' has schema errors") in messages
