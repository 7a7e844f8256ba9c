"""Tests for the permission clause compiler and route-level checks."""

import uuid

import pytest

from scopeforge.auth.permissions import (
    can_write_tier,
    check_route,
    has_any_permission,
    is_owner_tier,
    tier_level,
)
from scopeforge.auth.types import AuthContext
from scopeforge.endpoints.contracts import RouteContract
from scopeforge.errors import PermissionDenied
from scopeforge.metadata.catalog import FieldWritePolicy
from scopeforge.sql.permissions import PermissionCompiler, render_write
from scopeforge.sql.query_builder import ParamCursor


class TestPermissionSets:
    def test_sets_include_org_admin_and_higher_tiers(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        assert perms.read_permissions == ("org_admin", "Post::owner", "Post::write", "Post::read")
        assert perms.write_permissions == ("org_admin", "Post::owner", "Post::write")
        assert perms.owner_permissions == ("org_admin", "Post::owner")
        assert perms.create_permissions == ("org_admin", "Post::owner")

    def test_tables(self, sample_catalog):
        assert PermissionCompiler(sample_catalog.get("Post"), "auth").table == "auth.permissions"
        report = PermissionCompiler(sample_catalog.get("Report"))
        assert report.object_scoped
        assert report.table == "public.object_permissions"


class TestExistenceCheck:
    def test_model_scope(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        cursor = ParamCursor()
        sql = perms.existence_check(cursor, perms.write_permissions)

        assert sql == (
            "EXISTS (SELECT 1 FROM public.permissions WHERE organization_id = $1 "
            "AND actor_id = ANY($2) "
            "AND permission IN ('org_admin', 'Post::owner', 'Post::write'))"
        )
        assert [p.name for p in cursor.params] == ["organization_id", "actor_ids"]

    def test_reuses_bound_scope(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        cursor = ParamCursor()
        cursor.bind("id", "uuid")
        cursor.bind("organization_id", "uuid")
        sql = perms.existence_check(cursor, perms.owner_permissions)

        assert "organization_id = $2" in sql
        assert "actor_id = ANY($3)" in sql
        assert cursor.position == 3

    def test_global_model_has_no_organization(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Tag"))
        cursor = ParamCursor()
        sql = perms.existence_check(cursor, perms.read_permissions)

        assert "organization_id" not in sql
        assert [p.name for p in cursor.params] == ["actor_ids"]

    def test_object_scope_requires_object_ref(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Report"))
        with pytest.raises(ValueError, match="object id is required"):
            perms.existence_check(ParamCursor(), perms.write_permissions)

    def test_object_scope(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Report"))
        sql = perms.existence_check(ParamCursor(), perms.write_permissions, object_ref="tb.id")
        assert "FROM public.object_permissions" in sql
        assert "object_id = tb.id" in sql


class TestLookups:
    def test_owner_user_lookup(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        sql = perms.owner_user_lookup(ParamCursor())

        assert sql.startswith(
            "SELECT COALESCE(bool_or(permission IN ('org_admin', 'Post::owner')), false) "
            "AS is_owner, "
            "COALESCE(bool_or(permission IN ('org_admin', 'Post::owner', 'Post::write')), false) "
            "AS is_user"
        )
        # Only write-tier rows are considered at all
        assert sql.endswith("permission IN ('org_admin', 'Post::owner', 'Post::write')")

    def test_owner_user_cte(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        assert perms.owner_user_cte(ParamCursor()).startswith("WITH permissions AS (SELECT ")

    def test_label_lookup_ranks_tiers(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        sql = perms.label_lookup(ParamCursor())

        owner = sql.index("THEN 'owner'")
        write = sql.index("THEN 'write'")
        read = sql.index("THEN 'read'")
        assert owner < write < read
        assert "ELSE NULL END AS _permission" in sql
        assert "permission = 'Post::write'" in sql

    def test_label_join_drops_unlabelled_rows(self, sample_catalog):
        perms = PermissionCompiler(sample_catalog.get("Post"))
        sql = perms.label_join(ParamCursor())
        assert sql.startswith("JOIN LATERAL (SELECT CASE")
        assert sql.endswith(") perm ON perm._permission IS NOT NULL")


class TestRenderWrite:
    def test_always(self):
        assert render_write(FieldWritePolicy.ALWAYS, "$4", "tb.subject") == "$4"

    def test_owner_only(self):
        assert render_write(FieldWritePolicy.OWNER_ONLY, "$6", "tb.pinned") == (
            "CASE WHEN permissions.is_owner THEN $6 ELSE tb.pinned END"
        )

    def test_custom_flag(self):
        value = render_write(FieldWritePolicy.OWNER_ONLY, "EXCLUDED.viz", "ct.viz", "$1")
        assert value == "CASE WHEN $1 THEN EXCLUDED.viz ELSE ct.viz END"


class TestTiers:
    def test_levels(self):
        assert tier_level(None) == 0
        assert is_owner_tier("owner")
        assert not is_owner_tier("write")
        assert can_write_tier("owner")
        assert can_write_tier("write")
        assert not can_write_tier("read")
        assert not can_write_tier(None)


class TestRouteCheck:
    def _auth(self, *permissions):
        return AuthContext(
            organization_id=uuid.uuid4(), user_id=uuid.uuid4(), permissions=set(permissions)
        )

    def _route(self, object_scope=False):
        return RouteContract(
            method="PUT",
            path="/posts/{id}",
            operation="update",
            statement="update",
            required_permissions=("org_admin", "Post::owner", "Post::write"),
            object_scope=object_scope,
        )

    def test_any_required_permission_passes(self):
        check_route(self._auth("Post::write"), self._route())
        check_route(self._auth("org_admin"), self._route())

    def test_missing_permission_is_denied(self):
        with pytest.raises(PermissionDenied) as exc_info:
            check_route(self._auth("Post::read"), self._route())
        assert exc_info.value.status_code == 403

    def test_object_scope_is_checked_in_sql(self):
        check_route(self._auth(), self._route(object_scope=True))

    def test_has_any_permission_without_auth(self):
        assert not has_any_permission(None, ["Post::read"])

    def test_actor_ids_put_user_first(self):
        user, role = uuid.uuid4(), uuid.uuid4()
        auth = AuthContext(organization_id=uuid.uuid4(), user_id=user, role_ids=[role])
        assert auth.actor_ids == [user, role]
