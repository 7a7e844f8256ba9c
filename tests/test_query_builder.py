"""Tests for the positional-parameter cursor and statement builder."""

import pytest

from scopeforge.sql.query_builder import (
    CompiledStatement,
    Param,
    ParamCursor,
    QueryBuilder,
    array_type,
    sql_string,
)


class TestParamCursor:
    def test_allocates_sequential_positions(self):
        cursor = ParamCursor()
        assert cursor.bind("organization_id", "uuid") == "$1"
        assert cursor.bind("actor_ids", "uuid[]") == "$2"
        assert cursor.position == 2

    def test_repeated_name_reuses_position(self):
        cursor = ParamCursor()
        cursor.bind("organization_id", "uuid")
        cursor.bind("actor_ids", "uuid[]")
        assert cursor.bind("organization_id", "uuid") == "$1"
        assert cursor.position == 2
        assert cursor.position_of("actor_ids") == 2

    def test_repeated_name_with_other_type_is_rejected(self):
        cursor = ParamCursor()
        cursor.bind("id", "uuid")
        with pytest.raises(ValueError, match="reused with type"):
            cursor.bind("id", "text")

    def test_position_of_unknown_name(self):
        assert ParamCursor().position_of("missing") is None

    def test_from_params_continues_after_prefix(self):
        prefix = (Param("organization_id", "uuid"), Param("actor_ids", "uuid[]"))
        cursor = ParamCursor.from_params(prefix)
        assert cursor.bind("subject", "text[]") == "$3"
        assert cursor.bind("actor_ids", "uuid[]") == "$2"
        assert [p.name for p in cursor.params] == ["organization_id", "actor_ids", "subject"]


class TestQueryBuilder:
    def test_push_and_bind(self):
        q = QueryBuilder()
        q.push("SELECT 1 WHERE a = ").push_binding("a", "int").push(" AND b = ")
        q.push_binding("a", "int")
        statement = q.finish("probe", "A probe")

        assert statement.sql == "SELECT 1 WHERE a = $1 AND b = $1"
        assert statement.params == (Param("a", "int"),)
        assert statement.description == "A probe"

    def test_separated(self):
        q = QueryBuilder()
        q.push("(")
        sep = q.separated(", ")
        assert sep.empty
        sep.push("x").push_binding("y", "text").push("z")
        q.push(")")

        assert q.sql == "(x, $1, z)"
        assert not sep.empty


class TestCompiledStatement:
    def _statement(self):
        return CompiledStatement(
            name="probe",
            sql="SELECT $1, $2",
            params=(Param("id", "uuid"), Param("actor_ids", "uuid[]")),
        )

    def test_bind_orders_values(self):
        assert self._statement().bind({"actor_ids": ["a"], "id": "x", "extra": 1}) == [
            "x",
            ["a"],
        ]

    def test_bind_reports_missing_names(self):
        with pytest.raises(ValueError, match="missing bindings: actor_ids"):
            self._statement().bind({"id": "x"})

    def test_contract(self):
        contract = self._statement().to_contract()
        assert contract["name"] == "probe"
        assert contract["params"] == [
            {"name": "id", "type": "uuid"},
            {"name": "actor_ids", "type": "uuid[]"},
        ]


class TestLiterals:
    def test_sql_string_doubles_quotes(self):
        assert sql_string("Post::read") == "'Post::read'"
        assert sql_string("it's") == "'it''s'"

    def test_array_type(self):
        assert array_type("uuid") == "uuid[]"
