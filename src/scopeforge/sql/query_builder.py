"""Incremental SQL text builder with a shared positional-parameter cursor.

Every placeholder in a statement is allocated by one :class:`ParamCursor`.
Bindings are named; binding the same name twice returns the same ``$n``, so
fragments can be composed in any order without recomputing offsets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Param:
    """One entry of a statement's positional parameter contract."""

    name: str
    type: str  # semantic type, e.g. "uuid", "uuid[]", "text"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type}


class ParamCursor:
    """Allocates ``$n`` placeholders for a single statement."""

    def __init__(self) -> None:
        self._positions: dict[str, int] = {}
        self._params: list[Param] = []

    @classmethod
    def from_params(cls, params: tuple[Param, ...]) -> ParamCursor:
        """A cursor continuing after an already-allocated parameter prefix."""
        cursor = cls()
        for p in params:
            cursor.bind(p.name, p.type)
        return cursor

    def bind(self, name: str, type: str) -> str:
        """Return the placeholder for ``name``, allocating it on first use."""
        position = self._positions.get(name)
        if position is not None:
            existing = self._params[position - 1]
            if existing.type != type:
                raise ValueError(
                    f"Binding '{name}' reused with type {type}, first bound as {existing.type}"
                )
            return f"${position}"

        self._params.append(Param(name, type))
        position = len(self._params)
        self._positions[name] = position
        return f"${position}"

    def position_of(self, name: str) -> int | None:
        return self._positions.get(name)

    @property
    def position(self) -> int:
        """Number of placeholders allocated so far."""
        return len(self._params)

    @property
    def params(self) -> tuple[Param, ...]:
        return tuple(self._params)


class QueryBuilder:
    def __init__(self, cursor: ParamCursor | None = None):
        self.cursor = cursor or ParamCursor()
        self._parts: list[str] = []

    def push(self, sql: str) -> QueryBuilder:
        self._parts.append(sql)
        return self

    def bind(self, name: str, type: str) -> str:
        return self.cursor.bind(name, type)

    def push_binding(self, name: str, type: str) -> QueryBuilder:
        return self.push(self.bind(name, type))

    def separated(self, separator: str) -> Separated:
        return Separated(self, separator)

    @property
    def sql(self) -> str:
        return "".join(self._parts)

    def finish(self, name: str, description: str = "") -> CompiledStatement:
        return CompiledStatement(
            name=name,
            sql=self.sql,
            params=self.cursor.params,
            description=description,
        )


class Separated:
    """Pushes fragments into a builder with a separator between them."""

    def __init__(self, builder: QueryBuilder, separator: str):
        self.builder = builder
        self.separator = separator
        self.count = 0

    def push(self, sql: str) -> Separated:
        if self.count:
            self.builder.push(self.separator)
        self.builder.push(sql)
        self.count += 1
        return self

    def push_binding(self, name: str, type: str) -> Separated:
        return self.push(self.builder.bind(name, type))

    @property
    def empty(self) -> bool:
        return self.count == 0


@dataclass(frozen=True)
class CompiledStatement:
    """Final SQL text plus its ordered parameter contract."""

    name: str
    sql: str
    params: tuple[Param, ...]
    description: str = ""

    @property
    def param_names(self) -> list[str]:
        return [p.name for p in self.params]

    def bind(self, values: Mapping[str, Any]) -> list[Any]:
        """Order named values into the positional list this statement expects."""
        missing = [p.name for p in self.params if p.name not in values]
        if missing:
            raise ValueError(f"Statement '{self.name}' is missing bindings: {', '.join(missing)}")
        return [values[p.name] for p in self.params]

    def to_contract(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "sql": self.sql,
            "params": [p.to_dict() for p in self.params],
        }


def sql_string(value: str) -> str:
    """Quote a value as a SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def array_type(type_name: str) -> str:
    return f"{type_name}[]"
