"""Field type registry with PostgreSQL storage and Python binding types."""

import datetime
import uuid
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SqlType:
    name: str
    storage_type: str
    python_type: Any
    # Types that are compared with `=` instead of `= ANY(...)` when exact-filtered
    scalar_filter: bool = False


FIELD_TYPES: dict[str, SqlType] = {
    "text": SqlType(
        name="text",
        storage_type="TEXT",
        python_type=str,
    ),
    "int": SqlType(
        name="int",
        storage_type="INTEGER",
        python_type=int,
    ),
    "bigint": SqlType(
        name="bigint",
        storage_type="BIGINT",
        python_type=int,
    ),
    "float": SqlType(
        name="float",
        storage_type="DOUBLE PRECISION",
        python_type=float,
    ),
    "boolean": SqlType(
        name="boolean",
        storage_type="BOOLEAN",
        python_type=bool,
        scalar_filter=True,  # an empty array filter over booleans is ambiguous
    ),
    "uuid": SqlType(
        name="uuid",
        storage_type="UUID",
        python_type=uuid.UUID,
    ),
    "json": SqlType(
        name="json",
        storage_type="JSONB",
        python_type=Any,
    ),
    "timestamp": SqlType(
        name="timestamp",
        storage_type="TIMESTAMPTZ",
        python_type=datetime.datetime,
    ),
    "date": SqlType(
        name="date",
        storage_type="DATE",
        python_type=datetime.date,
    ),
}


def get_sql_type(type_name: str) -> SqlType | None:
    """Get a type definition, or None if the name is not registered."""
    return FIELD_TYPES.get(type_name)
