"""Identifier helpers shared by the loader and the SQL compilers."""

import re

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_snake_case(name: str) -> str:
    """Convert CamelCase or camelCase to snake_case.

    Example: to_snake_case("ReportSection") → "report_section"
    """
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0 and name[i - 1] != "_":
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def pluralize(name: str) -> str:
    """Naive English plural used for default table names."""
    if name.endswith("y") and not name.endswith(("ay", "ey", "oy", "uy")):
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "ch", "sh")):
        return name + "es"
    return name + "s"


def is_sql_identifier(value: str) -> bool:
    """True for lowercase unquoted SQL identifiers (tables, columns, schemas)."""
    return bool(_IDENTIFIER.match(value))


def is_field_name(value: str) -> bool:
    """True for names usable as payload keys and binding names."""
    return bool(_NAME.match(value))
