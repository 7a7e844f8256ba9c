"""Load model declarations from YAML files.

The loader only parses: it turns each ``models/*.yaml`` file into a
:class:`ModelDeclaration` without judging it. Defaults, invariants and
cross-model references are resolved by :mod:`scopeforge.metadata.catalog`.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class FieldDeclaration:
    name: str
    type: str = "text"
    column: str | None = None
    nullable: bool = False
    unique: bool = False
    default: str = ""  # SQL expression
    filterable: str | None = None  # "none" | "exact" | "range"
    sortable: str | None = None  # "none" | "ascending_only" | "descending_only" | "both"
    sort_key: str | None = None
    owner_access: str = "read_write"
    user_access: str = "read_write"


@dataclass
class ChildDeclaration:
    """A child collection owned by the declaring model."""

    model: str
    parent_field: str | None = None  # Column on the child holding the parent id
    cardinality: str = "many"  # "one" | "many"
    name: str | None = None  # Key used in payloads, population and nested routes
    populate_on_get: str = "none"  # "none" | "id" | "data"
    populate_on_list: str = "none"


@dataclass
class PaginationDeclaration:
    disabled: bool = False
    default_per_page: int = 50
    max_per_page: int = 200


@dataclass
class ModelDeclaration:
    name: str
    table: str | None = None
    schema: str = "public"
    is_global: bool = False
    auth_scope: str = "model"  # "model" | "object"
    permissions: dict[str, str] = field(default_factory=dict)
    pagination: PaginationDeclaration = field(default_factory=PaginationDeclaration)
    default_sort: str | None = None
    fields: list[FieldDeclaration] = field(default_factory=list)
    children: list[ChildDeclaration] = field(default_factory=list)
    source: Path | None = None


class MetadataLoader:
    """Loads model definitions from YAML files."""

    def __init__(self, metadata_path: Path):
        self.metadata_path = metadata_path
        self.models: dict[str, ModelDeclaration] = {}

    def load_all(self) -> None:
        """Load every model file under ``models/``."""
        models_path = self.metadata_path / "models"
        if not models_path.exists():
            return

        for yaml_file in sorted(models_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if not data or "model" not in data:
                continue
            declaration = resolve_model(data, source=yaml_file)
            if declaration.name in self.models:
                raise ValueError(
                    f"Model '{declaration.name}' is defined in both "
                    f"{self.models[declaration.name].source} and {yaml_file}"
                )
            self.models[declaration.name] = declaration

    def get_model(self, name: str) -> ModelDeclaration | None:
        """Get a loaded declaration by model name."""
        return self.models.get(name)

    def list_models(self) -> list[str]:
        """List all model names in load order."""
        return list(self.models.keys())


def resolve_model(data: dict, source: Path | None = None) -> ModelDeclaration:
    """Convert a parsed YAML document into a ModelDeclaration."""
    name = data["model"]

    return ModelDeclaration(
        name=name,
        table=data.get("table"),
        schema=data.get("schema", "public"),
        is_global=bool(data.get("global", False)),
        auth_scope=data.get("authScope", "model"),
        permissions=dict(data.get("permissions") or {}),
        pagination=_resolve_pagination(data.get("pagination")),
        default_sort=data.get("defaultSort"),
        fields=[_resolve_field(f) for f in data.get("fields", [])],
        children=[_resolve_child(c) for c in data.get("children", [])],
        source=source,
    )


def _resolve_field(data: dict) -> FieldDeclaration:
    """Convert field dict to FieldDeclaration."""
    return FieldDeclaration(
        name=data["name"],
        type=data.get("type", "text"),
        column=data.get("column"),
        nullable=data.get("nullable", False),
        unique=data.get("unique", False),
        default=str(data.get("default", "")),
        filterable=data.get("filterable"),
        sortable=data.get("sortable"),
        sort_key=data.get("sortKey"),
        owner_access=data.get("ownerAccess", "read_write"),
        user_access=data.get("userAccess", "read_write"),
    )


def _resolve_child(data: dict) -> ChildDeclaration:
    """Convert child dict to ChildDeclaration."""
    return ChildDeclaration(
        model=data["model"],
        parent_field=data.get("parentField"),
        cardinality=data.get("cardinality", "many"),
        name=data.get("name"),
        populate_on_get=data.get("populateOnGet", "none"),
        populate_on_list=data.get("populateOnList", "none"),
    )


def _resolve_pagination(data: Any) -> PaginationDeclaration:
    """Accept ``false`` to disable pagination, or a mapping of limits."""
    if data is False:
        return PaginationDeclaration(disabled=True)
    if not data:
        return PaginationDeclaration()
    return PaginationDeclaration(
        disabled=bool(data.get("disabled", False)),
        default_per_page=data.get("defaultPerPage", 50),
        max_per_page=data.get("maxPerPage", 200),
    )
