"""
JSON Schema validation of model YAML files.

Only document shape is checked here: unknown keys, wrong types, bad enum
values, malformed identifiers. Rules that span fields or models belong to
the catalog normalizer. Both report :class:`~scopeforge.errors.SchemaIssue`
records, so the CLI prints them the same way.

    issues = validate_metadata_dir(Path("metadata"))
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from scopeforge.errors import SchemaIssue

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).parent / "schemas"
MODEL_SCHEMA = "model.schema.json"

# Loaded into the registry so "$ref"s between them resolve by "$id"
_BUNDLED = ("_defs.schema.json", MODEL_SCHEMA)


@lru_cache(maxsize=None)
def _schema(name: str) -> dict[str, Any]:
    return json.loads((SCHEMAS_DIR / name).read_text())


@lru_cache(maxsize=None)
def _validator(name: str) -> Draft202012Validator:
    registry = Registry().with_resources(
        (_schema(n)["$id"], Resource(contents=_schema(n), specification=DRAFT202012))
        for n in _BUNDLED
    )
    return Draft202012Validator(_schema(name), registry=registry)


def _issue_path(error: ValidationError) -> str:
    """``fields[0]/userAccess`` style location of an error in the document."""
    path = ""
    for part in error.absolute_path:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f"/{part}"
        else:
            path = str(part)
    return path


def validate_yaml_file(yaml_path: Path, schema_name: str = MODEL_SCHEMA) -> list[SchemaIssue]:
    """Validate one YAML file.

    Issues name the file rather than the model, since a broken document
    may not declare one.
    """
    source = str(yaml_path)
    try:
        document = yaml.safe_load(yaml_path.read_text())
    except yaml.YAMLError as exc:
        return [SchemaIssue(model=source, message=f"YAML parse error: {exc}")]
    if document is None:
        return [SchemaIssue(model=source, message="File is empty or contains only whitespace")]

    issues = [
        SchemaIssue(model=source, message=error.message, path=_issue_path(error))
        for error in _validator(schema_name).iter_errors(document)
    ]
    issues.sort(key=lambda issue: issue.path)
    return issues


def validate_metadata_dir(metadata_dir: Path) -> list[SchemaIssue]:
    """Validate every ``models/*.yaml`` file; an empty list means all are valid."""
    if not metadata_dir.is_dir():
        message = f"Metadata directory does not exist: {metadata_dir}"
        return [SchemaIssue(model=str(metadata_dir), message=message)]

    issues: list[SchemaIssue] = []
    for path in sorted((metadata_dir / "models").glob("*.yaml")):
        found = validate_yaml_file(path)
        if found:
            logger.debug("%s: %d issue(s)", path, len(found))
        issues.extend(found)
    return issues
