"""Artifact writer.

Renders a :class:`CompileResult` to disk: one ``.sql`` file per statement
under ``<out>/<model>/``, each headed by its parameter contract, plus
``schema.sql`` DDL and a ``manifest.json`` for downstream generators.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from scopeforge.compiler import CompiledModel, CompileResult
from scopeforge.core.naming import to_snake_case
from scopeforge.sql.query_builder import CompiledStatement

logger = logging.getLogger(__name__)


def render_statement(statement: CompiledStatement) -> str:
    """SQL text with a header comment documenting the parameters."""
    lines = [f"-- {statement.name}"]
    if statement.description:
        lines.append(f"-- {statement.description}")
    for position, param in enumerate(statement.params, start=1):
        lines.append(f"-- ${position} = {param.name} ({param.type})")
    lines.append(statement.sql + ";")
    return "\n".join(lines) + "\n"


def write_model(compiled: CompiledModel, out_dir: Path) -> list[Path]:
    """Write every statement of one model. Returns the written paths."""
    model_dir = out_dir / to_snake_case(compiled.name)
    written = []
    for name, statement in sorted(compiled.all_statements().items()):
        path = model_dir / f"{name}.sql"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_statement(statement))
        written.append(path)
    return written


def write_artifacts(result: CompileResult, out_dir: Path) -> list[Path]:
    """Write all compiled models, the schema DDL and the manifest.

    Only successfully compiled models are written; a model with schema
    errors produces no partial output.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    for name in sorted(result.models):
        written.extend(write_model(result.models[name], out_dir))

    ddl = list(result.auth_ddl) + [result.models[n].ddl for n in _ddl_order(result)]
    schema_path = out_dir / "schema.sql"
    schema_path.write_text("\n\n".join(ddl) + "\n")
    written.append(schema_path)

    manifest_path = out_dir / "manifest.json"
    with open(manifest_path, "w") as f:
        json.dump(result.to_manifest(), f, indent=2)
        f.write("\n")
    written.append(manifest_path)

    logger.info("Wrote %d file(s) to %s", len(written), out_dir)
    return written


def _ddl_order(result: CompileResult) -> list[str]:
    """Model names with every parent ahead of its children."""
    ordered: list[str] = []
    visiting: set[str] = set()

    def visit(name: str) -> None:
        if name in ordered or name in visiting:
            return
        visiting.add(name)
        for parent_name, compiled in sorted(result.models.items()):
            if any(p.child.name == name for p in compiled.child_plans.values()):
                visit(parent_name)
        visiting.discard(name)
        ordered.append(name)

    for name in sorted(result.models):
        visit(name)
    return ordered
