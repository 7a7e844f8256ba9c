"""Helpers shared by CLI commands."""

from pathlib import Path

import click
import yaml

from scopeforge.compiler import CompileResult, compile_models
from scopeforge.config import CompilerConfig
from scopeforge.errors import SchemaIssue
from scopeforge.metadata.loader import MetadataLoader
from scopeforge.metadata.validator import validate_metadata_dir


def resolve_config(
    metadata_path: Path | None = None,
    out_path: Path | None = None,
    auth_schema: str | None = None,
    workers: int | None = None,
) -> CompilerConfig:
    """Environment config with command-line overrides applied."""
    try:
        config = CompilerConfig.from_env()
        if metadata_path is not None:
            config.metadata_path = metadata_path
        if out_path is not None:
            config.output_path = out_path
        if auth_schema is not None:
            config.auth_schema = auth_schema
        if workers is not None:
            config.workers = workers
        config.validate()
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    return config


def report_issues(issues: list[SchemaIssue]) -> None:
    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))


def load_and_compile(config: CompilerConfig) -> CompileResult:
    """Validate, load and compile; exits 1 when nothing can be compiled.

    Schema-file problems stop before loading. Model-level issues are
    returned on the result alongside the models that did compile.
    """
    if not config.metadata_path.is_dir():
        click.echo(f"Error: Metadata directory not found at {config.metadata_path}", err=True)
        raise SystemExit(1)

    schema_issues = validate_metadata_dir(config.metadata_path)
    if schema_issues:
        report_issues(schema_issues)
        click.echo(
            click.style(f"\n{len(schema_issues)} schema error(s) found", fg="red", bold=True)
        )
        raise SystemExit(1)

    loader = MetadataLoader(config.metadata_path)
    try:
        loader.load_all()
    except (ValueError, yaml.YAMLError) as e:
        click.echo(click.style(f"Failed to load models: {e}", fg="red"), err=True)
        raise SystemExit(1)

    return compile_models(
        loader.models.values(), auth_schema=config.auth_schema, workers=config.workers
    )
