"""Model CLI commands: validate and routes."""

from pathlib import Path

import click

from scopeforge.cli.common import load_and_compile, report_issues, resolve_config

_metadata_option = click.option(
    "--metadata",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Metadata directory containing models/*.yaml.",
)


@click.group()
def models():
    """Model commands."""
    pass


@models.command()
@_metadata_option
def validate(metadata_path: Path | None):
    """Validate model YAML files and every cross-model invariant."""
    config = resolve_config(metadata_path=metadata_path)
    result = load_and_compile(config)

    if result.issues:
        report_issues(result.issues)
        click.echo(
            click.style(f"\n{len(result.issues)} schema error(s) found", fg="red", bold=True)
        )
        raise SystemExit(1)

    click.echo(f"Loaded {len(result.models)} models:")
    for name in sorted(result.models):
        model = result.models[name].model
        scope = "global" if model.is_global else "organization"
        click.echo(
            f"  ✓ {name} ({len(model.fields)} fields, {len(model.children)} children, "
            f"scope: {scope}, auth: {model.auth_scope.value})"
        )
    click.echo(click.style("\nAll models are valid.", fg="green", bold=True))


@models.command()
@_metadata_option
@click.option("--model", "model_name", default=None, help="Only show routes for this model.")
def routes(metadata_path: Path | None, model_name: str | None):
    """Show the permission-gated routes each model exposes."""
    config = resolve_config(metadata_path=metadata_path)
    result = load_and_compile(config)
    report_issues(result.issues)

    names = sorted(result.models)
    if model_name is not None:
        if model_name not in result.models:
            click.echo(f"Error: Unknown model '{model_name}'", err=True)
            raise SystemExit(1)
        names = [model_name]

    for name in names:
        click.echo(click.style(name, bold=True))
        for route in result.models[name].routes:
            scope = " (object scope)" if route.object_scope else ""
            click.echo(
                f"  {route.method:<6} {route.path:<40} {route.statement:<32} "
                f"[{', '.join(route.required_permissions)}]{scope}"
            )

    if result.issues:
        raise SystemExit(1)
