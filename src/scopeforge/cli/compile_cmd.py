"""Compile CLI command: write SQL artifacts and the manifest."""

from pathlib import Path

import click

from scopeforge.cli.common import load_and_compile, report_issues, resolve_config
from scopeforge.generator import write_artifacts


@click.command("compile")
@click.option(
    "--metadata",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Metadata directory containing models/*.yaml.",
)
@click.option(
    "--out",
    "out_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to write generated artifacts to.",
)
@click.option("--auth-schema", default=None, help="Schema holding the permission tables.")
@click.option("--workers", default=None, type=int, help="Compile models in parallel.")
def compile_cmd(
    metadata_path: Path | None,
    out_path: Path | None,
    auth_schema: str | None,
    workers: int | None,
):
    """Compile every model and write its statements.

    Models with schema errors are skipped and reported; the others are
    still written. Exits 1 if any model failed.
    """
    config = resolve_config(metadata_path, out_path, auth_schema, workers)
    result = load_and_compile(config)

    written = write_artifacts(result, config.output_path)
    click.echo(f"Compiled {len(result.models)} model(s) into {config.output_path}")
    click.echo(f"  {len(written)} file(s) written")

    if result.issues:
        report_issues(result.issues)
        click.echo(
            click.style(
                f"\n{len(result.issues)} schema error(s); affected models were skipped",
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    click.echo(click.style("Done.", fg="green", bold=True))
