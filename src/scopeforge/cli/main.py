"""scopeforge CLI entry point."""

import logging

import click


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool):
    """scopeforge: permission-scoped SQL compiler CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# Register subcommand groups
from scopeforge.cli.compile_cmd import compile_cmd  # noqa: E402
from scopeforge.cli.models_cmd import models  # noqa: E402

cli.add_command(models)
cli.add_command(compile_cmd)
