"""Commun CLI entry point."""

import logging
import os

import click


@click.group()
@click.option(
    "--log-level",
    default=lambda: os.environ.get("COMMUN_LOG_LEVEL", "warning"),
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Logging verbosity (default: $COMMUN_LOG_LEVEL or warning).",
)
def cli(log_level):
    """Commun: config-driven REST backend CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )


# Register subcommand groups
from commun.cli.metadata_cmd import metadata  # noqa: E402

cli.add_command(metadata)
