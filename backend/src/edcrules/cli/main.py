"""edcrules CLI entry point."""

import logging
import os

import click


@click.group()
@click.option(
    "--log-level",
    default=lambda: os.environ.get("EDCRULES_LOG_LEVEL", "WARNING"),
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (defaults to EDCRULES_LOG_LEVEL or WARNING).",
)
def cli(log_level: str):
    """EDC validation rule and query engine."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register subcommand groups
from edcrules.cli.db_cmd import db, formats  # noqa: E402
from edcrules.cli.rules_cmd import rules  # noqa: E402
from edcrules.cli.validate_cmd import validate, validate_instance  # noqa: E402

cli.add_command(db)
cli.add_command(formats)
cli.add_command(rules)
cli.add_command(validate)
cli.add_command(validate_instance)
