"""Database and format registry commands."""

import click

from edcrules.formats import default_registry
from edcrules.persistence import DatabaseConfig, create_db_engine, initialize_schema


@click.group()
def db():
    """Database commands."""
    pass


@db.command()
def init():
    """Create the engine's tables if they do not exist."""
    config = DatabaseConfig.from_env()
    engine = create_db_engine(config)
    initialize_schema(engine)
    click.echo(f"Schema ready at {config.url}")


@click.group()
def formats():
    """Format registry commands."""
    pass


@formats.command("list")
def list_formats():
    """List the semantic format keys and their patterns."""
    for fmt in default_registry().list_all():
        pattern = fmt.pattern or "(rule pattern)"
        click.echo(f"{fmt.key:<16} {fmt.label:<28} {pattern}")
