"""
Command line interface.
"""
from typing import Optional

import click

from caracol import __version__
from caracol.cli.catalog import provider, query, source
from caracol.cli.collection import collection
from caracol.cli.common import AppContext
from caracol.cli.daemon import daemon
from caracol.core.config import settings
from caracol.core.logging import setup_logging


@click.group()
@click.version_option(__version__, prog_name="caracol")
@click.option("-v", "--verbose", count=True, help="Log at INFO; repeat (-vv) for DEBUG")
@click.option("--veryverbose", is_flag=True, help="Log at DEBUG")
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"]),
    default=lambda: settings.LOG_FORMAT,
    show_default="json",
)
@click.option("--dburl", default=None, help="Database URL, overrides CARACOL_DBURL")
@click.pass_context
def cli(ctx: click.Context, verbose: int, veryverbose: bool, log_format: str, dburl: Optional[str]) -> None:
    """Collect data points from metrics backends into a database."""
    if veryverbose or verbose >= 2:
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    else:
        level = settings.LOG_LEVEL
    setup_logging(level=level, fmt=log_format)
    ctx.obj = AppContext(dburl=dburl, db_trace=settings.DB_TRACE)


cli.add_command(daemon)
cli.add_command(provider)
cli.add_command(source)
cli.add_command(query)
cli.add_command(collection)
