"""
Long running collection daemon.
"""
import asyncio
import signal
from typing import Optional

import click
import httpx

from caracol.cli.common import AppContext, pass_app
from caracol.core.config import settings
from caracol.core.logging import get_logger, fields
from caracol.core.registry import KeyedRegistry
from caracol.main import build_server, parse_addr
from caracol.services.collection_store import CollectionStore
from caracol.services.collector import QueryCollector
from caracol.services.secrets import SecretStore

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def run_daemon(app: AppContext, diag_addr: Optional[str] = None) -> None:
    """
    Run the collector, and the diagnostics server when an address is given,
    until SIGINT or SIGTERM.
    """
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, main_task.cancel)

    db = app.db
    logger.info("starting daemon", extra=fields(diag_addr=diag_addr))
    try:
        async with httpx.AsyncClient(timeout=settings.BACKEND_TIMEOUT) as http_client:
            collector = QueryCollector(
                CollectionStore(db),
                SecretStore(),
                KeyedRegistry(),
                http_client=http_client,
            )
            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(collector.run(), name="collector")
                if diag_addr:
                    task_group.create_task(build_server(db, diag_addr).serve(), name="diagnostics")
    except asyncio.CancelledError:
        logger.info("shutdown requested, all monitors drained")
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        await db.dispose()


@click.command()
@click.option(
    "--diag-addr",
    default=lambda: settings.DIAG_ADDR,
    help="HOST:PORT for the health and metrics server",
)
@pass_app
def daemon(app: AppContext, diag_addr: Optional[str]) -> None:
    """Collect all active queries until interrupted."""
    if diag_addr:
        try:
            parse_addr(diag_addr)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--diag-addr")
    asyncio.run(run_daemon(app, diag_addr))
