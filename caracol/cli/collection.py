"""
Collection commands: inspect and fill collected values.
"""
from typing import Optional

import click

from caracol.cli.common import AppContext, echo_table, pass_app
from caracol.services.dispatch import dispatch_query
from caracol.services.gaps import find_gaps
from caracol.services.monitor import QueryMonitor
from caracol.services.secrets import SecretStore


@click.group()
def collection() -> None:
    """Inspect and fill collected values."""


@collection.command("list")
@pass_app
def collection_list(app: AppContext) -> None:
    """List queries with the last collected sequence."""
    collections = app.run(lambda store: store.list_collections())
    echo_table(
        ["query_id", "name", "last_seq"],
        [(c.query_id, c.name, c.last_seq) for c in collections],
    )


@collection.command("gaps")
@click.option("--id", "query_id", required=True, type=int)
@pass_app
def collection_gaps(app: AppContext, query_id: int) -> None:
    """Print the sequences that are due but not collected."""

    async def gaps(store):
        definition = await store.get_query(query_id)
        return definition, await find_gaps(store, definition)

    definition, missing = app.run(gaps)
    echo_table(["seq", "time"], [(seq, definition.seq_time(seq)) for seq in missing])


@collection.command("fill")
@click.option("--id", "query_id", required=True, type=int)
@pass_app
def collection_fill(app: AppContext, query_id: int) -> None:
    """Collect every gap once, stopping at the first error."""

    async def fill(store):
        definition = await store.get_query(query_id)
        secrets = SecretStore().secrets(definition.provider_id, definition.auth_type)
        monitor = QueryMonitor(store, definition, secrets)
        return await monitor.monitor_once(stop_on_error=True)

    summary = app.run(fill)
    click.echo(f"found {summary.gaps} gaps, stored {summary.stored} values")


@collection.command("collect")
@click.option("--id", "query_id", required=True, type=int)
@click.option("--seq", required=True, type=click.IntRange(min=0))
@click.option("--force", is_flag=True, help="Overwrite a differing stored value")
@pass_app
def collection_collect(app: AppContext, query_id: int, seq: int, force: bool) -> None:
    """Collect and store the value of one sequence."""

    async def collect(store):
        definition = await store.get_query(query_id)
        secrets = SecretStore().secrets(definition.provider_id, definition.auth_type)
        point = await dispatch_query(definition, seq, secrets)
        await store.upsert_collected_value(query_id, point.seq, point.value, force=force)
        return point

    point = app.run(collect)
    echo_table(["seq", "time", "value"], [(point.seq, point.time, point.value)])


@collection.command("get")
@click.option("--id", "query_id", required=True, type=int)
@click.option("--from", "from_seq", default=None, type=click.IntRange(min=0))
@click.option("--to", "to_seq", default=None, type=click.IntRange(min=0))
@pass_app
def collection_get(app: AppContext, query_id: int, from_seq: Optional[int], to_seq: Optional[int]) -> None:
    """Print collected values, optionally limited to a sequence range."""
    points = app.run(lambda store: store.get_collected_values(query_id, from_seq, to_seq))
    echo_table(["seq", "time", "value"], [(p.seq, p.time, p.value) for p in points])
