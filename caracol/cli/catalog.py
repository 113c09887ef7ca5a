"""
Provider, source and query management commands.
"""
import os
import sys
from datetime import datetime, timezone

import click

from caracol.cli.common import TIME, AppContext, echo_table, enum_choice, format_value, pass_app
from caracol.models.database.providers import ApiType, AuthType
from caracol.models.database.queries import QueryInterval, QueryType
from caracol.services.dispatch import dispatch_query
from caracol.services.secrets import SecretStore, secret_env_var_names


# Providers

@click.group()
def provider() -> None:
    """Manage metrics providers."""


@provider.command("list")
@pass_app
def provider_list(app: AppContext) -> None:
    """List providers."""
    providers = app.run(lambda store: store.list_providers())
    echo_table(
        ["id", "name", "api_type", "api_url", "auth_type"],
        [(p.id, p.name, p.api_type, p.api_url, p.auth_type) for p in providers],
    )


@provider.command("add")
@click.option("--name", required=True, help="Unique provider name")
@click.option("--api-type", required=True, type=enum_choice(ApiType))
@click.option("--api-url", required=True, help="Base URL of the provider API")
@click.option("--auth-type", required=True, type=enum_choice(AuthType))
@pass_app
def provider_add(app: AppContext, name: str, api_type: str, api_url: str, auth_type: str) -> None:
    """Add a provider and print its id."""
    provider_id = app.run(lambda store: store.add_provider(name, ApiType(api_type), api_url, AuthType(auth_type)))
    click.echo(provider_id)


@provider.command("expected-env")
@pass_app
def provider_expected_env(app: AppContext) -> None:
    """List the environment variables each provider reads its secrets from."""
    providers = app.run(lambda store: store.list_providers())
    rows = []
    for p in providers:
        for kind, var in secret_env_var_names(p.id, p.auth_type).items():
            rows.append((p.id, p.name, kind.value, var))
    echo_table(["provider_id", "name", "secret", "variable"], rows)


@provider.command("check-env")
@pass_app
def provider_check_env(app: AppContext) -> None:
    """Check that every provider's secrets are set; exits 1 when some are missing."""
    providers = app.run(lambda store: store.list_providers())
    missing = []
    for p in providers:
        for kind, var in secret_env_var_names(p.id, p.auth_type).items():
            if var not in os.environ:
                missing.append((p.id, p.name, kind.value, var))

    if missing:
        echo_table(["provider_id", "name", "secret", "missing_variable"], missing)
        sys.exit(1)
    click.echo(f"all secrets set for {len(providers)} providers")


# Sources

@click.group()
def source() -> None:
    """Manage sources (a dataset of a provider)."""


@source.command("list")
@pass_app
def source_list(app: AppContext) -> None:
    """List sources."""
    sources = app.run(lambda store: store.list_sources())
    echo_table(
        ["id", "name", "provider_id", "provider", "dataset"],
        [(s.id, s.name, s.provider_id, s.provider_name, s.dataset) for s in sources],
    )


@source.command("add")
@click.option("--name", required=True)
@click.option("--provider-id", required=True, type=int)
@click.option("--dataset", default=None, help="Datasource uid, index or other dataset qualifier")
@pass_app
def source_add(app: AppContext, name: str, provider_id: int, dataset: str) -> None:
    """Add a source and print its id."""
    source_id = app.run(lambda store: store.add_source(name, provider_id, dataset))
    click.echo(source_id)


# Queries

@click.group()
def query() -> None:
    """Manage queries."""


@query.command("list")
@pass_app
def query_list(app: AppContext) -> None:
    """List queries."""
    queries = app.run(lambda store: store.list_queries())
    echo_table(
        ["id", "name", "source", "provider", "type", "interval", "start", "finish", "query"],
        [
            (q.id, q.name, q.source_name, q.provider_name, q.query_type, q.interval, q.start, q.finish, q.query)
            for q in queries
        ],
    )


@query.command("add")
@click.option("--name", required=True)
@click.option("--source-id", required=True, type=int)
@click.option("--query", "query_text", required=True, help="Backend query text")
@click.option("--query-type", required=True, type=enum_choice(QueryType))
@click.option("--interval", required=True, type=enum_choice(QueryInterval))
@click.option("--start", required=True, type=TIME, help="Truncated to the interval boundary")
@click.option("--finish", default=None, type=TIME)
@pass_app
def query_add(
    app: AppContext,
    name: str,
    source_id: int,
    query_text: str,
    query_type: str,
    interval: str,
    start: datetime,
    finish: datetime,
) -> None:
    """Add a query and print its id."""

    async def add(store):
        await store.get_source(source_id)
        return await store.add_query(
            name,
            source_id,
            query_text,
            QueryType(query_type),
            QueryInterval(interval),
            start,
            finish,
        )

    click.echo(app.run(add))


@query.command("finish")
@click.option("--id", "query_id", required=True, type=int)
@click.option("--finish", default="now", type=TIME, help="Defaults to now")
@pass_app
def query_finish(app: AppContext, query_id: int, finish: datetime) -> None:
    """Set the finish time of a query, ending its collection."""
    app.run(lambda store: store.finish_query(query_id, finish))
    click.echo(f"query {query_id} finishes at {format_value(finish)}")


@query.command("exec")
@click.option("--id", "query_id", required=True, type=int)
@click.option("--seq", required=True, type=click.IntRange(min=0))
@pass_app
def query_exec(app: AppContext, query_id: int, seq: int) -> None:
    """Run a query for one sequence and print the result without storing it."""

    async def execute(store):
        definition = await store.get_query(query_id)
        secrets = SecretStore().secrets(definition.provider_id, definition.auth_type)
        return await dispatch_query(definition, seq, secrets)

    point = app.run(execute)
    echo_table(["seq", "time", "value"], [(point.seq, point.time, point.value)])


@query.command("test")
@click.option("--source-id", required=True, type=int)
@click.option("--query", "query_text", required=True, help="Backend query text")
@click.option("--query-type", required=True, type=enum_choice(QueryType))
@click.option("--interval", required=True, type=enum_choice(QueryInterval))
@click.option("--start", required=True, type=TIME, help="Truncated to the interval boundary")
@click.option("--seq", required=True, type=click.IntRange(min=0))
@pass_app
def query_test(
    app: AppContext,
    source_id: int,
    query_text: str,
    query_type: str,
    interval: str,
    start: datetime,
    seq: int,
) -> None:
    """Run an unsaved query for one sequence and print the result."""

    async def execute(store):
        definition = await store.define_query(
            source_id, query_text, QueryType(query_type), QueryInterval(interval), start
        )
        secrets = SecretStore().secrets(definition.provider_id, definition.auth_type)
        return await dispatch_query(definition, seq, secrets)

    point = app.run(execute)
    echo_table(["seq", "time", "value"], [(point.seq, point.time, point.value)])


@query.command("nextseq")
@click.option("--id", "query_id", required=True, type=int)
@pass_app
def query_nextseq(app: AppContext, query_id: int) -> None:
    """Print the next sequence to close and when it closes."""
    definition = app.run(lambda store: store.get_query(query_id))
    now = datetime.now(timezone.utc)
    if now < definition.start:
        seq = 0
    else:
        seq = definition.seq_after(now)
    echo_table(["seq", "time"], [(seq, definition.seq_time(seq))])
