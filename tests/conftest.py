"""
Shared fixtures: an in-memory SQLite store and query definitions.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from caracol.core.database import Database
from caracol.models.database import ApiType, AuthType, QueryInterval, QueryType
from caracol.models.schemas.collection import QueryDefinition
from caracol.services.collection_store import CollectionStore

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_query(**overrides) -> QueryDefinition:
    """Build a query definition without touching the database."""
    values = dict(
        id=1,
        name="requests",
        query="sum(rate(http_requests_total[1h]))",
        interval=QueryInterval.HOURLY,
        start=START,
        finish=None,
        query_type=QueryType.PROMETHEUS,
        dataset="prom-uid",
        provider_id=1,
        api_type=ApiType.GRAFANACLOUD,
        api_url="https://stack.grafana.net",
        auth_type=AuthType.BEARER_TOKEN,
    )
    values.update(overrides)
    return QueryDefinition(**values)


@pytest.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    database = Database(url="sqlite+aiosqlite://", engine=engine)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def store(db):
    return CollectionStore(db)


@pytest.fixture
async def source_id(store):
    provider_id = await store.add_provider(
        "grafana", ApiType.GRAFANACLOUD, "https://stack.grafana.net", AuthType.BEARER_TOKEN
    )
    return await store.add_source("prometheus", provider_id, "prom-uid")


@pytest.fixture
async def hourly_query(store, source_id) -> QueryDefinition:
    query_id = await store.add_query(
        "requests",
        source_id,
        "sum(rate(http_requests_total[1h]))",
        QueryType.PROMETHEUS,
        QueryInterval.HOURLY,
        START,
    )
    return await store.get_query(query_id)
