"""
Collection store tests against in-memory SQLite.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import START
from caracol.core.exceptions import ConflictError, NotFoundError
from caracol.models.database import CollectedValue, QueryInterval, QueryType


async def count_rows(db, query_id: int) -> int:
    async with db.session() as session:
        result = await session.execute(
            select(func.count()).select_from(CollectedValue).where(CollectedValue.query_id == query_id)
        )
        return result.scalar_one()


class TestUpsertCollectedValue:
    """Tests for write-once upserts."""

    async def test_same_value_twice_is_a_noop(self, store, db, hourly_query):
        await store.upsert_collected_value(hourly_query.id, 3, 1.5)
        await store.upsert_collected_value(hourly_query.id, 3, 1.5)

        assert await count_rows(db, hourly_query.id) == 1

    async def test_different_value_conflicts(self, store, db, hourly_query):
        await store.upsert_collected_value(hourly_query.id, 3, 1.5)

        with pytest.raises(ConflictError) as exc_info:
            await store.upsert_collected_value(hourly_query.id, 3, 2.5)

        assert exc_info.value.existing == 1.5
        assert exc_info.value.value == 2.5
        points = await store.get_collected_values(hourly_query.id)
        assert [(p.seq, p.value) for p in points] == [(3, 1.5)]

    async def test_force_overwrites(self, store, hourly_query):
        await store.upsert_collected_value(hourly_query.id, 3, 1.5)
        await store.upsert_collected_value(hourly_query.id, 3, 2.5, force=True)

        points = await store.get_collected_values(hourly_query.id)
        assert [(p.seq, p.value) for p in points] == [(3, 2.5)]

    async def test_negative_seq_is_rejected(self, store, hourly_query):
        with pytest.raises(ValueError):
            await store.upsert_collected_value(hourly_query.id, -1, 1.0)


class TestQueries:
    """Tests for query definitions."""

    async def test_add_query_truncates_start(self, store, source_id):
        query_id = await store.add_query(
            "daily",
            source_id,
            "up",
            QueryType.PROMETHEUS,
            QueryInterval.DAILY,
            datetime(2024, 3, 5, 17, 42, tzinfo=timezone.utc),
        )

        query = await store.get_query(query_id)
        assert query.start == datetime(2024, 3, 5, tzinfo=timezone.utc)
        assert query.start.tzinfo is not None

    async def test_get_query_joins_source_and_provider(self, hourly_query):
        assert hourly_query.dataset == "prom-uid"
        assert hourly_query.api_url == "https://stack.grafana.net"
        assert hourly_query.interval == QueryInterval.HOURLY
        assert hourly_query.start == START

    async def test_get_missing_query(self, store):
        with pytest.raises(NotFoundError):
            await store.get_query(999)

    async def test_list_active_queries_excludes_finished(self, store, source_id, hourly_query):
        now = START + timedelta(days=10)
        finished_id = await store.add_query(
            "finished", source_id, "up", QueryType.PROMETHEUS, QueryInterval.HOURLY, START
        )
        await store.finish_query(finished_id, now - timedelta(days=1))
        future_id = await store.add_query(
            "future finish",
            source_id,
            "up",
            QueryType.PROMETHEUS,
            QueryInterval.HOURLY,
            START,
            finish=now + timedelta(days=1),
        )

        active = await store.list_active_queries(now)

        assert [q.id for q in active] == [hourly_query.id, future_id]

    async def test_finish_missing_query(self, store):
        with pytest.raises(NotFoundError):
            await store.finish_query(999, START)

    async def test_list_queries(self, store, hourly_query):
        queries = await store.list_queries()

        assert len(queries) == 1
        assert queries[0].source_name == "prometheus"
        assert queries[0].provider_name == "grafana"

    async def test_define_query_is_not_stored(self, store, source_id):
        definition = await store.define_query(
            source_id, "up", QueryType.PROMETHEUS, QueryInterval.DAILY, START + timedelta(hours=13)
        )

        assert definition.id is None
        assert definition.start == START
        assert definition.dataset == "prom-uid"
        assert definition.api_url == "https://stack.grafana.net"
        assert await store.list_queries() == []

    async def test_define_query_for_missing_source(self, store):
        with pytest.raises(NotFoundError):
            await store.define_query(999, "up", QueryType.PROMETHEUS, QueryInterval.HOURLY, START)


class TestCollectedValues:
    """Tests for reading collected values."""

    async def test_existing_sequences_is_bounded(self, store, hourly_query):
        for seq in (0, 1, 2, 5, 9):
            await store.upsert_collected_value(hourly_query.id, seq, 1.0)

        existing = await store.existing_sequences(hourly_query.id, START + timedelta(hours=5))

        assert existing == {0, 1, 2, 5}

    async def test_get_collected_values_range(self, store, hourly_query):
        for seq in range(6):
            await store.upsert_collected_value(hourly_query.id, seq, seq * 10.0)

        points = await store.get_collected_values(hourly_query.id, from_seq=2, to_seq=4)

        assert [p.seq for p in points] == [2, 3, 4]
        assert points[0].time == START + timedelta(hours=2)
        assert points[2].value == 40.0

    async def test_list_collections(self, store, hourly_query):
        await store.upsert_collected_value(hourly_query.id, 7, 1.0)
        await store.upsert_collected_value(hourly_query.id, 3, 1.0)

        collections = await store.list_collections()

        assert [(c.query_id, c.last_seq) for c in collections] == [(hourly_query.id, 7)]


class TestProvidersAndSources:
    """Tests for the provider and source catalog."""

    async def test_sources_reference_providers(self, store, source_id):
        source = await store.get_source(source_id)
        providers = await store.list_providers()

        assert source.provider_name == "grafana"
        assert [p.id for p in providers] == [source.provider_id]
        assert [s.id for s in await store.list_sources()] == [source_id]

    async def test_get_missing_source(self, store):
        with pytest.raises(NotFoundError):
            await store.get_source(999)
