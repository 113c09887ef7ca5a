"""
Persistence for query definitions and collected values.
"""
from datetime import datetime, timezone
from typing import List, Optional, Set

from sqlalchemy import select, update, or_, func

from caracol.core.database import Database
from caracol.core.exceptions import ConflictError, NotFoundError
from caracol.core.logging import get_logger, fields
from caracol.models.database import (
    ApiType,
    AuthType,
    CollectedValue,
    Provider,
    Query,
    QueryInterval,
    QueryType,
    Source,
)
from caracol.models.schemas.collection import (
    CollectionInfo,
    DataPoint,
    ProviderInfo,
    QueryDefinition,
    QueryInfo,
    SourceInfo,
)
from caracol.services.sequences import ensure_utc, interval_unit, truncate_start

logger = get_logger(__name__)


def _definition_select():
    return (
        select(
            Query.id,
            Query.name,
            Query.query,
            Query.interval,
            Query.start,
            Query.finish,
            Query.query_type,
            Source.dataset,
            Provider.id.label("provider_id"),
            Provider.api_type,
            Provider.api_url,
            Provider.auth_type,
        )
        .join(Source, Source.id == Query.source_id)
        .join(Provider, Provider.id == Source.provider_id)
    )


def _source_select():
    return (
        select(
            Source.id,
            Source.name,
            Source.provider_id,
            Provider.name.label("provider_name"),
            Source.dataset,
        )
        .join(Provider, Provider.id == Source.provider_id)
    )


class CollectionStore:
    """
    Store for queries and their collected values.

    Every method runs in its own transaction; nothing is cached between
    calls so each reconciliation pass sees the authoritative state.
    """

    def __init__(self, db: Database):
        self.db = db

    # Queries

    async def list_active_queries(self, now: Optional[datetime] = None) -> List[QueryDefinition]:
        """Queries with no finish or a finish in the future."""
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        stmt = _definition_select().where(or_(Query.finish.is_(None), Query.finish > now)).order_by(Query.id)
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [QueryDefinition(**row._mapping) for row in result]

    async def get_query(self, query_id: int) -> QueryDefinition:
        stmt = _definition_select().where(Query.id == query_id)
        async with self.db.session() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"query {query_id} not found")
        return QueryDefinition(**row._mapping)

    async def add_query(
        self,
        name: str,
        source_id: int,
        query: str,
        query_type: QueryType,
        interval: QueryInterval,
        start: datetime,
        finish: Optional[datetime] = None,
    ) -> int:
        """Add a query; start is truncated to the interval boundary."""
        truncated = truncate_start(start, interval)
        if truncated != ensure_utc(start):
            logger.info(f"truncated start to {truncated.isoformat()}")

        row = Query(
            name=name,
            source_id=source_id,
            query=query,
            query_type=QueryType(query_type),
            interval=QueryInterval(interval),
            start=truncated,
            finish=ensure_utc(finish) if finish is not None else None,
        )
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def finish_query(self, query_id: int, finish: datetime) -> None:
        async with self.db.session() as session:
            result = await session.execute(
                update(Query).where(Query.id == query_id).values(finish=ensure_utc(finish))
            )
            if result.rowcount == 0:
                raise NotFoundError(f"query {query_id} not found")

    async def list_queries(self) -> List[QueryInfo]:
        stmt = (
            select(
                Query.id,
                Query.name,
                Source.name.label("source_name"),
                Provider.name.label("provider_name"),
                Query.query,
                Query.query_type,
                Query.interval,
                Query.start,
                Query.finish,
            )
            .join(Source, Source.id == Query.source_id)
            .join(Provider, Provider.id == Source.provider_id)
            .order_by(Query.id)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [QueryInfo(**row._mapping) for row in result]

    # Collected values

    async def existing_sequences(self, query_id: int, upper_bound: datetime) -> Set[int]:
        """Stored sequences whose windows close at or before upper_bound."""
        async with self.db.session() as session:
            row = (await session.execute(
                select(Query.start, Query.interval).where(Query.id == query_id)
            )).first()
            if row is None:
                raise NotFoundError(f"query {query_id} not found")

            max_seq = (ensure_utc(upper_bound) - ensure_utc(row.start)) // interval_unit(row.interval)
            result = await session.execute(
                select(CollectedValue.seq).where(
                    CollectedValue.query_id == query_id,
                    CollectedValue.seq <= max_seq,
                )
            )
            return set(result.scalars().all())

    async def upsert_collected_value(self, query_id: int, seq: int, value: float, force: bool = False) -> None:
        """
        Write the value for a sequence.

        Writing the same value twice is a no-op. Writing a different value
        raises ConflictError unless force is set, in which case the stored
        value is replaced.
        """
        if seq < 0:
            raise ValueError(f"sequence must not be negative: {seq}")

        async with self.db.session() as session:
            existing = await session.get(CollectedValue, (query_id, seq), with_for_update=True)
            if existing is None:
                session.add(CollectedValue(query_id=query_id, seq=seq, value=value))
                logger.debug("inserted collected value", extra=fields(query_id=query_id, seq=seq, value=value))
            elif existing.value == value:
                logger.debug("collected value already present", extra=fields(query_id=query_id, seq=seq))
            elif force:
                logger.info(
                    "overwriting collected value",
                    extra=fields(query_id=query_id, seq=seq, previous=existing.value, value=value),
                )
                existing.value = value
            else:
                raise ConflictError(query_id, seq, existing.value, value)

    async def get_collected_values(
        self,
        query_id: int,
        from_seq: Optional[int] = None,
        to_seq: Optional[int] = None,
    ) -> List[DataPoint]:
        """Stored values for a query between from_seq and to_seq inclusive."""
        query = await self.get_query(query_id)

        stmt = select(CollectedValue.seq, CollectedValue.value).where(CollectedValue.query_id == query_id)
        if from_seq is not None:
            stmt = stmt.where(CollectedValue.seq >= from_seq)
        if to_seq is not None:
            stmt = stmt.where(CollectedValue.seq <= to_seq)
        stmt = stmt.order_by(CollectedValue.seq)

        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [
                DataPoint(seq=row.seq, time=query.seq_time(row.seq), value=row.value)
                for row in result
            ]

    async def list_collections(self) -> List[CollectionInfo]:
        stmt = (
            select(Query.id.label("query_id"), Query.name, func.max(CollectedValue.seq).label("last_seq"))
            .outerjoin(CollectedValue, CollectedValue.query_id == Query.id)
            .group_by(Query.id, Query.name)
            .order_by(Query.id)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [CollectionInfo(**row._mapping) for row in result]

    # Providers and sources

    async def add_provider(self, name: str, api_type: ApiType, api_url: str, auth_type: AuthType) -> int:
        row = Provider(name=name, api_type=ApiType(api_type), api_url=api_url, auth_type=AuthType(auth_type))
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def list_providers(self) -> List[ProviderInfo]:
        stmt = select(Provider.id, Provider.name, Provider.api_type, Provider.api_url, Provider.auth_type).order_by(Provider.id)
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [ProviderInfo(**row._mapping) for row in result]

    async def add_source(self, name: str, provider_id: int, dataset: Optional[str] = None) -> int:
        row = Source(name=name, provider_id=provider_id, dataset=dataset or None)
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def list_sources(self) -> List[SourceInfo]:
        stmt = _source_select().order_by(Source.id)
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [SourceInfo(**row._mapping) for row in result]

    async def get_source(self, source_id: int) -> SourceInfo:
        stmt = _source_select().where(Source.id == source_id)
        async with self.db.session() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"source {source_id} not found")
        return SourceInfo(**row._mapping)

    async def define_query(
        self,
        source_id: int,
        query: str,
        query_type: QueryType,
        interval: QueryInterval,
        start: datetime,
        name: str = "ad hoc",
    ) -> QueryDefinition:
        """
        Build an unsaved query definition against a stored source.

        The definition has no id, so it can be dispatched but never monitored
        or written to.
        """
        stmt = (
            select(
                Source.dataset,
                Provider.id.label("provider_id"),
                Provider.api_type,
                Provider.api_url,
                Provider.auth_type,
            )
            .join(Provider, Provider.id == Source.provider_id)
            .where(Source.id == source_id)
        )
        async with self.db.session() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"source {source_id} not found")

        return QueryDefinition(
            name=name,
            query=query,
            query_type=query_type,
            interval=interval,
            start=truncate_start(start, interval),
            **row._mapping,
        )
