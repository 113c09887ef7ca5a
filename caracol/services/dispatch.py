"""
Backend dispatch: run a query for one sequence and pick the value for it.
"""
import asyncio
from typing import List, Optional

import httpx

from caracol.backends.base import Querier, RawPoint
from caracol.backends.cloudwatch import CloudWatchQuerier
from caracol.backends.elasticsearch import ElasticsearchAggregateQuerier
from caracol.backends.grafana import GrafanaCloudQuerier
from caracol.core.config import settings
from caracol.core.exceptions import (
    AmbiguousDataPointError,
    ConfigurationError,
    NoDataPointError,
    UnsupportedBackendError,
)
from caracol.core.logging import get_logger, fields
from caracol.models.database.providers import ApiType
from caracol.models.database.queries import QueryType
from caracol.models.schemas.collection import DataPoint, QueryDefinition
from caracol.services.secrets import ProviderSecrets, SecretType

logger = get_logger(__name__)


def _secret(secrets: ProviderSecrets, kind: SecretType, query: QueryDefinition) -> str:
    try:
        return secrets[kind]
    except KeyError:
        raise ConfigurationError(
            f"provider {query.provider_id} with auth type {query.auth_type.value} does not supply {kind.value}"
        ) from None


def build_querier(
    query: QueryDefinition,
    secrets: ProviderSecrets,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> Querier:
    """
    Select the querier for the provider's API type and the query's type.

    Raises:
        UnsupportedBackendError: The combination has no querier
    """
    timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT

    match (query.api_type, query.query_type):
        case (ApiType.GRAFANACLOUD, QueryType.PROMETHEUS):
            return GrafanaCloudQuerier(
                query.api_url,
                query.dataset,
                _secret(secrets, SecretType.BEARER_TOKEN, query),
                client=http_client,
                timeout=timeout,
            )
        case (ApiType.ELASTICSEARCH, QueryType.ELASTICSEARCH_AGGREGATE):
            return ElasticsearchAggregateQuerier(
                query.api_url,
                query.dataset,
                _secret(secrets, SecretType.USERNAME, query),
                _secret(secrets, SecretType.PASSWORD, query),
                client=http_client,
                timeout=timeout,
            )
        case (ApiType.CLOUDWATCH, QueryType.CLOUDWATCH):
            return CloudWatchQuerier(
                _secret(secrets, SecretType.REGION, query),
                _secret(secrets, SecretType.ACCESS_KEY_ID, query),
                _secret(secrets, SecretType.SECRET_ACCESS_KEY, query),
            )
        case (api_type, query_type):
            raise UnsupportedBackendError(api_type.value, query_type.value)


def select_point(query: QueryDefinition, seq: int, points: List[RawPoint]) -> DataPoint:
    """
    Pick the point stamped exactly at the end of the sequence's window.

    Raises:
        NoDataPointError: No point closes the window
        AmbiguousDataPointError: Several points close the window
    """
    _, to_time = query.window_for(seq)
    matches = [point for point in points if point.timestamp == to_time]

    if not matches:
        raise NoDataPointError(
            f"query {query.id} seq {seq}: no point at {to_time.isoformat()} among {len(points)} returned"
        )
    if len(matches) > 1:
        raise AmbiguousDataPointError(
            f"query {query.id} seq {seq}: {len(matches)} points at {to_time.isoformat()}"
        )
    return DataPoint(seq=seq, time=to_time, value=matches[0].value)


async def dispatch_query(
    query: QueryDefinition,
    seq: int,
    secrets: ProviderSecrets,
    querier: Optional[Querier] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> DataPoint:
    """
    Execute the query over the window of seq and return the value for it.

    Args:
        query: Query definition
        seq: Sequence to collect
        secrets: Secrets of the query's provider
        querier: Querier to reuse; otherwise one is built for the provider
            in a worker thread
        http_client: Shared HTTP client for HTTP based backends

    Returns:
        The data point closing the window
    """
    from_time, to_time = query.window_for(seq)
    if querier is None:
        querier = await asyncio.to_thread(build_querier, query, secrets, http_client)

    logger.info(
        "executing query",
        extra=fields(
            query_id=query.id,
            seq=seq,
            backend=querier.name,
            from_time=from_time.isoformat(),
            to_time=to_time.isoformat(),
        ),
    )
    points = await querier.execute(query.query, from_time, to_time, query.interval)
    for point in points:
        logger.debug(
            "received point",
            extra=fields(query_id=query.id, seq=seq, timestamp=point.timestamp.isoformat(), value=point.value),
        )

    return select_point(query, seq, points)
