"""
Elasticsearch querier for metric aggregations.

The stored query is the body of a single metric aggregation, for example
``{"avg": {"field": "latency"}}``. It is nested under a date histogram
restricted to the window so that exactly one bucket comes back.
"""
import json
from datetime import datetime
from typing import List, Optional

import httpx

from caracol.backends.base import Querier, RawPoint
from caracol.backends.http import JSONClient
from caracol.core.exceptions import BackendError, InvalidIntervalError, MalformedQueryError
from caracol.core.logging import get_logger, fields
from caracol.models.database.queries import QueryInterval
from caracol.services.sequences import ensure_utc

logger = get_logger(__name__)

_CALENDAR_INTERVALS = {
    QueryInterval.HOURLY: "hour",
    QueryInterval.DAILY: "day",
    QueryInterval.WEEKLY: "week",
}

TIMESTAMP_FIELD = "@timestamp"


def _format_time(t: datetime) -> str:
    return ensure_utc(t).strftime("%Y-%m-%dT%H:%M:%SZ")


class ElasticsearchAggregateQuerier(Querier):
    """Metric aggregations against an index of an Elasticsearch cluster."""

    name = "elasticsearch"

    def __init__(
        self,
        api_url: str,
        index: Optional[str],
        username: str,
        password: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = JSONClient.DEFAULT_TIMEOUT,
    ):
        if not index:
            raise MalformedQueryError("elasticsearch sources need an index as dataset")
        self.api_url = api_url.rstrip("/")
        self.index = index
        self.auth = (username, password)
        self.http = JSONClient(client=client, timeout=timeout)

    def build_request(self, query: str, from_time: datetime, to_time: datetime, interval: QueryInterval) -> dict:
        try:
            calendar_interval = _CALENDAR_INTERVALS[QueryInterval(interval)]
        except (ValueError, KeyError):
            raise InvalidIntervalError(interval) from None

        try:
            aggregation = json.loads(query)
        except ValueError as e:
            raise MalformedQueryError(f"elasticsearch query is not valid JSON: {e}") from e
        if not isinstance(aggregation, dict) or not aggregation:
            raise MalformedQueryError("elasticsearch query must be a JSON object describing one aggregation")

        return {
            "size": 0,
            "query": {
                "range": {
                    TIMESTAMP_FIELD: {
                        "gte": _format_time(from_time),
                        "lt": _format_time(to_time),
                    }
                }
            },
            "aggs": {
                "A": {
                    "date_histogram": {
                        "field": TIMESTAMP_FIELD,
                        "calendar_interval": calendar_interval,
                        "order": {"_key": "desc"},
                    },
                    "aggs": {"result": aggregation},
                }
            },
        }

    async def execute(
        self,
        query: str,
        from_time: datetime,
        to_time: datetime,
        interval: QueryInterval,
    ) -> List[RawPoint]:
        body = self.build_request(query, from_time, to_time, interval)
        url = f"{self.api_url}/{self.index}/_search"
        logger.debug("elasticsearch request", extra=fields(url=url, body=body))

        answer = await self.http.post(url, body, basic_auth=self.auth)
        return self.parse_response(answer, from_time, to_time)

    def parse_response(self, answer, from_time: datetime, to_time: datetime) -> List[RawPoint]:
        """
        Read the single histogram bucket.

        The bucket is keyed by the start of the window; its value is reported
        at the end of the window like every other backend.
        """
        if not isinstance(answer, dict):
            raise BackendError("elasticsearch answer is not an object")
        if answer.get("timed_out"):
            raise BackendError("elasticsearch query timed out")

        try:
            buckets = answer["aggregations"]["A"]["buckets"]
        except (KeyError, TypeError) as e:
            raise BackendError("elasticsearch answer has no aggregation result") from e

        if not buckets:
            return []
        if len(buckets) != 1:
            raise BackendError(f"elasticsearch answered {len(buckets)} buckets, expected 1")

        bucket = buckets[0]
        try:
            bucket_time = ensure_utc(datetime.fromisoformat(bucket["key_as_string"]))
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError("elasticsearch bucket has no usable key") from e
        if bucket_time != ensure_utc(from_time):
            raise BackendError(
                f"elasticsearch bucket starts at {bucket_time.isoformat()}, expected {ensure_utc(from_time).isoformat()}"
            )

        value = (bucket.get("result") or {}).get("value")
        if value is None:
            return []
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BackendError(f"elasticsearch aggregation value is not a number: {value!r}")

        return [RawPoint(ensure_utc(to_time), float(value))]
