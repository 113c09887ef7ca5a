"""
Grafana Cloud querier for Prometheus expressions.

Queries go through the Grafana data source query API as instant queries
evaluated at the end of the window.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx

from caracol.backends.base import Querier, RawPoint
from caracol.backends.http import JSONClient
from caracol.core.exceptions import BackendError, InvalidIntervalError
from caracol.core.logging import get_logger, fields
from caracol.models.database.queries import QueryInterval

logger = get_logger(__name__)

_STEPS = {
    QueryInterval.HOURLY: ("1h", timedelta(hours=1)),
    QueryInterval.DAILY: ("1d", timedelta(days=1)),
}

_REF_ID = "A"


def _epoch_ms(t: datetime) -> int:
    return int(t.timestamp()) * 1000


class GrafanaCloudQuerier(Querier):
    """Prometheus queries against a Grafana Cloud stack."""

    name = "grafanacloud"

    def __init__(
        self,
        api_url: str,
        datasource_uid: Optional[str],
        bearer_token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = JSONClient.DEFAULT_TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.datasource_uid = datasource_uid
        self.bearer_token = bearer_token
        self.http = JSONClient(client=client, timeout=timeout)

    def build_request(self, query: str, from_time: datetime, to_time: datetime, interval: QueryInterval) -> dict:
        try:
            step, unit = _STEPS[QueryInterval(interval)]
        except (ValueError, KeyError):
            raise InvalidIntervalError(interval) from None

        max_points = max(1, int((to_time - from_time) / unit))
        return {
            "queries": [
                {
                    "refId": _REF_ID,
                    "expr": query,
                    "format": "table",
                    "range": False,
                    "instant": True,
                    "datasource": {"uid": self.datasource_uid},
                    "maxDataPoints": max_points,
                    "interval": step,
                }
            ],
            # from is exclusive on the Grafana side
            "from": str(_epoch_ms(from_time + timedelta(microseconds=1))),
            "to": str(_epoch_ms(to_time)),
        }

    async def execute(
        self,
        query: str,
        from_time: datetime,
        to_time: datetime,
        interval: QueryInterval,
    ) -> List[RawPoint]:
        body = self.build_request(query, from_time, to_time, interval)
        logger.debug("grafana request", extra=fields(url=self.api_url, body=body))

        answer = await self.http.post(f"{self.api_url}/api/ds/query", body, bearer_token=self.bearer_token)
        return self.parse_response(answer)

    def parse_response(self, answer) -> List[RawPoint]:
        """
        Extract the points of the first frame.

        The frame holds two columns: epoch milliseconds and values.
        """
        try:
            frames = answer["results"][_REF_ID].get("frames") or []
        except (KeyError, TypeError, AttributeError) as e:
            raise BackendError("grafana answer has no result for the query") from e

        if not frames:
            return []

        try:
            times, values = frames[0]["data"]["values"][:2]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError("grafana answer has an unexpected frame layout") from e

        points = []
        for ms, value in zip(times, values):
            if value is None:
                continue
            try:
                timestamp = datetime.fromtimestamp(0, timezone.utc) + timedelta(milliseconds=int(ms))
                points.append(RawPoint(timestamp, float(value)))
            except (TypeError, ValueError) as e:
                raise BackendError(f"grafana answer has an invalid point: {ms!r}, {value!r}") from e
        return points
