"""
AWS CloudWatch metrics querier.

The stored query is a JSON document describing the metric and the statistic:

    {"Namespace": "AWS/EC2", "MetricName": "CPUUtilization",
     "Dimensions": [{"Name": "InstanceId", "Value": "i-0123"}], "Stat": "Average"}
"""
import asyncio
import json
from datetime import datetime, timedelta
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from caracol.backends.base import Querier, RawPoint
from caracol.core.exceptions import BackendError, InvalidIntervalError, MalformedQueryError
from caracol.core.logging import get_logger, fields
from caracol.models.database.queries import QueryInterval
from caracol.services.sequences import ensure_utc

logger = get_logger(__name__)

_PERIODS = {
    QueryInterval.HOURLY: 3600,
    QueryInterval.DAILY: 86400,
    QueryInterval.WEEKLY: 604800,
}

REQUEST_ID = "caracolrequest"


class CloudWatchQuerier(Querier):
    """GetMetricData over one period per window."""

    name = "cloudwatch"

    def __init__(self, region: str, access_key_id: str, secret_access_key: str, client=None):
        if client is None:
            client = boto3.client(
                "cloudwatch",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        self.client = client

    def build_request(self, query: str, from_time: datetime, to_time: datetime, interval: QueryInterval) -> dict:
        try:
            period = _PERIODS[QueryInterval(interval)]
        except (ValueError, KeyError):
            raise InvalidIntervalError(interval) from None

        try:
            metric_def = json.loads(query)
        except ValueError as e:
            raise MalformedQueryError(f"cloudwatch query is not valid JSON: {e}") from e
        if not isinstance(metric_def, dict):
            raise MalformedQueryError("cloudwatch query must be a JSON object")

        stat = metric_def.get("Stat")
        if not stat or not metric_def.get("MetricName"):
            raise MalformedQueryError("cloudwatch query needs MetricName and Stat")

        metric = {"MetricName": metric_def["MetricName"]}
        if metric_def.get("Namespace"):
            metric["Namespace"] = metric_def["Namespace"]
        if metric_def.get("Dimensions"):
            metric["Dimensions"] = metric_def["Dimensions"]

        return {
            "MetricDataQueries": [
                {
                    "Id": REQUEST_ID,
                    "MetricStat": {"Metric": metric, "Period": period, "Stat": stat},
                    "ReturnData": True,
                }
            ],
            "StartTime": ensure_utc(from_time),
            "EndTime": ensure_utc(to_time),
            "ScanBy": "TimestampAscending",
        }

    async def execute(
        self,
        query: str,
        from_time: datetime,
        to_time: datetime,
        interval: QueryInterval,
    ) -> List[RawPoint]:
        params = self.build_request(query, from_time, to_time, interval)
        logger.debug("cloudwatch request", extra=fields(params=params))

        try:
            # Run synchronous boto3 operation in thread pool
            answer = await asyncio.to_thread(self.client.get_metric_data, **params)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"CloudWatch request failed: {e}")
            raise BackendError(f"cloudwatch request failed: {e}") from e

        period = params["MetricDataQueries"][0]["MetricStat"]["Period"]
        return self.parse_response(answer, to_time, period)

    def parse_response(self, answer, to_time: datetime, period: int) -> List[RawPoint]:
        """
        Convert CloudWatch datapoints to closing-instant points.

        CloudWatch stamps a datapoint with the start of its period, so each
        timestamp is moved forward by one period. CloudWatch works at minute
        granularity; a shifted timestamp equal to ``to_time`` truncated to the
        minute is reported at ``to_time`` exactly.
        """
        results = answer.get("MetricDataResults") or []
        if len(results) != 1:
            raise BackendError(f"cloudwatch answered {len(results)} results, expected 1")

        result = results[0]
        if result.get("StatusCode") not in (None, "Complete"):
            raise BackendError(f"cloudwatch result status is {result['StatusCode']}")

        to_time = ensure_utc(to_time)
        to_minute = to_time.replace(second=0, microsecond=0)
        step = timedelta(seconds=period)

        points = []
        for timestamp, value in zip(result.get("Timestamps", []), result.get("Values", [])):
            closing = ensure_utc(timestamp) + step
            if closing == to_minute:
                closing = to_time
            points.append(RawPoint(closing, float(value)))
        return points
