"""
Prometheus scrape endpoint for the collector's metrics.
"""
from typing import List, Optional

from fastapi import APIRouter, Query, Response

from caracol.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics(name: Optional[List[str]] = Query(None, alias="name[]")) -> Response:
    """
    Collector gauges and per-query counters in the Prometheus text format.

    Repeating ``name[]`` restricts the answer to the given sample names.
    """
    return Response(
        content=get_metrics(names=name),
        media_type=get_metrics_content_type(),
    )
