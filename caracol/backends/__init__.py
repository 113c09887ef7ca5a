# Query backends package
from caracol.backends.base import Querier, RawPoint
from caracol.backends.cloudwatch import CloudWatchQuerier
from caracol.backends.elasticsearch import ElasticsearchAggregateQuerier
from caracol.backends.grafana import GrafanaCloudQuerier

__all__ = [
    "Querier",
    "RawPoint",
    "CloudWatchQuerier",
    "ElasticsearchAggregateQuerier",
    "GrafanaCloudQuerier",
]
