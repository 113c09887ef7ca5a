"""
Backend dispatch tests.
"""
from datetime import timedelta

import pytest

from conftest import START, make_query
from caracol.backends import (
    CloudWatchQuerier,
    ElasticsearchAggregateQuerier,
    GrafanaCloudQuerier,
    Querier,
    RawPoint,
)
from caracol.core.exceptions import (
    AmbiguousDataPointError,
    ConfigurationError,
    NoDataPointError,
    UnsupportedBackendError,
)
from caracol.models.database import ApiType, AuthType, QueryType
from caracol.services.dispatch import build_querier, dispatch_query
from caracol.services.secrets import SecretType


class StaticQuerier(Querier):
    """Returns fixed points and records the requested windows."""

    name = "static"

    def __init__(self, points):
        self.points = points
        self.calls = []

    async def execute(self, query, from_time, to_time, interval):
        self.calls.append((query, from_time, to_time, interval))
        return self.points


class TestDispatchQuery:
    """Tests for window-end point selection."""

    async def test_selects_only_the_window_end_point(self):
        query = make_query()
        window_start = START + timedelta(hours=4)
        window_end = START + timedelta(hours=5)
        querier = StaticQuerier([
            RawPoint(window_end, 12.5),
            RawPoint(window_start, 99.0),
            RawPoint(START + timedelta(days=3), -1.0),
        ])

        point = await dispatch_query(query, 5, {}, querier=querier)

        assert point.seq == 5
        assert point.time == window_end
        assert point.value == 12.5
        assert querier.calls == [(query.query, window_start, window_end, query.interval)]

    async def test_no_matching_point(self):
        querier = StaticQuerier([RawPoint(START, 1.0)])

        with pytest.raises(NoDataPointError):
            await dispatch_query(make_query(), 3, {}, querier=querier)

    async def test_empty_answer(self):
        with pytest.raises(NoDataPointError):
            await dispatch_query(make_query(), 3, {}, querier=StaticQuerier([]))

    async def test_several_points_at_window_end(self):
        end = START + timedelta(hours=3)
        querier = StaticQuerier([RawPoint(end, 1.0), RawPoint(end, 2.0)])

        with pytest.raises(AmbiguousDataPointError):
            await dispatch_query(make_query(), 3, {}, querier=querier)


class TestBuildQuerier:
    """Tests for closed backend selection."""

    def test_grafana(self):
        querier = build_querier(make_query(), {SecretType.BEARER_TOKEN: "token"})

        assert isinstance(querier, GrafanaCloudQuerier)
        assert querier.datasource_uid == "prom-uid"

    def test_elasticsearch(self):
        query = make_query(
            api_type=ApiType.ELASTICSEARCH,
            query_type=QueryType.ELASTICSEARCH_AGGREGATE,
            auth_type=AuthType.BASIC_AUTH,
            dataset="logs-*",
            query='{"avg": {"field": "latency"}}',
        )

        querier = build_querier(query, {SecretType.USERNAME: "u", SecretType.PASSWORD: "p"})

        assert isinstance(querier, ElasticsearchAggregateQuerier)
        assert querier.auth == ("u", "p")

    def test_cloudwatch(self):
        query = make_query(
            api_type=ApiType.CLOUDWATCH,
            query_type=QueryType.CLOUDWATCH,
            auth_type=AuthType.AWS_ACCESS_KEY,
            dataset=None,
        )
        secrets = {
            SecretType.REGION: "eu-west-1",
            SecretType.ACCESS_KEY_ID: "AKIDEXAMPLE",
            SecretType.SECRET_ACCESS_KEY: "secret",
        }

        assert isinstance(build_querier(query, secrets), CloudWatchQuerier)

    def test_unsupported_combination(self):
        query = make_query(api_type=ApiType.GRAFANACLOUD, query_type=QueryType.CLOUDWATCH)

        with pytest.raises(UnsupportedBackendError):
            build_querier(query, {SecretType.BEARER_TOKEN: "token"})

    def test_auth_type_without_required_secret(self):
        query = make_query(auth_type=AuthType.BASIC_AUTH)

        with pytest.raises(ConfigurationError):
            build_querier(query, {SecretType.USERNAME: "u", SecretType.PASSWORD: "p"})
