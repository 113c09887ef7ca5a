# Database models package
from caracol.models.database.providers import Provider, ApiType, AuthType
from caracol.models.database.sources import Source
from caracol.models.database.queries import Query, QueryInterval, QueryType
from caracol.models.database.collected_values import CollectedValue

__all__ = [
    "Provider",
    "ApiType",
    "AuthType",
    "Source",
    "Query",
    "QueryInterval",
    "QueryType",
    "CollectedValue",
]
