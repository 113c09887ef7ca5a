# Schemas package
from caracol.models.schemas.collection import (
    QueryDefinition,
    DataPoint,
    PassSummary,
    ProviderInfo,
    SourceInfo,
    QueryInfo,
    CollectionInfo,
)

__all__ = [
    "QueryDefinition",
    "DataPoint",
    "PassSummary",
    "ProviderInfo",
    "SourceInfo",
    "QueryInfo",
    "CollectionInfo",
]
