"""
Pydantic schemas for query definitions and collected data.
"""
from typing import Optional, Tuple
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from caracol.models.database.providers import ApiType, AuthType
from caracol.models.database.queries import QueryInterval, QueryType
from caracol.services import sequences


class QueryDefinition(BaseModel):
    """A query joined with the source and provider it runs against."""
    id: Optional[int] = Field(None, description="Query ID; unset for ad hoc queries")
    name: str
    query: str = Field(..., description="Backend query text")
    interval: QueryInterval
    start: datetime = Field(..., description="Start of the timeline, on an interval boundary")
    finish: Optional[datetime] = Field(None, description="Exclusive end of activity")
    query_type: QueryType
    dataset: Optional[str] = Field(None, description="Dataset qualifier of the source")
    provider_id: int
    api_type: ApiType
    api_url: str
    auth_type: AuthType

    @field_validator("start", "finish")
    @classmethod
    def normalize_utc(cls, v):
        if v is None:
            return v
        return sequences.ensure_utc(v)

    def seq_time(self, seq: int) -> datetime:
        """Closing instant of the window for seq."""
        return sequences.seq_time(self.start, self.interval, seq)

    def seq_after(self, t: datetime) -> int:
        return sequences.seq_after(self.start, self.interval, t)

    def window_for(self, seq: int) -> Tuple[datetime, datetime]:
        return sequences.window_for(self.start, self.interval, seq)

    def is_active(self, now: datetime) -> bool:
        return self.finish is None or self.finish > sequences.ensure_utc(now)


class DataPoint(BaseModel):
    """The single value collected for one sequence of a query."""
    seq: int = Field(..., ge=0)
    time: datetime
    value: float


class PassSummary(BaseModel):
    """Outcome of one reconciliation pass of a monitor."""
    query_id: int
    gaps: int = 0
    stored: int = 0
    errors: int = 0


class ProviderInfo(BaseModel):
    id: int
    name: str
    api_type: ApiType
    api_url: str
    auth_type: AuthType


class SourceInfo(BaseModel):
    id: int
    name: str
    provider_id: int
    provider_name: str
    dataset: Optional[str] = None


class QueryInfo(BaseModel):
    id: int
    name: str
    source_name: str
    provider_name: str
    query: str
    query_type: QueryType
    interval: QueryInterval
    start: datetime
    finish: Optional[datetime] = None


class CollectionInfo(BaseModel):
    query_id: int
    name: str
    last_seq: Optional[int] = None
