"""
Query database model.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum
import enum
from caracol.core.database import Base
from caracol.models.database.providers import enum_values


class QueryInterval(str, enum.Enum):
    """Width of the time window represented by one collected value."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class QueryType(str, enum.Enum):
    """Syntax of the query text."""
    PROMETHEUS = "prometheus"
    ELASTICSEARCH_AGGREGATE = "elasticsearch_aggregate"
    CLOUDWATCH = "cloudwatch"


class Query(Base):
    """Definition of what to collect, from which source, and how often."""

    __tablename__ = "queries"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    source_id = Column(Integer, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False, index=True)
    query = Column(String, nullable=False)
    query_type = Column(SQLEnum(QueryType, name="query_type", values_callable=enum_values), nullable=False)
    interval = Column(SQLEnum(QueryInterval, name="interval_type", values_callable=enum_values), nullable=False)
    start = Column(DateTime(timezone=True), nullable=False)  # Truncated to the interval boundary
    finish = Column(DateTime(timezone=True), nullable=True)  # Exclusive; null means open ended
