"""
Source database model.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from caracol.core.database import Base


class Source(Base):
    """A dataset within a provider, e.g. a Grafana datasource uid or an Elasticsearch index."""

    __tablename__ = "sources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    dataset = Column(String, nullable=True)

    # Only one provider_id/dataset combination should be allowed
    __table_args__ = (
        UniqueConstraint('provider_id', 'dataset', name='uq_sources_provider_id_dataset'),
    )
