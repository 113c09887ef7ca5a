"""
Collected value database model.
"""
from sqlalchemy import Column, Integer, Float, ForeignKey
from caracol.core.database import Base


class CollectedValue(Base):
    """One collected sample; seq indexes the window in the owning query's timeline."""

    __tablename__ = "collections"

    query_id = Column(Integer, ForeignKey("queries.id", ondelete="CASCADE"), primary_key=True)
    seq = Column(Integer, primary_key=True)
    value = Column(Float, nullable=False)
