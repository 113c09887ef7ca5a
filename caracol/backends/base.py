"""
Common interface for query backends.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, NamedTuple

from caracol.models.database.queries import QueryInterval


class RawPoint(NamedTuple):
    """A timestamped value as returned by a backend, before window selection."""
    timestamp: datetime
    value: float


class Querier(ABC):
    """
    Executes a query over one window against a single backend.

    Implementations report each value at the closing instant of the window it
    aggregates, so that the caller can pick the point for ``to_time``.
    """

    name: str = "querier"

    @abstractmethod
    async def execute(
        self,
        query: str,
        from_time: datetime,
        to_time: datetime,
        interval: QueryInterval,
    ) -> List[RawPoint]:
        """
        Run the query over ``[from_time, to_time)``.

        Raises:
            BackendError: The backend could not be reached or answered with an error
            ConfigurationError: The query or interval is not usable by this backend
        """
