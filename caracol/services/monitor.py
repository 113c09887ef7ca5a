"""
Per-query monitor.

A monitor repeatedly reconciles one query: it finds the sequences that are
missing from the store, dispatches them oldest first and stores the results.
"""
import asyncio
import enum
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from caracol.backends.base import Querier
from caracol.core.config import settings
from caracol.core.exceptions import BackendError, ConflictError, DataShapeError, NotFoundError
from caracol.core.logging import get_logger, fields
from caracol.core.metrics import query_collection_total, query_error_total
from caracol.core.scheduling import Sleep, wait_jittered
from caracol.models.schemas.collection import DataPoint, PassSummary, QueryDefinition
from caracol.services.dispatch import build_querier, dispatch_query
from caracol.services.gaps import find_gaps
from caracol.services.secrets import ProviderSecrets

logger = get_logger(__name__)

Dispatch = Callable[[QueryDefinition, int, ProviderSecrets], Awaitable[DataPoint]]

# Errors which abort the current pass; the next pass starts over from the store.
# asyncpg raises OSError subclasses for unreachable servers and
# asyncio.TimeoutError for command_timeout, neither wrapped by SQLAlchemy.
STORAGE_ERRORS = (SQLAlchemyError, ConflictError, OSError, asyncio.TimeoutError)


class MonitorState(str, enum.Enum):
    """Monitor lifecycle state."""
    IDLE = "idle"
    RECONCILING = "reconciling"
    DISPATCHING = "dispatching"
    STORING = "storing"
    CANCELLED = "cancelled"
    STOPPED = "stopped"


class QueryMonitor:
    """
    Reconciliation loop for a single query.

    Soft errors (backend failures and unusable answers) leave the sequence as a
    gap for the next pass. Storage errors abort the pass. Configuration errors
    end the monitor.
    """

    def __init__(
        self,
        store,
        query: QueryDefinition,
        secrets: ProviderSecrets,
        dispatch: Optional[Dispatch] = None,
        sleep: Sleep = asyncio.sleep,
        now: Optional[Callable[[], datetime]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        initial_delay: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_jitter: Optional[float] = None,
        dispatch_delay: Optional[float] = None,
        dispatch_jitter: Optional[float] = None,
    ):
        if query.id is None:
            raise ValueError("only stored queries can be monitored")

        self.store = store
        self.query = query
        self.query_id = query.id
        self.secrets = secrets
        self.http_client = http_client
        self.dispatch = dispatch or self._dispatch
        self.sleep = sleep
        self.now = now or (lambda: datetime.now(timezone.utc))

        self.initial_delay = settings.MONITOR_INITIAL_DELAY if initial_delay is None else initial_delay
        self.poll_interval = settings.MONITOR_POLL_INTERVAL if poll_interval is None else poll_interval
        self.poll_jitter = settings.MONITOR_POLL_JITTER if poll_jitter is None else poll_jitter
        self.dispatch_delay = settings.DISPATCH_DELAY if dispatch_delay is None else dispatch_delay
        self.dispatch_jitter = settings.DISPATCH_JITTER if dispatch_jitter is None else dispatch_jitter

        self.state = MonitorState.IDLE
        self._label = str(self.query_id)
        self._querier: Optional[Querier] = None

    def _log_fields(self, **kwargs):
        return fields(query_id=self.query_id, **kwargs)

    async def _dispatch(self, query: QueryDefinition, seq: int, secrets: ProviderSecrets) -> DataPoint:
        # Backend clients are built once per monitor, off the event loop
        if self._querier is None:
            self._querier = await asyncio.to_thread(build_querier, query, secrets, self.http_client)
            logger.debug("built querier", extra=self._log_fields(backend=self._querier.name))
        return await dispatch_query(query, seq, secrets, querier=self._querier)

    async def run(self) -> None:
        """
        Reconcile until cancelled or until the query disappears.

        Raises:
            ConfigurationError: The query cannot be collected as configured
        """
        logger.info("starting monitor", extra=self._log_fields(name=self.query.name))
        try:
            await self.sleep(self.initial_delay)
            while True:
                try:
                    await self.monitor_once()
                except NotFoundError:
                    self.state = MonitorState.STOPPED
                    logger.warning("query no longer exists, stopping monitor", extra=self._log_fields())
                    return
                except STORAGE_ERRORS as e:
                    self.state = MonitorState.IDLE
                    query_error_total.labels(query_id=self._label).inc()
                    logger.error(f"collection pass aborted: {e}", extra=self._log_fields())

                await wait_jittered(self.poll_interval, self.poll_jitter, self.sleep)
        except asyncio.CancelledError:
            self.state = MonitorState.CANCELLED
            logger.info("monitor cancelled", extra=self._log_fields())
            raise

    async def monitor_once(self, stop_on_error: bool = False) -> PassSummary:
        """
        Run one reconciliation pass.

        Args:
            stop_on_error: Raise the first soft error instead of moving on to
                the next gap

        Returns:
            Counts of gaps found, values stored and soft errors
        """
        self.state = MonitorState.RECONCILING
        self.query = await self.store.get_query(self.query_id)
        gaps = await find_gaps(self.store, self.query, self.now())
        summary = PassSummary(query_id=self.query_id, gaps=len(gaps))

        if not gaps:
            logger.info("no gaps found", extra=self._log_fields())
            self.state = MonitorState.IDLE
            return summary

        logger.info(
            f"found {len(gaps)} gaps",
            extra=self._log_fields(first_seq=gaps[0], last_seq=gaps[-1]),
        )

        for i, seq in enumerate(gaps):
            if i > 0:
                await wait_jittered(self.dispatch_delay, self.dispatch_jitter, self.sleep)

            self.state = MonitorState.DISPATCHING
            try:
                point = await self.dispatch(self.query, seq, self.secrets)
            except (BackendError, DataShapeError) as e:
                summary.errors += 1
                query_error_total.labels(query_id=self._label).inc()
                logger.warning(f"failed to collect sequence: {e}", extra=self._log_fields(seq=seq))
                if stop_on_error:
                    raise
                continue

            self.state = MonitorState.STORING
            await self.store.upsert_collected_value(self.query_id, point.seq, point.value)
            summary.stored += 1
            query_collection_total.labels(query_id=self._label).inc()
            logger.info("stored value", extra=self._log_fields(seq=point.seq, value=point.value))

        if summary.errors:
            logger.warning(
                "collection pass finished with errors",
                extra=self._log_fields(gaps=summary.gaps, stored=summary.stored, errors=summary.errors),
            )
        else:
            logger.info(
                "collection pass finished",
                extra=self._log_fields(gaps=summary.gaps, stored=summary.stored),
            )
        self.state = MonitorState.IDLE
        return summary
