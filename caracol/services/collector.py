"""
Query collector.

Keeps exactly one monitor running for every active query. Monitors run as
tasks in the collector's task group, so cancelling the collector cancels and
drains all of them.
"""
import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, Optional, Set, Tuple

import httpx

from caracol.core.config import settings
from caracol.core.exceptions import MissingSecretError, UnsupportedAuthTypeError
from caracol.core.logging import get_logger, fields
from caracol.core.metrics import active_queries, monitored_queries
from caracol.core.registry import KeyedRegistry
from caracol.core.scheduling import Sleep, run_forever
from caracol.models.schemas.collection import QueryDefinition
from caracol.services.monitor import QueryMonitor
from caracol.services.secrets import ProviderSecrets, SecretStore

logger = get_logger(__name__)

MonitorFactory = Callable[[QueryDefinition, ProviderSecrets], QueryMonitor]


class QueryCollector:
    """
    Top-level collection loop.

    The registry may be shared between collectors; a query id present in it
    already has a live monitor and is left alone.
    """

    def __init__(
        self,
        store,
        secret_store: SecretStore,
        registry: KeyedRegistry,
        monitor_factory: Optional[MonitorFactory] = None,
        sleep: Sleep = asyncio.sleep,
        now: Optional[Callable[[], datetime]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: Optional[float] = None,
        poll_jitter: Optional[float] = None,
    ):
        self.store = store
        self.secret_store = secret_store
        self.registry = registry
        self.sleep = sleep
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.http_client = http_client
        self.monitor_factory = monitor_factory or self._default_monitor
        self.poll_interval = settings.COLLECTOR_POLL_INTERVAL if poll_interval is None else poll_interval
        self.poll_jitter = settings.COLLECTOR_POLL_JITTER if poll_jitter is None else poll_jitter

        self._task_group: Optional[asyncio.TaskGroup] = None
        self._tasks: Dict[int, Tuple[QueryMonitor, asyncio.Task]] = {}

    def _default_monitor(self, query: QueryDefinition, secrets: ProviderSecrets) -> QueryMonitor:
        return QueryMonitor(self.store, query, secrets, sleep=self.sleep, now=self.now, http_client=self.http_client)

    @property
    def live_monitors(self) -> Set[int]:
        """Query ids of the monitors launched by this collector that are still running."""
        return {query_id for query_id, (_, task) in self._tasks.items() if not task.done()}

    async def run(self) -> None:
        """
        Poll for active queries until cancelled.

        Returns only after every monitor task has exited.
        """
        logger.info("starting collector", extra=fields(poll_interval=self.poll_interval))
        try:
            async with asyncio.TaskGroup() as task_group:
                self._task_group = task_group
                await run_forever(self.poll_once, 0, self.poll_interval, self.poll_jitter, self.sleep)
        finally:
            self._task_group = None
            logger.info("collector stopped")

    async def poll_once(self) -> None:
        """One pass: launch monitors for new active queries and retire stale ones."""
        try:
            queries = await self.store.list_active_queries(self.now())
        except Exception as e:
            logger.error(f"failed to list active queries: {e}", exc_info=True)
            return

        active_queries.set(len(queries))
        launched = 0
        for query in queries:
            try:
                secrets = self.secret_store.secrets(query.provider_id, query.auth_type)
            except (MissingSecretError, UnsupportedAuthTypeError) as e:
                logger.error(
                    f"skipping query: {e}",
                    extra=fields(query_id=query.id, provider_id=query.provider_id),
                )
                continue
            if self._launch(query, secrets):
                launched += 1

        retired = self._retire({query.id for query in queries})
        logger.info(
            "collector pass finished",
            extra=fields(active=len(queries), launched=launched, retired=retired, monitored=len(self.registry)),
        )

    def _launch(self, query: QueryDefinition, secrets: ProviderSecrets) -> bool:
        if self._task_group is None:
            raise RuntimeError("collector is not running")

        monitor = self.monitor_factory(query, secrets)
        if not self.registry.insert_if_absent(query.id, monitor):
            return False

        monitored_queries.inc()
        task = self._task_group.create_task(self._supervise(monitor), name=f"monitor-{query.id}")
        # Deregister from a done callback so a task cancelled before its first
        # step is still cleaned up.
        task.add_done_callback(partial(self._deregister, query.id, monitor))
        self._tasks[query.id] = (monitor, task)
        logger.info("launched monitor", extra=fields(query_id=query.id, name=query.name))
        return True

    def _retire(self, active_ids: Set[int]) -> int:
        retired = 0
        for query_id, (_, task) in list(self._tasks.items()):
            if query_id not in active_ids and not task.done():
                logger.info("retiring monitor for inactive query", extra=fields(query_id=query_id))
                task.cancel()
                retired += 1
        return retired

    async def _supervise(self, monitor: QueryMonitor) -> None:
        try:
            await monitor.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Never let one query take down the task group
            logger.error(
                f"monitor exited with error: {e}",
                exc_info=True,
                extra=fields(query_id=monitor.query_id),
            )
        else:
            logger.info("monitor exited", extra=fields(query_id=monitor.query_id))

    def _deregister(self, query_id: int, monitor: QueryMonitor, task: asyncio.Task) -> None:
        self.registry.remove(query_id, monitor)
        monitored_queries.dec()
        entry = self._tasks.get(query_id)
        if entry is not None and entry[1] is task:
            del self._tasks[query_id]
