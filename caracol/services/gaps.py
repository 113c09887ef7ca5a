"""
Gap detection for a query's collection.
"""
from datetime import datetime, timezone
from typing import List, Optional

from caracol.core.logging import get_logger, fields
from caracol.models.schemas.collection import QueryDefinition
from caracol.services.sequences import ensure_utc

logger = get_logger(__name__)


async def find_gaps(store, query: QueryDefinition, now: Optional[datetime] = None) -> List[int]:
    """
    Find the sequences whose windows have closed but have no stored value.

    The expected range is recomputed from the query definition and the store
    on every call; nothing is cursored, so manual edits to the store are
    picked up by the next call.

    Args:
        store: Collection store providing ``existing_sequences``
        query: Query definition
        now: Current time, defaults to the wall clock

    Returns:
        Missing sequence numbers in ascending order
    """
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    upper = now
    if query.finish is not None and query.finish < now:
        upper = query.finish
    if upper < query.start:
        return []

    last_expected = query.seq_after(upper) - 1
    if last_expected < 0:
        return []

    existing = await store.existing_sequences(query.id, upper)
    gaps = [seq for seq in range(last_expected + 1) if seq not in existing]

    logger.debug(
        "computed collection gaps",
        extra=fields(query_id=query.id, last_expected=last_expected, existing=len(existing), gaps=len(gaps)),
    )
    return gaps
