"""
Jittered waits and periodic loops.
"""
import asyncio
import random
from typing import Awaitable, Callable


Sleep = Callable[[float], Awaitable[None]]


def jittered(base: float, jitter_fraction: float) -> float:
    """base stretched by a random factor in ``[1, 1 + jitter_fraction]``."""
    if base < 0:
        raise ValueError(f"wait must not be negative: {base}")
    if jitter_fraction < 0:
        raise ValueError(f"jitter fraction must not be negative: {jitter_fraction}")
    return base * (1 + random.uniform(0, jitter_fraction))


async def wait_jittered(base: float, jitter_fraction: float, sleep: Sleep = asyncio.sleep) -> None:
    """Sleep for a jittered duration; cancellation interrupts the wait immediately."""
    await sleep(jittered(base, jitter_fraction))


async def run_forever(
    fn: Callable[[], Awaitable[None]],
    initial_delay: float,
    period: float,
    jitter_fraction: float,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """
    Call fn after initial_delay and then every jittered period until cancelled.

    Errors from fn propagate to the caller.
    """
    await wait_jittered(initial_delay, jitter_fraction, sleep)
    while True:
        await fn()
        await wait_jittered(period, jitter_fraction, sleep)
