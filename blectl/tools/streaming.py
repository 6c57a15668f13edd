"""Helpers for sampling notification streams inside tools."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

from blectl.core.notifications import NotificationStream


async def collect_samples(
    stream: NotificationStream,
    *,
    limit: int | None,
    timeout: float,
    accept: Callable[[bytes], bool] | None = None,
) -> tuple[list[bytes], float]:
    """Gather payloads until ``limit`` accepted ones (if set), stream end or ``timeout``.

    Returns the raw payloads and the elapsed seconds.
    """
    samples: list[bytes] = []
    accepted = 0
    started = time.monotonic()
    with contextlib.suppress(TimeoutError):
        async with asyncio.timeout(timeout):
            async for value in stream:
                samples.append(value)
                if accept is None or accept(value):
                    accepted += 1
                if limit is not None and accepted >= limit:
                    break
    return samples, time.monotonic() - started
