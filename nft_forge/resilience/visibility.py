"""
Eventual-visibility poller.

A write accepted by one RPC node is not immediately readable from another,
so a freshly minted account is polled until it shows up.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from ..core.exceptions import ValidationError, VisibilityTimeoutError
from .retry import Sleeper


logger = structlog.get_logger(__name__)

T = TypeVar("T")

Lookup = Callable[[], Awaitable[Optional[T]]]


async def wait_for_visibility(
    lookup: Lookup,
    handle: str,
    max_retries: int = 10,
    delay: float = 3.0,
    sleep: Optional[Sleeper] = None,
    name: str = "lookup",
) -> T:
    """
    Call `lookup` until it returns a value.

    A lookup that raises or returns None counts as "not visible yet".

    Raises:
        ValidationError: when `max_retries` is below 1
        VisibilityTimeoutError: after `max_retries` unsuccessful lookups
    """
    if max_retries < 1:
        raise ValidationError(
            "max_retries must be at least 1",
            {"max_retries": max_retries}
        )
    sleep = sleep or asyncio.sleep
    log = logger.bind(service="visibility_poller", handle=handle, operation=name)

    for attempt in range(1, max_retries + 1):
        try:
            found = await lookup()
        except Exception as e:
            found = None
            log.debug("Lookup failed", attempt=attempt, error=str(e))

        if found is not None:
            if attempt > 1:
                log.info("Resource visible", attempt=attempt)
            return found

        if attempt < max_retries:
            log.info(
                "Waiting for resource to become visible",
                attempt=attempt,
                max_retries=max_retries
            )
            await sleep(delay)

    log.error("Resource never became visible", attempts=max_retries)
    raise VisibilityTimeoutError(handle, max_retries, operation=name)
