"""Concurrent fan-out inside a stage.

A branch that raises (typically RateLimitError) hands control back to the
stage retry. Its siblings are cancelled and awaited first, so no provider call
of the failed attempt is still running when the next attempt starts.
"""

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """Await every branch and return the results in order.

    Raises:
        Exception: The first branch error, after every sibling has been
            cancelled and has finished.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug("Cancelling %d sibling branches", len(pending))
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
