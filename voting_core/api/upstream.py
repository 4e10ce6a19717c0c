"""Timeout and failure handling for collaborator lookups."""
import asyncio
import logging
from typing import Awaitable, TypeVar

import asyncpg

from ..shared.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_upstream(awaitable: Awaitable[T], timeout: float, name: str) -> T:
    """
    Await a collaborator call bounded by ``timeout`` seconds.

    Timeouts and connection/storage failures become UpstreamUnavailable.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} lookup timed out after {timeout}s")
        raise UpstreamUnavailable(
            f"{name} did not respond in time",
            details={"upstream": name, "timeout_seconds": timeout},
        )
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"{name} lookup failed: {e}")
        raise UpstreamUnavailable(
            f"{name} is unavailable",
            details={"upstream": name},
        ) from e
