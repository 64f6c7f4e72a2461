"""Bounded calls into external collaborators.

Every repository, notifier and AI call made by the workflow goes through
:func:`call_dependency`, so a slow or failing collaborator always surfaces
as one of two errors: :class:`DependencyTimeoutError` or
:class:`DependencyError` (with the original exception as ``__cause__``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from repairflow.core.exceptions import AppException, DependencyError, DependencyTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_dependency(name: str, awaitable: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s timed out after %.2fs", name, timeout)
        raise DependencyTimeoutError(name, timeout) from exc
    except AppException:
        raise
    except Exception as exc:
        logger.error("%s failed: %s", name, exc)
        raise DependencyError(name, f"{name} failed: {exc}") from exc
