"""Serialised, version-checked mutation of a single estimate."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable
from weakref import WeakValueDictionary

from repairflow.core.exceptions import ConflictError, NotFoundError
from repairflow.domain.estimate import Estimate
from repairflow.domain.state_machine import Transition
from repairflow.repositories.interfaces import EstimateRepository
from repairflow.services.dependencies import call_dependency

logger = logging.getLogger(__name__)


class ConflictResolver:
    """At most one writer wins per estimate id.

    Writers in the same event loop queue on a per-id ``asyncio.Lock`` and
    see each other's result. Writers elsewhere (another loop, thread or
    process) are caught by the repository's version compare-and-set.
    """

    def __init__(self, repository: EstimateRepository, *, timeout: float):
        self._repo = repository
        self._timeout = timeout
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, estimate_id: str) -> asyncio.Lock:
        lock = self._locks.get(estimate_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[estimate_id] = lock
        return lock

    async def load(self, estimate_id: str) -> Estimate:
        estimate = await call_dependency(
            "estimate_repository", self._repo.find_by_id(estimate_id), self._timeout
        )
        if estimate is None:
            raise NotFoundError("Estimate", estimate_id)
        return estimate

    async def mutate(
        self, estimate_id: str, transition: Callable[[Estimate], Transition]
    ) -> Transition:
        """Load, apply *transition*, and persist with a version check."""
        lock = self._lock_for(estimate_id)
        async with lock:
            current = await self.load(estimate_id)
            updated, events = transition(current)
            updated = updated.model_copy(update={"version": current.version + 1})
            saved = await call_dependency(
                "estimate_repository",
                self._repo.save(updated, expected_version=current.version),
                self._timeout,
            )
            if not saved:
                logger.info(
                    "Version conflict on estimate %s (expected v%d)", estimate_id, current.version
                )
                raise ConflictError(
                    f"Estimate '{estimate_id}' was modified by another request", estimate_id
                )
        return updated, events
