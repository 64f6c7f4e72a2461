"""Best-effort fan-out of one repair request to several shops.

There is no batch entity: each recipient gets its own ``Pending`` estimate
and its own outcome, and the caller receives one result per recipient in
the order given.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Literal, Optional

import pydantic
from pydantic import BaseModel

from repairflow.core.exceptions import AppException
from repairflow.domain.estimate import Estimate, utcnow
from repairflow.repositories.interfaces import EstimateRepository, ShopDirectory
from repairflow.services.dependencies import call_dependency

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Broadcast cancelled before this shop was contacted"


class BroadcastResult(BaseModel):
    shop_id: str
    status: Literal["sent", "failed"]
    message: str
    estimate_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def sent(self) -> bool:
        return self.status == "sent"

    @classmethod
    def failed(cls, shop_id: str, message: str) -> "BroadcastResult":
        return cls(shop_id=shop_id, status="failed", message=message)


class BroadcastCoordinator:
    def __init__(
        self,
        repository: EstimateRepository,
        *,
        directory: Optional[ShopDirectory] = None,
        max_concurrency: int = 10,
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._directory = directory
        self._max_concurrency = max(1, max_concurrency)
        self._timeout = timeout
        self._clock = clock

    async def broadcast(
        self,
        requester_id: str,
        request: dict[str, Any],
        recipient_shop_ids: list[str],
        cancel: Optional[asyncio.Event] = None,
    ) -> list[BroadcastResult]:
        """Create one estimate per recipient; wait for every dispatch to settle.

        Once *cancel* is set, recipients not yet dispatched are reported as
        failed. Dispatches already running finish and are not rolled back.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)
        results = await asyncio.gather(
            *(
                self._dispatch(requester_id, request, shop_id, semaphore, cancel)
                for shop_id in recipient_shop_ids
            )
        )
        sent = sum(1 for r in results if r.sent)
        logger.info(
            "Broadcast from %s: %d/%d recipients reached", requester_id, sent, len(results)
        )
        return list(results)

    async def _dispatch(
        self,
        requester_id: str,
        request: dict[str, Any],
        shop_id: str,
        semaphore: asyncio.Semaphore,
        cancel: Optional[asyncio.Event],
    ) -> BroadcastResult:
        async with semaphore:
            if cancel is not None and cancel.is_set():
                return BroadcastResult.failed(shop_id, CANCELLED_MESSAGE)
            return await asyncio.shield(self._create(requester_id, request, shop_id))

    async def _create(self, requester_id: str, request: dict[str, Any], shop_id: str) -> BroadcastResult:
        try:
            if self._directory is not None:
                known = await call_dependency(
                    "shop_directory", self._directory.exists(shop_id), self._timeout
                )
                if not known:
                    return BroadcastResult.failed(shop_id, f"Shop '{shop_id}' not found")

            estimate = Estimate.open(requester_id, shop_id, self._clock(), **request)
            saved = await call_dependency(
                "estimate_repository", self._repo.save(estimate), self._timeout
            )
        except AppException as exc:
            logger.warning("Broadcast to shop %s failed: %s", shop_id, exc.message)
            return BroadcastResult.failed(shop_id, exc.message)
        except pydantic.ValidationError as exc:
            logger.warning("Broadcast to shop %s rejected: %s", shop_id, exc)
            return BroadcastResult.failed(shop_id, "Estimate request is invalid for this shop")

        if not saved:
            return BroadcastResult.failed(shop_id, f"Estimate '{estimate.id}' already exists")
        return BroadcastResult(
            shop_id=shop_id,
            status="sent",
            message="Estimate request sent",
            estimate_id=estimate.id,
        )
