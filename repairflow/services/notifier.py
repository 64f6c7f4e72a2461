"""Event delivery to estimate parties."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from repairflow.core.exceptions import DependencyError
from repairflow.domain.events import DomainEvent
from repairflow.repositories.interfaces import Notifier
from repairflow.services.dependencies import call_dependency

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Default notifier: writes each notification to the application log."""

    async def notify(self, party_id: str, event_kind: str, payload: dict[str, Any]) -> None:
        logger.info("Notify %s: %s %s", party_id, event_kind, payload)


async def publish(notifier: Notifier, events: Iterable[DomainEvent], *, timeout: float) -> int:
    """Deliver *events* after a committed change; returns how many were delivered.

    A failed delivery is logged and skipped. It never undoes the change
    that produced the event.
    """
    delivered = 0
    for event in events:
        payload = {"estimateId": event.estimate_id, **event.payload}
        try:
            await call_dependency(
                "notifier",
                notifier.notify(event.party_id, event.kind.value, payload),
                timeout,
            )
        except DependencyError:
            logger.exception(
                "Failed to deliver %s for estimate %s to %s",
                event.kind.value,
                event.estimate_id,
                event.party_id,
            )
            continue
        delivered += 1
    return delivered
