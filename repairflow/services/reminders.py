"""Expiry reminders: scheduling, listing and dispatch."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from repairflow.core.exceptions import DependencyError
from repairflow.domain.estimate import Estimate
from repairflow.domain.events import EventKind
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType
from repairflow.repositories.interfaces import Notifier, ReminderRepository
from repairflow.services.dependencies import call_dependency

logger = logging.getLogger(__name__)


def _describe(hours: int) -> str:
    return "1 hour" if hours == 1 else f"{hours} hours"


class ReminderService:
    def __init__(
        self,
        repository: ReminderRepository,
        notifier: Notifier,
        *,
        offsets_hours: Iterable[int] = (24, 1),
        timeout: float = 5.0,
    ):
        self._repo = repository
        self._notifier = notifier
        # Largest offset first; the smallest one is the final reminder
        self._offsets = sorted({h for h in offsets_hours if h > 0}, reverse=True)
        self._timeout = timeout

    def plan(self, estimate: Estimate, expires_at: datetime, now: datetime) -> list[Reminder]:
        """Reminders for *expires_at* whose fire time is still ahead of *now*."""
        reminders: list[Reminder] = []
        for index, hours in enumerate(self._offsets):
            remind_at = expires_at - timedelta(hours=hours)
            if remind_at <= now:
                continue
            final = index == len(self._offsets) - 1
            reminders.append(
                Reminder(
                    estimate_id=estimate.id,
                    user_id=estimate.requester_id,
                    shop_id=estimate.recipient_shop_id,
                    remind_at=remind_at,
                    type=ReminderType.EXPIRY_FINAL if final else ReminderType.EXPIRY_WARNING,
                    message=f"Your estimate expires in {_describe(hours)}",
                )
            )
        return reminders

    async def schedule(self, estimate: Estimate, now: datetime) -> list[Reminder]:
        """Replace any pending reminders for *estimate* with a fresh plan."""
        cancelled = await call_dependency(
            "reminder_repository", self._repo.cancel_pending(estimate.id), self._timeout
        )
        reminders = self.plan(estimate, estimate.expires_at, now) if estimate.expires_at else []
        if reminders:
            added = await call_dependency(
                "reminder_repository", self._repo.add(reminders), self._timeout
            )
            if not added:
                raise DependencyError(
                    "reminder_repository", f"Reminders for estimate '{estimate.id}' were not stored"
                )
        logger.info(
            "Scheduled %d reminder(s) for estimate %s (%d cancelled)",
            len(reminders),
            estimate.id,
            cancelled,
        )
        return reminders

    async def list_for(
        self,
        party_ids: set[str],
        *,
        user_id: Optional[str] = None,
        shop_id: Optional[str] = None,
        status: Optional[ReminderStatus] = ReminderStatus.PENDING,
        type: Optional[ReminderType] = None,
    ) -> list[Reminder]:
        reminders = await call_dependency(
            "reminder_repository",
            self._repo.list(user_id=user_id, shop_id=shop_id, status=status, type=type),
            self._timeout,
        )
        return [r for r in reminders if any(r.concerns(p) for p in party_ids)]

    async def dispatch_due(self, now: datetime) -> int:
        """Send every pending reminder whose time has come; returns the number sent.

        A reminder whose delivery fails stays pending for the next run.
        """
        due = await call_dependency("reminder_repository", self._repo.due(now), self._timeout)
        sent = 0
        for reminder in due:
            try:
                await call_dependency(
                    "notifier",
                    self._notifier.notify(
                        reminder.user_id,
                        EventKind.EXPIRY_REMINDER.value,
                        {
                            "estimateId": reminder.estimate_id,
                            "reminderType": reminder.type.value,
                            "message": reminder.message,
                        },
                    ),
                    self._timeout,
                )
            except DependencyError:
                logger.exception("Failed to send reminder %s", reminder.id)
                continue
            if await call_dependency(
                "reminder_repository", self._repo.mark_sent(reminder.id), self._timeout
            ):
                sent += 1
        if due:
            logger.info("Dispatched %d of %d due reminder(s)", sent, len(due))
        return sent
