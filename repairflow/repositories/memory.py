"""In-process repositories.

Used by default (``STORAGE_BACKEND=memory``) and by the test-suite. A
``threading.Lock`` guards every read-modify-write so the version check
holds even when several event loops share one instance.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

from repairflow.domain.estimate import Estimate
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType


def _newest_first(items: list[Estimate]) -> list[Estimate]:
    return sorted(items, key=lambda e: e.created_at, reverse=True)


class InMemoryEstimateRepository:
    def __init__(self) -> None:
        self._items: dict[str, Estimate] = {}
        self._lock = threading.Lock()

    async def save(self, estimate: Estimate, *, expected_version: Optional[int] = None) -> bool:
        with self._lock:
            current = self._items.get(estimate.id)
            if expected_version is None:
                if current is not None:
                    return False
            elif current is None or current.version != expected_version:
                return False
            self._items[estimate.id] = estimate
            return True

    async def find_by_id(self, estimate_id: str) -> Optional[Estimate]:
        with self._lock:
            return self._items.get(estimate_id)

    async def find_by_owner(self, requester_id: str) -> list[Estimate]:
        with self._lock:
            found = [e for e in self._items.values() if e.requester_id == requester_id]
        return _newest_first(found)

    async def find_by_recipient(self, shop_id: str) -> list[Estimate]:
        with self._lock:
            found = [e for e in self._items.values() if e.recipient_shop_id == shop_id]
        return _newest_first(found)

    def __len__(self) -> int:
        return len(self._items)


class InMemoryReminderRepository:
    def __init__(self) -> None:
        self._items: dict[str, Reminder] = {}
        self._lock = threading.Lock()

    async def add(self, reminders: list[Reminder]) -> bool:
        with self._lock:
            if any(r.id in self._items for r in reminders):
                return False
            for reminder in reminders:
                self._items[reminder.id] = reminder
        return True

    async def cancel_pending(self, estimate_id: str) -> int:
        cancelled = 0
        with self._lock:
            for reminder in list(self._items.values()):
                if reminder.estimate_id == estimate_id and reminder.status == ReminderStatus.PENDING:
                    self._items[reminder.id] = reminder.model_copy(
                        update={"status": ReminderStatus.CANCELLED}
                    )
                    cancelled += 1
        return cancelled

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        shop_id: Optional[str] = None,
        status: Optional[ReminderStatus] = None,
        type: Optional[ReminderType] = None,
    ) -> list[Reminder]:
        with self._lock:
            items = list(self._items.values())
        return sorted(
            (
                r for r in items
                if (user_id is None or r.user_id == user_id)
                and (shop_id is None or r.shop_id == shop_id)
                and (status is None or r.status == status)
                and (type is None or r.type == type)
            ),
            key=lambda r: r.remind_at,
        )

    async def due(self, now: datetime) -> list[Reminder]:
        pending = await self.list(status=ReminderStatus.PENDING)
        return [r for r in pending if r.remind_at <= now]

    async def mark_sent(self, reminder_id: str) -> bool:
        with self._lock:
            reminder = self._items.get(reminder_id)
            if reminder is None or reminder.status != ReminderStatus.PENDING:
                return False
            self._items[reminder_id] = reminder.model_copy(update={"status": ReminderStatus.SENT})
            return True
