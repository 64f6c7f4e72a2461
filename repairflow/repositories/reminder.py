"""SQL-backed reminder repository."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from repairflow.db.models import ReminderRow
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType
from repairflow.repositories.base import BaseRepository, from_db_datetime, to_db_datetime


class SqlReminderRepository(BaseRepository[ReminderRow]):
    model = ReminderRow

    @staticmethod
    def _to_row(reminder: Reminder) -> ReminderRow:
        return ReminderRow(
            id=reminder.id,
            estimate_id=reminder.estimate_id,
            user_id=reminder.user_id,
            shop_id=reminder.shop_id,
            remind_at=to_db_datetime(reminder.remind_at),
            type=reminder.type.value,
            status=reminder.status.value,
            message=reminder.message,
        )

    @staticmethod
    def _to_domain(row: ReminderRow) -> Reminder:
        return Reminder(
            id=row.id,
            estimate_id=row.estimate_id,
            user_id=row.user_id,
            shop_id=row.shop_id,
            remind_at=from_db_datetime(row.remind_at),
            type=ReminderType(row.type),
            status=ReminderStatus(row.status),
            message=row.message,
        )

    async def add(self, reminders: list[Reminder]) -> bool:
        """Insert all *reminders* in one transaction; False if any id already exists."""
        if not reminders:
            return True
        return await self.insert(*(self._to_row(r) for r in reminders))

    async def cancel_pending(self, estimate_id: str) -> int:
        return await self.update_where(
            ReminderRow.estimate_id == estimate_id,
            ReminderRow.status == ReminderStatus.PENDING.value,
            status=ReminderStatus.CANCELLED.value,
        )

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        shop_id: Optional[str] = None,
        status: Optional[ReminderStatus] = None,
        type: Optional[ReminderType] = None,
    ) -> list[Reminder]:
        rows = await self.list_rows(
            order_by="remind_at",
            order="asc",
            filters={
                "user_id": user_id,
                "shop_id": shop_id,
                "status": status.value if status is not None else None,
                "type": type.value if type is not None else None,
            },
        )
        return [self._to_domain(r) for r in rows]

    async def due(self, now: datetime) -> list[Reminder]:
        # Offsets are stripped by SQLite, so compare in Python on aware values
        pending = await self.list(status=ReminderStatus.PENDING)
        return [r for r in pending if r.remind_at <= now]

    async def mark_sent(self, reminder_id: str) -> bool:
        changed = await self.update_where(
            ReminderRow.id == reminder_id,
            ReminderRow.status == ReminderStatus.PENDING.value,
            status=ReminderStatus.SENT.value,
        )
        return changed > 0
