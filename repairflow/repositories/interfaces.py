"""Collaborator interfaces consumed by the workflow.

The engine only ever calls these; concrete backends live next door
(``memory.py`` for in-process use and tests, ``estimate.py`` /
``reminder.py`` for SQLAlchemy).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from repairflow.domain.estimate import Estimate
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType


@runtime_checkable
class EstimateRepository(Protocol):
    async def save(self, estimate: Estimate, *, expected_version: Optional[int] = None) -> bool:
        """Insert (``expected_version is None``) or compare-and-set update.

        Returns False when the id already exists on insert, or when the
        stored version differs from *expected_version* on update.
        """
        ...

    async def find_by_id(self, estimate_id: str) -> Optional[Estimate]: ...

    async def find_by_owner(self, requester_id: str) -> list[Estimate]: ...

    async def find_by_recipient(self, shop_id: str) -> list[Estimate]: ...


@runtime_checkable
class ReminderRepository(Protocol):
    async def add(self, reminders: list[Reminder]) -> bool: ...

    async def cancel_pending(self, estimate_id: str) -> int: ...

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        shop_id: Optional[str] = None,
        status: Optional[ReminderStatus] = None,
        type: Optional[ReminderType] = None,
    ) -> list[Reminder]: ...

    async def due(self, now: datetime) -> list[Reminder]: ...

    async def mark_sent(self, reminder_id: str) -> bool: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, party_id: str, event_kind: str, payload: dict[str, Any]) -> None: ...


@runtime_checkable
class DamageAssessor(Protocol):
    async def assess(self, media_refs: list[str]) -> dict[str, Any]:
        """Return ``{"summary", "estimated_cost", "confidence"}``."""
        ...


@runtime_checkable
class ResolutionAdvisor(Protocol):
    async def suggest_resolutions(self, estimate: Estimate) -> list[dict[str, Any]]: ...


@runtime_checkable
class ShopDirectory(Protocol):
    async def exists(self, shop_id: str) -> bool: ...
