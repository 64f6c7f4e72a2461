"""Expiry reminders scheduled for estimate parties."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReminderType(str, Enum):
    EXPIRY_WARNING = "estimate_expiry_warning"
    EXPIRY_FINAL = "estimate_expiry_final"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


class Reminder(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    estimate_id: str
    user_id: str
    shop_id: Optional[str] = None
    remind_at: datetime
    type: ReminderType
    status: ReminderStatus = ReminderStatus.PENDING
    message: str = ""

    model_config = {"frozen": True}

    def concerns(self, party_id: str | None) -> bool:
        return party_id is not None and party_id in (self.user_id, self.shop_id)
