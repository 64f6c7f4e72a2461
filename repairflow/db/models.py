"""SQLAlchemy ORM rows backing the estimate and reminder repositories.

The full aggregate is kept as a JSON document; the columns next to it are
denormalized copies used for lookups and for the optimistic version check.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from repairflow.db.base import Base
from repairflow.db.mixins import TimestampMixin


class EstimateRow(Base, TimestampMixin):
    __tablename__ = "estimates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    recipient_shop_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Stored status only: Pending | Assessing | Quoted | Accepted | Rejected
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    document: Mapped[Any] = mapped_column(JSON, nullable=False)


class ReminderRow(Base):
    __tablename__ = "estimate_reminders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    estimate_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shop_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    remind_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # "estimate_expiry_warning" | "estimate_expiry_final"
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    # "pending" | "sent" | "cancelled"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
