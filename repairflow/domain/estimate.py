"""Estimate aggregate: one repair quote exchanged between a requester and one shop.

The aggregate is an immutable pydantic model. State changes go through
:mod:`repairflow.domain.state_machine`, which returns a new instance built
with :meth:`Estimate.evolve` so the invariants below are re-checked on
every transition:

  - ``quoted_cost`` is set iff the status is Quoted, Accepted or Rejected
  - ``timeline_days`` / ``details`` only exist alongside a quote
  - ``Expired`` is never stored; it is derived from ``expires_at`` at read time
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EstimateStatus(str, Enum):
    PENDING = "Pending"
    ASSESSING = "Assessing"
    QUOTED = "Quoted"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"  # derived only

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


QUOTED_STATUSES = frozenset(
    {EstimateStatus.QUOTED, EstimateStatus.ACCEPTED, EstimateStatus.REJECTED}
)
OPEN_STATUSES = frozenset(
    {EstimateStatus.PENDING, EstimateStatus.ASSESSING, EstimateStatus.QUOTED}
)
TERMINAL_STATUSES = frozenset(
    {EstimateStatus.ACCEPTED, EstimateStatus.REJECTED, EstimateStatus.EXPIRED}
)


class ContactPreference(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    IN_APP = "in_app"


class VehicleDescriptor(BaseModel):
    make: str
    model: str
    vin: Optional[str] = None

    model_config = {"frozen": True}


class InsuranceInfo(BaseModel):
    provider: Optional[str] = None
    policy_number: Optional[str] = None
    claim_id: Optional[str] = None

    model_config = {"frozen": True}


class AIAssessment(BaseModel):
    """Preliminary damage assessment returned by the AI oracle."""

    summary: str
    estimated_cost: float = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    assessed_at: Optional[datetime] = None

    model_config = {"frozen": True}


class ResolutionType(str, Enum):
    RENEGOTIATION = "renegotiation"
    MEDIATION = "mediation"
    COMPROMISE = "compromise"
    ESCALATION_RECOMMENDATION = "escalation_recommendation"


class ResolutionSuggestion(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    suggestion: str
    confidence: float = Field(ge=0.0, le=1.0)
    type: ResolutionType
    options: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class AppliedResolution(BaseModel):
    resolution_id: str
    resolution_type: ResolutionType
    chosen_option: str
    notes: Optional[str] = None
    applied_by: str
    applied_at: datetime

    model_config = {"frozen": True}


class Estimate(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    requester_id: str
    recipient_shop_id: str
    status: EstimateStatus = EstimateStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Request
    vehicle: Optional[VehicleDescriptor] = None
    damage_description: Optional[str] = None
    media_refs: list[str] = Field(default_factory=list)
    video_refs: list[str] = Field(default_factory=list)
    insurance: Optional[InsuranceInfo] = None
    preferred_contact: Optional[ContactPreference] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None

    # Shop response
    quoted_cost: Optional[float] = None
    timeline_days: Optional[int] = None
    details: Optional[str] = None

    # Wow++ extras
    expires_at: Optional[datetime] = None
    ai_assessment: Optional[AIAssessment] = None
    resolution_suggestions: list[ResolutionSuggestion] = Field(default_factory=list)
    applied_resolution: Optional[AppliedResolution] = None

    version: int = 1

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_quote_fields(self) -> "Estimate":
        if self.status == EstimateStatus.EXPIRED:
            return self
        quoted = self.status in QUOTED_STATUSES
        if quoted and self.quoted_cost is None:
            raise ValueError(f"quoted_cost is required once an estimate is {self.status.value}")
        if not quoted and (
            self.quoted_cost is not None
            or self.timeline_days is not None
            or self.details is not None
        ):
            raise ValueError(f"quote fields are not allowed while an estimate is {self.status.value}")
        return self

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, requester_id: str, recipient_shop_id: str, now: datetime, **request: Any) -> "Estimate":
        """Create a fresh ``Pending`` estimate addressed to one shop."""
        return cls(
            requester_id=requester_id,
            recipient_shop_id=recipient_shop_id,
            status=EstimateStatus.PENDING,
            created_at=now,
            updated_at=now,
            **request,
        )

    def evolve(self, **changes: Any) -> "Estimate":
        """Return a re-validated copy with *changes* applied."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self).model_validate(data)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def is_expired(self, now: datetime) -> bool:
        return (
            self.expires_at is not None
            and self.status in OPEN_STATUSES
            and now >= self.expires_at
        )

    def effective_status(self, now: datetime) -> EstimateStatus:
        return EstimateStatus.EXPIRED if self.is_expired(now) else self.status

    def as_of(self, now: datetime) -> "Estimate":
        """Read-time view: reports ``Expired`` when the expiry has passed."""
        if self.is_expired(now):
            return self.model_copy(update={"status": EstimateStatus.EXPIRED})
        return self

    def is_party(self, party_id: str | None) -> bool:
        return party_id is not None and party_id in (self.requester_id, self.recipient_shop_id)

    def counterparty(self, party_id: str) -> str:
        return self.recipient_shop_id if party_id == self.requester_id else self.requester_id
