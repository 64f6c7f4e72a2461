"""Estimate Pydantic schemas (inbound commands and response models).

Commands are validated by :func:`repairflow.core.validation.validate_command`
before any tier or ownership check runs. Validators that depend on who is
calling or on the current time read them from ``info.context``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AwareDatetime, Field, StringConstraints, ValidationInfo, field_validator

from repairflow.core.tiers import MAX_MEDIA_REFS, Tier
from repairflow.domain.estimate import ContactPreference, EstimateStatus, ResolutionType
from repairflow.domain.reminder import ReminderStatus, ReminderType
from repairflow.domain.state_machine import DETAILS_MAX_LENGTH, DETAILS_MIN_LENGTH, NOTES_MAX_LENGTH
from repairflow.schemas.common import CamelModel

Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
MediaRef = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2048)]
Vin = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_upper=True, pattern=r"^[A-HJ-NPR-Za-hj-npr-z0-9]{17}$"),
]


def _media_limit(info: ValidationInfo) -> int | None:
    tier = (info.context or {}).get("tier")
    if isinstance(tier, Tier):
        return MAX_MEDIA_REFS[tier]
    return None  # unknown tier is rejected by the tier check that follows


# ---------------------------------------------------------------------------
# Request payload pieces
# ---------------------------------------------------------------------------

class VehicleIn(CamelModel):
    make: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    model: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    vin: Optional[Vin] = None


class InsuranceIn(CamelModel):
    provider: Optional[Annotated[str, StringConstraints(max_length=255)]] = None
    policy_number: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    claim_id: Optional[Annotated[str, StringConstraints(max_length=100)]] = None


class EstimatePayload(CamelModel):
    """Fields shared by single-shop and broadcast estimate requests."""

    vehicle: VehicleIn
    damage_description: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]
    media_refs: list[MediaRef] = Field(default_factory=list)
    video_refs: list[MediaRef] = Field(default_factory=list)
    insurance: Optional[InsuranceIn] = None
    preferred_contact: Optional[ContactPreference] = None
    contact_email: Optional[Annotated[str, StringConstraints(max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")]] = None
    contact_phone: Optional[Annotated[str, StringConstraints(max_length=50)]] = None

    @field_validator("media_refs")
    @classmethod
    def _media_within_tier(cls, value: list[str], info: ValidationInfo) -> list[str]:
        limit = _media_limit(info)
        if limit is not None and len(value) > limit:
            raise ValueError(f"At most {limit} media references are allowed on this tier")
        return value

    def request_fields(self) -> dict:
        """Keyword arguments for :meth:`Estimate.open` (recipient fields excluded)."""
        return self.model_dump(include=set(EstimatePayload.model_fields), exclude_none=True)


class CreateEstimateCommand(EstimatePayload):
    recipient_shop_id: Identifier


class BroadcastEstimateCommand(EstimatePayload):
    recipient_shop_ids: list[Identifier]

    @field_validator("recipient_shop_ids")
    @classmethod
    def _at_least_one(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("At least one recipient shop is required")
        return value


# ---------------------------------------------------------------------------
# Other commands
# ---------------------------------------------------------------------------

class RequesterRef(CamelModel):
    requester_id: Identifier


class ShopRef(CamelModel):
    shop_id: Identifier


class EstimateRef(CamelModel):
    estimate_id: Identifier


class ShopEstimateRef(CamelModel):
    estimate_id: Identifier
    shop_id: Identifier


class RespondToEstimateCommand(CamelModel):
    estimate_id: Identifier
    shop_id: Identifier
    quoted_cost: float = Field(gt=0, allow_inf_nan=False)
    timeline_days: Optional[int] = Field(default=None, gt=0)
    details: Optional[
        Annotated[str, StringConstraints(min_length=DETAILS_MIN_LENGTH, max_length=DETAILS_MAX_LENGTH)]
    ] = None

    @field_validator("quoted_cost", "timeline_days", mode="before")
    @classmethod
    def _not_boolean(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("Expected a number, not a boolean")
        return value


class SetExpiryCommand(CamelModel):
    estimate_id: Identifier
    expires_at: AwareDatetime

    @field_validator("expires_at")
    @classmethod
    def _in_future(cls, value: datetime, info: ValidationInfo) -> datetime:
        now = (info.context or {}).get("now")
        if now is not None and value <= now:
            raise ValueError("Expiry date must be in the future")
        return value


class AssessDamageCommand(CamelModel):
    estimate_id: Identifier
    media_refs: list[MediaRef] = Field(min_length=1)


class PendingRemindersQuery(CamelModel):
    user_id: Optional[Identifier] = None
    shop_id: Optional[Identifier] = None
    status: Literal["pending", "sent"] = "pending"
    type: Literal["estimate_expiry_warning", "estimate_expiry_final", "all"] = "all"


class ResolveWithAICommand(CamelModel):
    estimate_id: Identifier
    resolution_id: Identifier
    chosen_option: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    notes: Optional[Annotated[str, StringConstraints(max_length=NOTES_MAX_LENGTH)]] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class Acknowledgement(CamelModel):
    estimate_id: str
    status: str
    message: str
    at: datetime
    expires_at: Optional[datetime] = None
    reminders_scheduled: Optional[int] = None
    resolution_type: Optional[str] = None


class VehicleOut(CamelModel):
    make: str
    model: str
    vin: Optional[str] = None


class InsuranceOut(CamelModel):
    provider: Optional[str] = None
    policy_number: Optional[str] = None
    claim_id: Optional[str] = None


class AIAssessmentOut(CamelModel):
    summary: str
    estimated_cost: float
    confidence: float
    assessed_at: Optional[datetime] = None


class ResolutionSuggestionOut(CamelModel):
    id: str
    suggestion: str
    confidence: float
    type: ResolutionType
    options: list[str] = Field(default_factory=list)


class AppliedResolutionOut(CamelModel):
    resolution_id: str
    resolution_type: ResolutionType
    chosen_option: str
    notes: Optional[str] = None
    applied_by: str
    applied_at: datetime


class EstimateOut(CamelModel):
    id: str
    requester_id: str
    recipient_shop_id: str
    status: EstimateStatus
    created_at: datetime
    updated_at: datetime
    vehicle: Optional[VehicleOut] = None
    damage_description: Optional[str] = None
    media_refs: list[str] = Field(default_factory=list)
    video_refs: list[str] = Field(default_factory=list)
    insurance: Optional[InsuranceOut] = None
    preferred_contact: Optional[ContactPreference] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    quoted_cost: Optional[float] = None
    timeline_days: Optional[int] = None
    details: Optional[str] = None
    expires_at: Optional[datetime] = None
    ai_assessment: Optional[AIAssessmentOut] = None
    resolution_suggestions: list[ResolutionSuggestionOut] = Field(default_factory=list)
    applied_resolution: Optional[AppliedResolutionOut] = None


class BroadcastResultOut(CamelModel):
    shop_id: str
    status: str
    message: Optional[str] = None
    estimate_id: Optional[str] = None


class ReminderOut(CamelModel):
    id: str
    estimate_id: str
    user_id: str
    shop_id: Optional[str] = None
    remind_at: datetime
    type: ReminderType
    status: ReminderStatus
    message: str
