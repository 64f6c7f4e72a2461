"""Domain events emitted by estimate transitions.

The engine never delivers anything itself; the workflow hands these to the
notifier collaborator once the transition has been persisted.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    ESTIMATE_REQUESTED = "estimate_requested"
    REVIEW_STARTED = "review_started"
    ESTIMATE_QUOTED = "estimate_quoted"
    ESTIMATE_ACCEPTED = "estimate_accepted"
    ESTIMATE_REJECTED = "estimate_rejected"
    EXPIRY_SET = "expiry_set"
    ASSESSMENT_READY = "assessment_ready"
    RESOLUTION_SUGGESTED = "resolution_suggested"
    RESOLUTION_APPLIED = "resolution_applied"
    EXPIRY_REMINDER = "estimate_expiry_reminder"


class DomainEvent(BaseModel):
    kind: EventKind
    party_id: str  # who should be told
    estimate_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
