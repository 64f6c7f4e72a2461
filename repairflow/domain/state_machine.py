"""Estimate lifecycle transitions.

    Pending ──► Assessing ──► Quoted ──► Accepted
       │                        ▲   └──► Rejected
       └────────────────────────┘

Every function here is pure: it takes the current aggregate and returns
``(new_estimate, events)`` or raises. Guards run in a fixed order:
ownership, then writability (terminal or expired), then the transition
table, then payload. A non-party never learns anything about state.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from repairflow.core.exceptions import (
    ConflictError,
    FieldViolation,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from repairflow.domain.estimate import (
    AIAssessment,
    AppliedResolution,
    Estimate,
    EstimateStatus,
    ResolutionSuggestion,
)
from repairflow.domain.events import DomainEvent, EventKind

Transition = tuple[Estimate, list[DomainEvent]]

DETAILS_MIN_LENGTH = 10
DETAILS_MAX_LENGTH = 1000
NOTES_MAX_LENGTH = 500

TRANSITIONS: dict[EstimateStatus, frozenset[EstimateStatus]] = {
    EstimateStatus.PENDING: frozenset({EstimateStatus.ASSESSING, EstimateStatus.QUOTED}),
    EstimateStatus.ASSESSING: frozenset({EstimateStatus.QUOTED}),
    EstimateStatus.QUOTED: frozenset({EstimateStatus.ACCEPTED, EstimateStatus.REJECTED}),
    EstimateStatus.ACCEPTED: frozenset(),
    EstimateStatus.REJECTED: frozenset(),
    EstimateStatus.EXPIRED: frozenset(),
}


def can_transition(source: EstimateStatus, target: EstimateStatus) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def _require_recipient(estimate: Estimate, shop_id: str) -> None:
    if shop_id != estimate.recipient_shop_id:
        raise UnauthorizedError(f"Shop '{shop_id}' is not the recipient of estimate '{estimate.id}'")


def _require_requester(estimate: Estimate, requester_id: str) -> None:
    if requester_id != estimate.requester_id:
        raise UnauthorizedError(f"Only the requester may decide on estimate '{estimate.id}'")


def _require_party(estimate: Estimate, party_id: str) -> None:
    if not estimate.is_party(party_id):
        raise UnauthorizedError(f"'{party_id}' is not a party to estimate '{estimate.id}'")


def _require_writable(estimate: Estimate, now: datetime) -> None:
    if estimate.is_expired(now):
        raise ConflictError(f"Estimate '{estimate.id}' has expired", estimate.id)
    if estimate.status.is_terminal:
        raise ConflictError(
            f"Estimate '{estimate.id}' is {estimate.status.value} and can no longer change",
            estimate.id,
        )


def _require_transition(estimate: Estimate, target: EstimateStatus) -> None:
    if not can_transition(estimate.status, target):
        raise ConflictError(
            f"Cannot move estimate '{estimate.id}' from {estimate.status.value} to {target.value}",
            estimate.id,
        )


def quote_violations(
    quoted_cost: object,
    timeline_days: object = None,
    details: object = None,
) -> list[FieldViolation]:
    """Check a shop response payload; returns every problem found."""
    violations: list[FieldViolation] = []
    if (
        isinstance(quoted_cost, bool)
        or not isinstance(quoted_cost, (int, float))
        or not math.isfinite(quoted_cost)
        or quoted_cost <= 0
    ):
        violations.append(FieldViolation("quotedCost", "Quoted cost must be a positive number"))
    if timeline_days is not None and (
        isinstance(timeline_days, bool) or not isinstance(timeline_days, int) or timeline_days <= 0
    ):
        violations.append(FieldViolation("timelineDays", "Timeline must be a positive integer"))
    if details is not None and (
        not isinstance(details, str)
        or not DETAILS_MIN_LENGTH <= len(details) <= DETAILS_MAX_LENGTH
    ):
        violations.append(
            FieldViolation(
                "details",
                f"Details must be between {DETAILS_MIN_LENGTH} and {DETAILS_MAX_LENGTH} characters",
            )
        )
    return violations


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def begin_review(estimate: Estimate, shop_id: str, now: datetime) -> Transition:
    _require_recipient(estimate, shop_id)
    _require_writable(estimate, now)
    _require_transition(estimate, EstimateStatus.ASSESSING)

    updated = estimate.evolve(status=EstimateStatus.ASSESSING, updated_at=now)
    event = DomainEvent(
        kind=EventKind.REVIEW_STARTED,
        party_id=estimate.requester_id,
        estimate_id=estimate.id,
        payload={"shopId": shop_id},
    )
    return updated, [event]


def respond(
    estimate: Estimate,
    shop_id: str,
    quoted_cost: float,
    timeline_days: Optional[int] = None,
    details: Optional[str] = None,
    *,
    now: datetime,
) -> Transition:
    _require_recipient(estimate, shop_id)
    _require_writable(estimate, now)
    _require_transition(estimate, EstimateStatus.QUOTED)
    violations = quote_violations(quoted_cost, timeline_days, details)
    if violations:
        raise ValidationError(violations)

    updated = estimate.evolve(
        status=EstimateStatus.QUOTED,
        quoted_cost=float(quoted_cost),
        timeline_days=timeline_days,
        details=details,
        updated_at=now,
    )
    event = DomainEvent(
        kind=EventKind.ESTIMATE_QUOTED,
        party_id=estimate.requester_id,
        estimate_id=estimate.id,
        payload={"quotedCost": updated.quoted_cost, "timelineDays": timeline_days},
    )
    return updated, [event]


def decide(estimate: Estimate, requester_id: str, accept: bool, now: datetime) -> Transition:
    target = EstimateStatus.ACCEPTED if accept else EstimateStatus.REJECTED
    _require_requester(estimate, requester_id)
    _require_writable(estimate, now)
    _require_transition(estimate, target)

    updated = estimate.evolve(status=target, updated_at=now)
    event = DomainEvent(
        kind=EventKind.ESTIMATE_ACCEPTED if accept else EventKind.ESTIMATE_REJECTED,
        party_id=estimate.recipient_shop_id,
        estimate_id=estimate.id,
        payload={"quotedCost": estimate.quoted_cost},
    )
    return updated, [event]


def set_expiry(estimate: Estimate, party_id: str, expires_at: datetime, now: datetime) -> Transition:
    _require_party(estimate, party_id)
    _require_writable(estimate, now)
    if expires_at <= now:
        raise ValidationError.single("expiresAt", "Expiry date must be in the future")

    updated = estimate.evolve(expires_at=expires_at, updated_at=now)
    event = DomainEvent(
        kind=EventKind.EXPIRY_SET,
        party_id=estimate.counterparty(party_id),
        estimate_id=estimate.id,
        payload={"expiresAt": expires_at.isoformat()},
    )
    return updated, [event]


def attach_assessment(
    estimate: Estimate, party_id: str, assessment: AIAssessment, now: datetime
) -> Transition:
    _require_party(estimate, party_id)
    _require_writable(estimate, now)

    stamped = assessment.model_copy(update={"assessed_at": now})
    updated = estimate.evolve(ai_assessment=stamped, updated_at=now)
    event = DomainEvent(
        kind=EventKind.ASSESSMENT_READY,
        party_id=estimate.counterparty(party_id),
        estimate_id=estimate.id,
        payload={"estimatedCost": stamped.estimated_cost, "confidence": stamped.confidence},
    )
    return updated, [event]


def attach_suggestions(
    estimate: Estimate,
    party_id: str,
    suggestions: list[ResolutionSuggestion],
    now: datetime,
) -> Transition:
    _require_party(estimate, party_id)
    _require_writable(estimate, now)

    updated = estimate.evolve(resolution_suggestions=list(suggestions), updated_at=now)
    event = DomainEvent(
        kind=EventKind.RESOLUTION_SUGGESTED,
        party_id=estimate.counterparty(party_id),
        estimate_id=estimate.id,
        payload={"count": len(suggestions)},
    )
    return updated, [event]


def apply_resolution(
    estimate: Estimate,
    party_id: str,
    resolution_id: str,
    chosen_option: str,
    notes: Optional[str],
    now: datetime,
) -> Transition:
    _require_party(estimate, party_id)
    _require_writable(estimate, now)

    suggestion = next(
        (s for s in estimate.resolution_suggestions if s.id == resolution_id), None
    )
    if suggestion is None:
        raise NotFoundError("Resolution suggestion", resolution_id)
    if suggestion.options and chosen_option not in suggestion.options:
        raise ValidationError.single(
            "chosenOption",
            f"Option must be one of: {', '.join(suggestion.options)}",
        )

    applied = AppliedResolution(
        resolution_id=resolution_id,
        resolution_type=suggestion.type,
        chosen_option=chosen_option,
        notes=notes,
        applied_by=party_id,
        applied_at=now,
    )
    updated = estimate.evolve(applied_resolution=applied, updated_at=now)
    event = DomainEvent(
        kind=EventKind.RESOLUTION_APPLIED,
        party_id=estimate.counterparty(party_id),
        estimate_id=estimate.id,
        payload={"resolutionType": suggestion.type.value, "chosenOption": chosen_option},
    )
    return updated, [event]


def ensure_writable_by(estimate: Estimate, party_id: str, now: datetime) -> None:
    """Run the party and writability guards without transitioning.

    Used before calling an expensive collaborator (AI) on the estimate's behalf.
    """
    _require_party(estimate, party_id)
    _require_writable(estimate, now)
