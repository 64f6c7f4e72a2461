"""Subscription tiers and the capability policy built on them.

This module is the only place that knows the tier order, which operations
each tier unlocks, and which estimate fields each tier may see. Everything
is closed-world: anything not listed here is denied.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Mapping

from repairflow.core.exceptions import UnauthorizedError
from repairflow.domain.estimate import Estimate


class Tier(IntEnum):
    FREE = 0
    STANDARD = 1
    PREMIUM = 2
    WOWPLUS = 3

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        """Coerce a tier name (``"free"``, ``"wow++"`` ...) or a Tier; raise on anything else."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            tier = _TIER_NAMES.get(value.strip().lower())
            if tier is not None:
                return tier
        raise UnauthorizedError(f"Unrecognised subscription tier: {value!r}")


_TIER_NAMES: dict[str, Tier] = {
    "free": Tier.FREE,
    "standard": Tier.STANDARD,
    "premium": Tier.PREMIUM,
    "wowplus": Tier.WOWPLUS,
    "wow++": Tier.WOWPLUS,
}


class Operation(str, Enum):
    CREATE_ESTIMATE = "create_estimate"
    LIST_OWN_ESTIMATES = "list_own_estimates"
    VIEW_ESTIMATE = "view_estimate"
    DECIDE_ESTIMATE = "decide_estimate"
    BEGIN_REVIEW = "begin_review"
    RESPOND_TO_ESTIMATE = "respond_to_estimate"
    LIST_SHOP_ESTIMATES = "list_shop_estimates"
    BROADCAST_ESTIMATE = "broadcast_estimate"
    LIST_LEADS = "list_leads"
    ASSESS_DAMAGE = "assess_damage"
    SET_EXPIRY = "set_expiry"
    LIST_PENDING_REMINDERS = "list_pending_reminders"
    SUGGEST_RESOLUTIONS = "suggest_resolutions"
    RESOLVE_WITH_AI = "resolve_with_ai"


REQUIRED_TIER: Mapping[Operation, Tier] = {
    Operation.CREATE_ESTIMATE: Tier.FREE,
    Operation.LIST_OWN_ESTIMATES: Tier.FREE,
    Operation.VIEW_ESTIMATE: Tier.FREE,
    Operation.DECIDE_ESTIMATE: Tier.FREE,
    Operation.BEGIN_REVIEW: Tier.STANDARD,
    Operation.RESPOND_TO_ESTIMATE: Tier.STANDARD,
    Operation.LIST_SHOP_ESTIMATES: Tier.STANDARD,
    Operation.BROADCAST_ESTIMATE: Tier.PREMIUM,
    Operation.LIST_LEADS: Tier.PREMIUM,
    Operation.ASSESS_DAMAGE: Tier.WOWPLUS,
    Operation.SET_EXPIRY: Tier.WOWPLUS,
    Operation.LIST_PENDING_REMINDERS: Tier.WOWPLUS,
    Operation.SUGGEST_RESOLUTIONS: Tier.WOWPLUS,
    Operation.RESOLVE_WITH_AI: Tier.WOWPLUS,
}

# Fields first visible at each tier; higher tiers see everything below them too.
_FIELDS_UNLOCKED: Mapping[Tier, frozenset[str]] = {
    Tier.FREE: frozenset({
        "id", "requester_id", "recipient_shop_id", "status", "created_at", "updated_at",
        "vehicle", "damage_description", "quoted_cost", "timeline_days",
    }),
    Tier.STANDARD: frozenset({"media_refs", "video_refs", "details"}),
    Tier.PREMIUM: frozenset({"insurance", "preferred_contact", "contact_email", "contact_phone"}),
    Tier.WOWPLUS: frozenset({
        "expires_at", "ai_assessment", "resolution_suggestions", "applied_resolution", "version",
    }),
}

# None means unbounded
MAX_MEDIA_REFS: Mapping[Tier, int | None] = {
    Tier.FREE: 3,
    Tier.STANDARD: 5,
    Tier.PREMIUM: 10,
    Tier.WOWPLUS: None,
}


def _visible_fields(tier: Tier) -> frozenset[str]:
    fields: set[str] = set()
    for level, unlocked in _FIELDS_UNLOCKED.items():
        if level <= tier:
            fields |= unlocked
    return frozenset(fields)


class TierPolicy:
    """Pure capability checks and field projection per tier."""

    def __init__(self) -> None:
        self._visible = {tier: _visible_fields(tier) for tier in Tier}

    def allows(self, tier: Any, operation: Any) -> bool:
        if not isinstance(tier, Tier) or not isinstance(operation, Operation):
            return False
        required = REQUIRED_TIER.get(operation)
        return required is not None and tier >= required

    def require(self, tier: Any, operation: Operation) -> Tier:
        """Return the parsed tier, or raise :class:`UnauthorizedError`."""
        parsed = Tier.parse(tier)
        if not self.allows(parsed, operation):
            required = REQUIRED_TIER.get(operation)
            needed = required.name.lower() if required is not None else "unknown"
            raise UnauthorizedError(f"Access denied: '{needed}' tier required for {operation.value}")
        return parsed

    def visible_fields(self, tier: Any) -> frozenset[str]:
        return self._visible[Tier.parse(tier)]

    def project(self, tier: Any, estimate: Estimate) -> Estimate:
        """Reset every field the tier may not see back to its default."""
        visible = self.visible_fields(tier)
        hidden: dict[str, Any] = {}
        for name, field in Estimate.model_fields.items():
            if name in visible:
                continue
            hidden[name] = field.get_default(call_default_factory=True)
        return estimate.model_copy(update=hidden)

    def media_limit(self, tier: Any) -> int | None:
        return MAX_MEDIA_REFS[Tier.parse(tier)]
