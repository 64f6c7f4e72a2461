"""Estimate workflow: the public operation surface of the engine.

Every operation follows the same order:

  1. validate the command (all violations at once)
  2. check the caller's tier against the operation
  3. check ownership and mutate through the conflict resolver
  4. publish the resulting events to the notifier
  5. return the result projected to the caller's tier

Rule: No SQLAlchemy / no FastAPI here. Pure Python business logic.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

import pydantic
from pydantic import BaseModel

from repairflow.core.config import Settings
from repairflow.core.config import settings as default_settings
from repairflow.core.exceptions import ConflictError, DependencyError, NotFoundError, UnauthorizedError
from repairflow.core.tiers import Operation, Tier, TierPolicy
from repairflow.core.validation import validate_command
from repairflow.domain.estimate import AIAssessment, Estimate, EstimateStatus, ResolutionSuggestion, utcnow
from repairflow.domain.events import DomainEvent, EventKind
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType
from repairflow.domain import state_machine
from repairflow.repositories.interfaces import (
    DamageAssessor,
    EstimateRepository,
    Notifier,
    ReminderRepository,
    ResolutionAdvisor,
    ShopDirectory,
)
from repairflow.repositories.memory import InMemoryReminderRepository
from repairflow.schemas.estimate import (
    Acknowledgement,
    AssessDamageCommand,
    BroadcastEstimateCommand,
    CreateEstimateCommand,
    EstimateRef,
    PendingRemindersQuery,
    RequesterRef,
    ResolveWithAICommand,
    RespondToEstimateCommand,
    SetExpiryCommand,
    ShopEstimateRef,
    ShopRef,
)
from repairflow.services.broadcast import BroadcastCoordinator, BroadcastResult
from repairflow.services.conflicts import ConflictResolver
from repairflow.services.dependencies import call_dependency
from repairflow.services.latency import LatencyMonitor, observe_latency
from repairflow.services.notifier import LoggingNotifier, publish
from repairflow.services.reminders import ReminderService
from repairflow.services.resolution import ResolutionService, ai_unavailable

logger = logging.getLogger(__name__)

LEAD_STATUSES = frozenset({EstimateStatus.PENDING, EstimateStatus.ASSESSING})


class Caller(BaseModel):
    """Authenticated identity handed to the workflow by the transport layer.

    ``shop_id`` is set when the user acts on behalf of a body shop.
    """

    user_id: str
    tier: Any
    shop_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def party_ids(self) -> set[str]:
        return {i for i in (self.user_id, self.shop_id) if i}

    def acts_for(self, shop_id: str) -> bool:
        return shop_id in self.party_ids

    def party_in(self, estimate: Estimate) -> str:
        """The caller id that is a party to *estimate* (requester first)."""
        for party_id in (self.user_id, self.shop_id):
            if party_id and estimate.is_party(party_id):
                return party_id
        return self.user_id


def _tier_or_none(value: Any) -> Optional[Tier]:
    try:
        return Tier.parse(value)
    except UnauthorizedError:
        return None


class EstimateWorkflow:
    def __init__(
        self,
        repository: EstimateRepository,
        *,
        reminders: Optional[ReminderRepository] = None,
        notifier: Optional[Notifier] = None,
        assessor: Optional[DamageAssessor] = None,
        advisor: Optional[ResolutionAdvisor] = None,
        directory: Optional[ShopDirectory] = None,
        policy: Optional[TierPolicy] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings or default_settings
        self._timeout = self._settings.dependency_timeout_seconds
        self._repo = repository
        self._notifier = notifier or LoggingNotifier()
        self._assessor = assessor
        self._directory = directory
        self._policy = policy or TierPolicy()
        self._clock = clock

        self.latency = LatencyMonitor(self._settings.latency_budget_ms)
        self._conflicts = ConflictResolver(repository, timeout=self._timeout)
        self._broadcaster = BroadcastCoordinator(
            repository,
            directory=directory,
            max_concurrency=self._settings.broadcast_max_concurrency,
            timeout=self._timeout,
            clock=clock,
        )
        self._reminders = ReminderService(
            reminders if reminders is not None else InMemoryReminderRepository(),
            self._notifier,
            offsets_hours=self._settings.reminder_offsets_hours,
            timeout=self._timeout,
        )
        self._resolution = ResolutionService(
            self._conflicts, advisor, timeout=self._settings.ai_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate(self, model: type, data: Mapping[str, Any], caller: Caller, now: datetime):
        return validate_command(model, data, now=now, tier=_tier_or_none(caller.tier))

    def _view(self, tier: Tier, estimate: Estimate, now: datetime) -> Estimate:
        return self._policy.project(tier, estimate.as_of(now))

    def _require_shop(self, caller: Caller, shop_id: str) -> None:
        if not caller.acts_for(shop_id):
            raise UnauthorizedError(f"Caller does not act for shop '{shop_id}'")

    async def _publish(self, events: list[DomainEvent]) -> None:
        await publish(self._notifier, events, timeout=self._timeout)

    # ------------------------------------------------------------------
    # Requester operations
    # ------------------------------------------------------------------

    @observe_latency("create_estimate")
    async def create_estimate(self, caller: Caller, request: Mapping[str, Any]) -> Estimate:
        now = self._clock()
        command = self._validate(CreateEstimateCommand, request, caller, now)
        tier = self._policy.require(caller.tier, Operation.CREATE_ESTIMATE)

        if self._directory is not None:
            known = await call_dependency(
                "shop_directory", self._directory.exists(command.recipient_shop_id), self._timeout
            )
            if not known:
                raise NotFoundError("Shop", command.recipient_shop_id)

        estimate = Estimate.open(
            caller.user_id, command.recipient_shop_id, now, **command.request_fields()
        )
        saved = await call_dependency("estimate_repository", self._repo.save(estimate), self._timeout)
        if not saved:
            raise ConflictError(f"Estimate '{estimate.id}' already exists", estimate.id)

        logger.info("Estimate %s requested by %s from %s", estimate.id, caller.user_id, estimate.recipient_shop_id)
        await self._publish([_requested_event(estimate)])
        return self._view(tier, estimate, now)

    @observe_latency("list_own_estimates")
    async def list_own_estimates(self, caller: Caller, requester_id: str) -> list[Estimate]:
        now = self._clock()
        command = self._validate(RequesterRef, {"requester_id": requester_id}, caller, now)
        tier = self._policy.require(caller.tier, Operation.LIST_OWN_ESTIMATES)
        if command.requester_id != caller.user_id:
            raise UnauthorizedError("Callers may only list their own estimates")

        estimates = await call_dependency(
            "estimate_repository", self._repo.find_by_owner(command.requester_id), self._timeout
        )
        return [self._view(tier, e, now) for e in estimates]

    @observe_latency("get_estimate")
    async def get_estimate(self, caller: Caller, estimate_id: str) -> Estimate:
        now = self._clock()
        command = self._validate(EstimateRef, {"estimate_id": estimate_id}, caller, now)
        tier = self._policy.require(caller.tier, Operation.VIEW_ESTIMATE)

        estimate = await self._conflicts.load(command.estimate_id)
        if not estimate.is_party(caller.party_in(estimate)):
            raise UnauthorizedError(f"Caller is not a party to estimate '{estimate.id}'")
        return self._view(tier, estimate, now)

    @observe_latency("accept_estimate")
    async def accept_estimate(self, caller: Caller, estimate_id: str) -> Estimate:
        return await self._decide(caller, estimate_id, accept=True)

    @observe_latency("reject_estimate")
    async def reject_estimate(self, caller: Caller, estimate_id: str) -> Estimate:
        return await self._decide(caller, estimate_id, accept=False)

    async def _decide(self, caller: Caller, estimate_id: str, *, accept: bool) -> Estimate:
        now = self._clock()
        command = self._validate(EstimateRef, {"estimate_id": estimate_id}, caller, now)
        tier = self._policy.require(caller.tier, Operation.DECIDE_ESTIMATE)

        updated, events = await self._conflicts.mutate(
            command.estimate_id,
            lambda current: state_machine.decide(current, caller.user_id, accept, now),
        )
        logger.info("Estimate %s %s by %s", updated.id, updated.status.value.lower(), caller.user_id)
        await self._publish(events)
        return self._view(tier, updated, now)

    # ------------------------------------------------------------------
    # Shop operations
    # ------------------------------------------------------------------

    @observe_latency("list_shop_estimates")
    async def list_shop_estimates(self, caller: Caller, shop_id: str) -> list[Estimate]:
        now = self._clock()
        command = self._validate(ShopRef, {"shop_id": shop_id}, caller, now)
        tier = self._policy.require(caller.tier, Operation.LIST_SHOP_ESTIMATES)
        self._require_shop(caller, command.shop_id)

        estimates = await call_dependency(
            "estimate_repository", self._repo.find_by_recipient(command.shop_id), self._timeout
        )
        return [self._view(tier, e, now) for e in estimates]

    @observe_latency("begin_review")
    async def begin_review(self, caller: Caller, estimate_id: str, shop_id: str) -> Estimate:
        now = self._clock()
        command = self._validate(
            ShopEstimateRef, {"estimate_id": estimate_id, "shop_id": shop_id}, caller, now
        )
        tier = self._policy.require(caller.tier, Operation.BEGIN_REVIEW)
        self._require_shop(caller, command.shop_id)

        updated, events = await self._conflicts.mutate(
            command.estimate_id,
            lambda current: state_machine.begin_review(current, command.shop_id, now),
        )
        await self._publish(events)
        return self._view(tier, updated, now)

    @observe_latency("respond_to_estimate")
    async def respond_to_estimate(
        self,
        caller: Caller,
        estimate_id: str,
        shop_id: str,
        quoted_cost: Any,
        timeline_days: Any = None,
        details: Any = None,
    ) -> Estimate:
        now = self._clock()
        command = self._validate(
            RespondToEstimateCommand,
            {
                "estimate_id": estimate_id,
                "shop_id": shop_id,
                "quoted_cost": quoted_cost,
                "timeline_days": timeline_days,
                "details": details,
            },
            caller,
            now,
        )
        tier = self._policy.require(caller.tier, Operation.RESPOND_TO_ESTIMATE)
        self._require_shop(caller, command.shop_id)

        updated, events = await self._conflicts.mutate(
            command.estimate_id,
            lambda current: state_machine.respond(
                current,
                command.shop_id,
                command.quoted_cost,
                command.timeline_days,
                command.details,
                now=now,
            ),
        )
        logger.info("Estimate %s quoted at %.2f by %s", updated.id, updated.quoted_cost, command.shop_id)
        await self._publish(events)
        return self._view(tier, updated, now)

    @observe_latency("list_leads")
    async def list_leads(self, caller: Caller, shop_id: str) -> list[Estimate]:
        """Open requests addressed to the shop that it has not quoted yet."""
        now = self._clock()
        command = self._validate(ShopRef, {"shop_id": shop_id}, caller, now)
        tier = self._policy.require(caller.tier, Operation.LIST_LEADS)
        self._require_shop(caller, command.shop_id)

        estimates = await call_dependency(
            "estimate_repository", self._repo.find_by_recipient(command.shop_id), self._timeout
        )
        return [
            self._view(tier, e, now)
            for e in estimates
            if e.effective_status(now) in LEAD_STATUSES
        ]

    # ------------------------------------------------------------------
    # Premium operations
    # ------------------------------------------------------------------

    @observe_latency("broadcast_estimate")
    async def broadcast_estimate(
        self,
        caller: Caller,
        request: Mapping[str, Any],
        cancel: Optional[asyncio.Event] = None,
    ) -> list[BroadcastResult]:
        now = self._clock()
        command = self._validate(BroadcastEstimateCommand, request, caller, now)
        self._policy.require(caller.tier, Operation.BROADCAST_ESTIMATE)

        results = await self._broadcaster.broadcast(
            caller.user_id, command.request_fields(), command.recipient_shop_ids, cancel
        )
        await self._publish([
            DomainEvent(
                kind=EventKind.ESTIMATE_REQUESTED,
                party_id=r.shop_id,
                estimate_id=r.estimate_id,
                payload={"requesterId": caller.user_id, "broadcast": True},
            )
            for r in results
            if r.sent and r.estimate_id
        ])
        return results

    # ------------------------------------------------------------------
    # Wow++ operations
    # ------------------------------------------------------------------

    @observe_latency("assess_damage")
    async def assess_damage(self, caller: Caller, estimate_id: str, media_refs: Any) -> AIAssessment:
        now = self._clock()
        command = self._validate(
            AssessDamageCommand, {"estimate_id": estimate_id, "media_refs": media_refs}, caller, now
        )
        self._policy.require(caller.tier, Operation.ASSESS_DAMAGE)
        if self._assessor is None:
            raise ai_unavailable("damage_assessor")

        estimate = await self._conflicts.load(command.estimate_id)
        party_id = caller.party_in(estimate)
        state_machine.ensure_writable_by(estimate, party_id, now)

        raw = await call_dependency(
            "damage_assessor",
            self._assessor.assess(command.media_refs),
            self._settings.ai_timeout_seconds,
        )
        try:
            assessment = AIAssessment.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise DependencyError("damage_assessor", "Damage assessor returned a malformed result") from exc

        updated, events = await self._conflicts.mutate(
            command.estimate_id,
            lambda current: state_machine.attach_assessment(current, party_id, assessment, now),
        )
        await self._publish(events)
        return updated.ai_assessment

    @observe_latency("set_expiry")
    async def set_expiry(self, caller: Caller, estimate_id: str, expires_at: Any) -> Acknowledgement:
        now = self._clock()
        command = self._validate(
            SetExpiryCommand, {"estimate_id": estimate_id, "expires_at": expires_at}, caller, now
        )
        self._policy.require(caller.tier, Operation.SET_EXPIRY)

        updated, events = await self._conflicts.mutate(
            command.estimate_id,
            lambda current: state_machine.set_expiry(
                current, caller.party_in(current), command.expires_at, now
            ),
        )
        await self._publish(events)
        # The expiry is committed; reminder scheduling is best-effort from here
        try:
            scheduled = len(await self._reminders.schedule(updated, now))
        except DependencyError:
            logger.exception("Failed to schedule reminders for estimate %s", updated.id)
            scheduled = 0
        return Acknowledgement(
            estimate_id=updated.id,
            status=updated.effective_status(now).value,
            message="Expiry date set",
            at=now,
            expires_at=updated.expires_at,
            reminders_scheduled=scheduled,
        )

    @observe_latency("list_pending_reminders")
    async def list_pending_reminders(
        self,
        caller: Caller,
        user_id: Optional[str] = None,
        shop_id: Optional[str] = None,
        status: str = "pending",
        type: str = "all",
    ) -> list[Reminder]:
        now = self._clock()
        query = self._validate(
            PendingRemindersQuery,
            {"user_id": user_id, "shop_id": shop_id, "status": status, "type": type},
            caller,
            now,
        )
        self._policy.require(caller.tier, Operation.LIST_PENDING_REMINDERS)
        if query.user_id is not None and query.user_id != caller.user_id:
            raise UnauthorizedError("Callers may only list their own reminders")
        if query.shop_id is not None:
            self._require_shop(caller, query.shop_id)

        return await self._reminders.list_for(
            caller.party_ids,
            user_id=query.user_id,
            shop_id=query.shop_id,
            status=ReminderStatus(query.status),
            type=None if query.type == "all" else ReminderType(query.type),
        )

    @observe_latency("suggest_resolutions")
    async def suggest_resolutions(self, caller: Caller, estimate_id: str) -> list[ResolutionSuggestion]:
        now = self._clock()
        command = self._validate(EstimateRef, {"estimate_id": estimate_id}, caller, now)
        self._policy.require(caller.tier, Operation.SUGGEST_RESOLUTIONS)

        estimate = await self._conflicts.load(command.estimate_id)
        updated, events = await self._resolution.suggest(caller.party_in(estimate), estimate.id, now)
        await self._publish(events)
        return list(updated.resolution_suggestions)

    @observe_latency("resolve_with_ai")
    async def resolve_with_ai(
        self,
        caller: Caller,
        estimate_id: str,
        resolution_id: str,
        chosen_option: str,
        notes: Optional[str] = None,
    ) -> Acknowledgement:
        now = self._clock()
        command = self._validate(
            ResolveWithAICommand,
            {
                "estimate_id": estimate_id,
                "resolution_id": resolution_id,
                "chosen_option": chosen_option,
                "notes": notes,
            },
            caller,
            now,
        )
        self._policy.require(caller.tier, Operation.RESOLVE_WITH_AI)

        estimate = await self._conflicts.load(command.estimate_id)
        updated, events = await self._resolution.apply(
            caller.party_in(estimate),
            estimate.id,
            command.resolution_id,
            command.chosen_option,
            command.notes,
            now,
        )
        await self._publish(events)
        return Acknowledgement(
            estimate_id=updated.id,
            status=updated.effective_status(now).value,
            message="Resolution applied",
            at=now,
            resolution_type=updated.applied_resolution.resolution_type.value,
        )

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    @observe_latency("dispatch_due_reminders")
    async def dispatch_due_reminders(self) -> int:
        return await self._reminders.dispatch_due(self._clock())


def _requested_event(estimate: Estimate) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.ESTIMATE_REQUESTED,
        party_id=estimate.recipient_shop_id,
        estimate_id=estimate.id,
        payload={"requesterId": estimate.requester_id},
    )
