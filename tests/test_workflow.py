"""Tests for the estimate workflow operations end to end (in-memory)."""

import logging
from datetime import timedelta

import pytest

from repairflow.core.exceptions import (
    ConflictError,
    DependencyError,
    DependencyTimeoutError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from repairflow.domain.estimate import EstimateStatus
from repairflow.services.estimates import Caller, EstimateWorkflow

from conftest import T0, FakeAssessor, FakeDirectory, make_request


class TestCreateAndList:
    async def test_create_returns_pending_projected_estimate(self, workflow, free_requester, notifier, repo):
        estimate = await workflow.create_estimate(free_requester, make_request())
        assert estimate.status == EstimateStatus.PENDING
        assert estimate.requester_id == "user-1"
        assert estimate.created_at == T0
        assert estimate.media_refs == []  # hidden at Free
        assert (await repo.find_by_id(estimate.id)).media_refs == ["https://cdn.example.com/damage/1.jpg"]
        assert notifier.sent[0][:2] == ("shop-1", "estimate_requested")

    async def test_unknown_shop_is_not_found(self, repo, settings, clock, free_requester):
        workflow = EstimateWorkflow(
            repo, directory=FakeDirectory({"shop-2"}), settings=settings, clock=clock
        )
        with pytest.raises(NotFoundError):
            await workflow.create_estimate(free_requester, make_request())
        assert len(repo) == 0

    async def test_validation_runs_before_tier_check(self, workflow):
        unknown_tier = Caller(user_id="user-1", tier="gold")
        with pytest.raises(ValidationError):
            await workflow.create_estimate(unknown_tier, make_request(damageDescription=""))
        with pytest.raises(UnauthorizedError):
            await workflow.create_estimate(unknown_tier, make_request())

    async def test_list_own_newest_first(self, workflow, free_requester, clock):
        first = await workflow.create_estimate(free_requester, make_request())
        clock.advance(minutes=10)
        second = await workflow.create_estimate(free_requester, make_request(recipientShopId="shop-2"))
        listed = await workflow.list_own_estimates(free_requester, "user-1")
        assert [e.id for e in listed] == [second.id, first.id]

    async def test_cannot_list_someone_elses_estimates(self, workflow, free_requester):
        with pytest.raises(UnauthorizedError):
            await workflow.list_own_estimates(free_requester, "user-2")

    async def test_get_estimate_requires_a_party(self, workflow, pending, shop, outsider):
        assert (await workflow.get_estimate(shop, pending.id)).id == pending.id
        with pytest.raises(UnauthorizedError):
            await workflow.get_estimate(outsider, pending.id)
        with pytest.raises(NotFoundError):
            await workflow.get_estimate(shop, "missing")


class TestShopOperations:
    async def test_list_shop_estimates(self, workflow, pending, standard_shop):
        listed = await workflow.list_shop_estimates(standard_shop, "shop-1")
        assert [e.id for e in listed] == [pending.id]

    async def test_free_shop_cannot_list(self, workflow, pending):
        free_shop = Caller(user_id="owner-1", tier="free", shop_id="shop-1")
        with pytest.raises(UnauthorizedError):
            await workflow.list_shop_estimates(free_shop, "shop-1")

    async def test_must_act_for_the_shop(self, workflow, pending, standard_shop):
        with pytest.raises(UnauthorizedError):
            await workflow.list_shop_estimates(standard_shop, "shop-2")

    async def test_review_then_respond(self, workflow, pending, standard_shop, notifier):
        reviewing = await workflow.begin_review(standard_shop, pending.id, "shop-1")
        assert reviewing.status == EstimateStatus.ASSESSING
        quoted = await workflow.respond_to_estimate(
            standard_shop, pending.id, "shop-1", 1500.0, 6, "Replace quarter panel"
        )
        assert quoted.status == EstimateStatus.QUOTED
        assert quoted.quoted_cost == 1500.0
        assert notifier.to("user-1") == ["review_started", "estimate_quoted"]

    async def test_negative_quote_cites_quoted_cost(self, workflow, pending, standard_shop, repo):
        with pytest.raises(ValidationError) as exc_info:
            await workflow.respond_to_estimate(standard_shop, pending.id, "shop-1", -50)
        assert "quotedCost" in exc_info.value.fields
        assert (await repo.find_by_id(pending.id)).status == EstimateStatus.PENDING

    async def test_respond_twice_conflicts(self, workflow, pending, standard_shop):
        await workflow.respond_to_estimate(standard_shop, pending.id, "shop-1", 700.0)
        with pytest.raises(ConflictError) as exc_info:
            await workflow.respond_to_estimate(standard_shop, pending.id, "shop-1", 650.0)
        assert exc_info.value.estimate_id == pending.id

    async def test_wrong_shop_cannot_respond(self, workflow, pending, outsider):
        with pytest.raises(UnauthorizedError):
            await workflow.respond_to_estimate(outsider, pending.id, "shop-9", 700.0)

    async def test_leads_are_open_and_unexpired(self, workflow, requester, shop, clock):
        open_one = await workflow.create_estimate(requester, make_request())
        quoted = await workflow.create_estimate(requester, make_request())
        expiring = await workflow.create_estimate(requester, make_request())
        await workflow.respond_to_estimate(shop, quoted.id, "shop-1", 300.0)
        await workflow.set_expiry(requester, expiring.id, (clock.now + timedelta(hours=2)).isoformat())

        clock.advance(hours=3)
        leads = await workflow.list_leads(shop, "shop-1")
        assert [e.id for e in leads] == [open_one.id]

    async def test_standard_cannot_list_leads(self, workflow, standard_shop):
        with pytest.raises(UnauthorizedError):
            await workflow.list_leads(standard_shop, "shop-1")


class TestDecisions:
    async def test_accept(self, workflow, quoted, free_requester, notifier):
        accepted = await workflow.accept_estimate(free_requester, quoted.id)
        assert accepted.status == EstimateStatus.ACCEPTED
        assert notifier.to("shop-1")[-1] == "estimate_accepted"

    async def test_reject_then_nothing_changes(self, workflow, quoted, free_requester, shop):
        await workflow.reject_estimate(free_requester, quoted.id)
        with pytest.raises(ConflictError):
            await workflow.accept_estimate(free_requester, quoted.id)
        with pytest.raises(ConflictError):
            await workflow.respond_to_estimate(shop, quoted.id, "shop-1", 10.0)

    async def test_shop_cannot_accept_its_own_quote(self, workflow, quoted, shop):
        with pytest.raises(UnauthorizedError):
            await workflow.accept_estimate(shop, quoted.id)


class TestExpiry:
    async def test_past_expiry_rejected(self, workflow, pending, requester, clock):
        with pytest.raises(ValidationError) as exc_info:
            await workflow.set_expiry(requester, pending.id, (clock.now - timedelta(hours=1)).isoformat())
        assert exc_info.value.fields == ["expiresAt"]

    async def test_future_expiry_accepted(self, workflow, pending, requester, clock):
        expires = clock.now + timedelta(days=2)
        ack = await workflow.set_expiry(requester, pending.id, expires.isoformat())
        assert ack.estimate_id == pending.id
        assert ack.expires_at == expires
        assert ack.reminders_scheduled == 2
        assert ack.status == "Pending"

    async def test_premium_cannot_set_expiry(self, workflow, pending, clock):
        premium = Caller(user_id="user-1", tier="premium")
        with pytest.raises(UnauthorizedError):
            await workflow.set_expiry(premium, pending.id, (clock.now + timedelta(days=1)).isoformat())

    async def test_expired_estimate_reads_expired_and_rejects_writes(self, workflow, pending, requester, shop, clock):
        await workflow.set_expiry(requester, pending.id, (clock.now + timedelta(hours=1)).isoformat())
        clock.advance(hours=1, minutes=1)

        assert (await workflow.get_estimate(requester, pending.id)).status == EstimateStatus.EXPIRED
        with pytest.raises(ConflictError):
            await workflow.respond_to_estimate(shop, pending.id, "shop-1", 400.0)


class TestAssessment:
    async def test_assessment_is_stored_and_returned(self, workflow, pending, requester, repo, notifier):
        assessment = await workflow.assess_damage(requester, pending.id, ["https://cdn.example.com/a.jpg"])
        assert assessment.estimated_cost == 1850.0
        assert assessment.assessed_at == T0
        assert (await repo.find_by_id(pending.id)).ai_assessment == assessment
        assert notifier.to("shop-1")[-1] == "assessment_ready"

    async def test_non_party_never_reaches_the_assessor(self, workflow, pending, outsider, assessor):
        with pytest.raises(UnauthorizedError):
            await workflow.assess_damage(outsider, pending.id, ["https://cdn.example.com/a.jpg"])
        assert assessor.calls == []

    async def test_media_refs_required(self, workflow, pending, requester):
        with pytest.raises(ValidationError) as exc_info:
            await workflow.assess_damage(requester, pending.id, [])
        assert exc_info.value.fields == ["mediaRefs"]

    async def test_no_assessor_configured(self, repo, settings, clock, requester):
        workflow = EstimateWorkflow(repo, settings=settings, clock=clock)
        estimate = await workflow.create_estimate(requester, make_request())
        with pytest.raises(DependencyError) as exc_info:
            await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])
        assert exc_info.value.status_code == 503


class TestCollaboratorFailures:
    async def _workflow(self, repo, settings, clock, assessor):
        return EstimateWorkflow(repo, assessor=assessor, settings=settings, clock=clock)

    async def test_slow_assessor_times_out(self, repo, settings, clock, requester):
        workflow = await self._workflow(repo, settings, clock, FakeAssessor(delay=1.0))
        estimate = await workflow.create_estimate(requester, make_request())
        with pytest.raises(DependencyTimeoutError) as exc_info:
            await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])
        assert exc_info.value.dependency == "damage_assessor"
        assert exc_info.value.status_code == 504
        assert (await repo.find_by_id(estimate.id)).ai_assessment is None

    async def test_assessor_has_its_own_budget(self, repo, settings, clock, requester):
        budgets = settings.model_copy(update={"dependency_timeout_seconds": 0.05, "ai_timeout_seconds": 2.0})
        workflow = await self._workflow(repo, budgets, clock, FakeAssessor(delay=0.2))
        estimate = await workflow.create_estimate(requester, make_request())
        assessment = await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])
        assert assessment.estimated_cost == 1850.0

    async def test_failing_assessor_keeps_the_cause(self, repo, settings, clock, requester):
        boom = RuntimeError("model endpoint returned 500")
        workflow = await self._workflow(repo, settings, clock, FakeAssessor(error=boom))
        estimate = await workflow.create_estimate(requester, make_request())
        with pytest.raises(DependencyError) as exc_info:
            await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])
        assert not isinstance(exc_info.value, DependencyTimeoutError)
        assert exc_info.value.__cause__ is boom

    async def test_malformed_assessment(self, repo, settings, clock, requester):
        bad = FakeAssessor(result={"summary": "?", "estimated_cost": -5, "confidence": 3})
        workflow = await self._workflow(repo, settings, clock, bad)
        estimate = await workflow.create_estimate(requester, make_request())
        with pytest.raises(DependencyError):
            await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])

    async def test_notifier_failure_does_not_undo_the_change(self, workflow, notifier, free_requester, repo, caplog):
        notifier.fail = True
        with caplog.at_level(logging.ERROR):
            estimate = await workflow.create_estimate(free_requester, make_request())
        assert await repo.find_by_id(estimate.id) is not None
        assert "Failed to deliver estimate_requested" in caplog.text


class TestLatencyObservation:
    async def test_slow_operation_is_signalled_not_failed(self, repo, settings, clock, requester, caplog):
        workflow = EstimateWorkflow(
            repo, assessor=FakeAssessor(delay=0.1), settings=settings, clock=clock
        )
        estimate = await workflow.create_estimate(requester, make_request())
        workflow.latency.budget_ms = 20.0
        slow = []
        workflow.latency.add_listener(lambda op, ms: slow.append((op, ms)))

        with caplog.at_level(logging.WARNING):
            assessment = await workflow.assess_damage(requester, estimate.id, ["https://cdn.example.com/a.jpg"])

        assert assessment.summary
        assert [op for op, _ in slow] == ["assess_damage"]
        assert slow[0][1] >= 20.0
        record = next(r for r in caplog.records if r.getMessage() == "slow_operation")
        assert record.operation == "assess_damage"
        assert record.budget_ms == 20.0

    async def test_failing_listener_does_not_fail_the_call(self, workflow, free_requester):
        workflow.latency.budget_ms = -1.0
        workflow.latency.add_listener(lambda op, ms: 1 / 0)
        estimate = await workflow.create_estimate(free_requester, make_request())
        assert estimate.status == EstimateStatus.PENDING

    async def test_failed_operations_are_timed_too(self, workflow, free_requester):
        seen = []
        workflow.latency.budget_ms = -1.0
        workflow.latency.add_listener(lambda op, ms: seen.append(op))
        with pytest.raises(UnauthorizedError):
            await workflow.list_own_estimates(free_requester, "user-2")
        assert seen == ["list_own_estimates"]
