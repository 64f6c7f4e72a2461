"""Tests for the broadcast coordinator and the broadcast operation."""

import asyncio

import pytest

from repairflow.core.exceptions import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from repairflow.domain.estimate import EstimateStatus
from repairflow.domain.events import EventKind
from repairflow.repositories.memory import InMemoryEstimateRepository
from repairflow.services.broadcast import CANCELLED_MESSAGE, BroadcastCoordinator
from repairflow.services.estimates import Caller, EstimateWorkflow

from conftest import FakeClock, FakeDirectory, make_request

REQUEST = {
    "vehicle": {"make": "Toyota", "model": "Corolla"},
    "damage_description": "Front fender crease",
}


class FlakyRepository(InMemoryEstimateRepository):
    """Fails (or stalls) saves addressed to selected shops."""

    def __init__(self, failing=(), slow=(), delay=1.0):
        super().__init__()
        self.failing = set(failing)
        self.slow = set(slow)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def save(self, estimate, *, expected_version=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if estimate.recipient_shop_id in self.failing:
                raise OSError("disk full")
            if estimate.recipient_shop_id in self.slow:
                await asyncio.sleep(self.delay)
            return await super().save(estimate, expected_version=expected_version)
        finally:
            self.in_flight -= 1


class RaisingDirectory:
    """Raises an application error for one shop instead of answering."""

    def __init__(self, shop_id, error):
        self.shop_id = shop_id
        self.error = error

    async def exists(self, shop_id):
        if shop_id == self.shop_id:
            raise self.error
        return True


def _coordinator(repo, **kwargs):
    kwargs.setdefault("timeout", 0.2)
    kwargs.setdefault("clock", FakeClock())
    return BroadcastCoordinator(repo, **kwargs)


class TestBroadcastCoordinator:
    async def test_one_result_per_recipient_in_order(self):
        repo = InMemoryEstimateRepository()
        coordinator = _coordinator(repo, directory=FakeDirectory({"shop-1", "shop-3"}))
        results = await coordinator.broadcast("user-1", REQUEST, ["shop-1", "shop-2", "shop-3"])

        assert [r.shop_id for r in results] == ["shop-1", "shop-2", "shop-3"]
        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert "not found" in results[1].message
        assert results[1].estimate_id is None
        assert len(repo) == 2

    async def test_each_recipient_gets_its_own_pending_estimate(self):
        repo = InMemoryEstimateRepository()
        results = await _coordinator(repo).broadcast("user-1", REQUEST, ["shop-1", "shop-2"])
        for result in results:
            estimate = await repo.find_by_id(result.estimate_id)
            assert estimate.status == EstimateStatus.PENDING
            assert estimate.recipient_shop_id == result.shop_id
            assert estimate.requester_id == "user-1"

    async def test_duplicates_create_independent_estimates(self):
        repo = InMemoryEstimateRepository()
        results = await _coordinator(repo).broadcast("user-1", REQUEST, ["shop-1", "shop-1"])
        assert [r.status for r in results] == ["sent", "sent"]
        assert results[0].estimate_id != results[1].estimate_id
        assert len(await repo.find_by_recipient("shop-1")) == 2

    async def test_repository_failure_is_isolated(self):
        repo = FlakyRepository(failing={"shop-2"})
        results = await _coordinator(repo).broadcast("user-1", REQUEST, ["shop-1", "shop-2", "shop-3"])
        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert "disk full" in results[1].message
        assert len(repo) == 2

    async def test_timeout_is_a_failed_entry(self):
        repo = FlakyRepository(slow={"shop-2"}, delay=1.0)
        results = await _coordinator(repo, timeout=0.1).broadcast(
            "user-1", REQUEST, ["shop-1", "shop-2", "shop-3"]
        )
        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert "did not respond" in results[1].message

    async def test_concurrency_is_bounded(self):
        repo = FlakyRepository()
        shops = [f"shop-{i}" for i in range(8)]
        results = await _coordinator(repo, max_concurrency=2).broadcast("user-1", REQUEST, shops)
        assert all(r.sent for r in results)
        assert repo.max_in_flight <= 2

    async def test_cancel_before_start(self):
        repo = InMemoryEstimateRepository()
        cancel = asyncio.Event()
        cancel.set()
        results = await _coordinator(repo).broadcast("user-1", REQUEST, ["shop-1", "shop-2"], cancel)
        assert [r.status for r in results] == ["failed", "failed"]
        assert all(r.message == CANCELLED_MESSAGE for r in results)
        assert len(repo) == 0

    async def test_cancel_stops_new_dispatches_only(self):
        cancel = asyncio.Event()

        class CancellingRepository(InMemoryEstimateRepository):
            async def save(self, estimate, *, expected_version=None):
                saved = await super().save(estimate, expected_version=expected_version)
                cancel.set()
                return saved

        repo = CancellingRepository()
        results = await _coordinator(repo, max_concurrency=1).broadcast(
            "user-1", REQUEST, ["shop-1", "shop-2", "shop-3"], cancel
        )
        assert [r.status for r in results] == ["sent", "failed", "failed"]
        assert len(repo) == 1


class TestBroadcastOperation:
    async def test_premium_broadcast_notifies_each_shop(self, workflow, notifier):
        caller = Caller(user_id="user-1", tier="premium")
        request = make_request(recipientShopIds=["shop-1", "shop-2", "shop-3"])
        del request["recipientShopId"]

        results = await workflow.broadcast_estimate(caller, request)

        assert len(results) == 3
        assert all(r.sent for r in results)
        assert sorted(notifier.sent[i][0] for i in range(3)) == ["shop-1", "shop-2", "shop-3"]
        assert set(notifier.kinds()) == {EventKind.ESTIMATE_REQUESTED.value}

    async def test_free_tier_cannot_broadcast(self, workflow, free_requester, repo):
        request = make_request(recipientShopIds=["shop-1"])
        with pytest.raises(UnauthorizedError):
            await workflow.broadcast_estimate(free_requester, request)
        assert len(repo) == 0

    async def test_empty_recipients_rejected_before_dispatch(self, workflow, free_requester, repo):
        request = make_request(recipientShopIds=[])
        del request["recipientShopId"]
        with pytest.raises(ValidationError) as exc_info:
            await workflow.broadcast_estimate(free_requester, request)
        assert exc_info.value.fields == ["recipientShopIds"]
        assert len(repo) == 0

    async def test_application_error_for_one_shop_is_a_failed_entry(
        self, repo, reminder_repo, notifier, settings, clock
    ):
        workflow = EstimateWorkflow(
            repo,
            reminders=reminder_repo,
            notifier=notifier,
            directory=RaisingDirectory("shop-2", NotFoundError("Shop", "shop-2")),
            settings=settings,
            clock=clock,
        )
        caller = Caller(user_id="user-1", tier="premium")
        request = make_request(recipientShopIds=["shop-1", "shop-2", "shop-3"])
        del request["recipientShopId"]

        results = await workflow.broadcast_estimate(caller, request)

        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert results[1].message == "Shop 'shop-2' not found"
        assert len(repo) == 2
        assert sorted(party for party, _, _ in notifier.sent) == ["shop-1", "shop-3"]


class TestBroadcastCoordinatorErrors:
    async def test_conflict_from_repository_does_not_abort(self):
        class ConflictingRepository(InMemoryEstimateRepository):
            async def save(self, estimate, *, expected_version=None):
                if estimate.recipient_shop_id == "shop-1":
                    raise ConflictError("Duplicate request", estimate.id)
                return await super().save(estimate, expected_version=expected_version)

        repo = ConflictingRepository()
        results = await _coordinator(repo).broadcast("user-1", REQUEST, ["shop-1", "shop-2"])
        assert [r.status for r in results] == ["failed", "sent"]
        assert results[0].message == "Duplicate request"
        assert len(repo) == 1
