"""
Shared pytest fixtures for the RepairFlow test suite.

Every workflow built here runs on in-memory repositories, a controllable
clock and recording fakes for the external collaborators.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from repairflow.core.config import Settings
from repairflow.repositories.memory import InMemoryEstimateRepository, InMemoryReminderRepository
from repairflow.services.estimates import Caller, EstimateWorkflow

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
VIN = "1HGCM82633A004352"


def make_request(**overrides):
    """A valid single-shop estimate request in wire (camelCase) form."""
    request = {
        "recipientShopId": "shop-1",
        "vehicle": {"make": "Honda", "model": "Civic", "vin": VIN},
        "damageDescription": "Rear bumper dented in a parking-lot collision",
        "mediaRefs": ["https://cdn.example.com/damage/1.jpg"],
    }
    request.update(overrides)
    return request


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def notify(self, party_id, event_kind, payload):
        if self.fail:
            raise RuntimeError("mail relay unavailable")
        self.sent.append((party_id, event_kind, payload))

    def kinds(self):
        return [kind for _, kind, _ in self.sent]

    def to(self, party_id):
        return [kind for pid, kind, _ in self.sent if pid == party_id]


class FakeAssessor:
    def __init__(self, result=None, delay=0.0, error=None):
        self.result = result or {
            "summary": "Moderate rear-end damage; bumper replacement and paint",
            "estimated_cost": 1850.0,
            "confidence": 0.82,
        }
        self.delay = delay
        self.error = error
        self.calls = []

    async def assess(self, media_refs):
        self.calls.append(list(media_refs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.result)


class FakeAdvisor:
    def __init__(self, suggestions=None):
        self.suggestions = suggestions if suggestions is not None else [
            {
                "suggestion": "Renegotiate the quote with the shop for a small reduction.",
                "confidence": 0.85,
                "type": "renegotiation",
                "options": ["5% reduction", "10% reduction"],
            },
            {
                "suggestion": "Bring in an independent insurance mediator.",
                "confidence": 0.72,
                "type": "mediation",
                "options": ["Independent mediator"],
            },
        ]
        self.calls = 0

    async def suggest_resolutions(self, estimate):
        self.calls += 1
        return [dict(s) for s in self.suggestions]


class FakeDirectory:
    def __init__(self, known):
        self.known = set(known)

    async def exists(self, shop_id):
        return shop_id in self.known


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    return Settings(
        latency_budget_ms=500.0,
        dependency_timeout_seconds=0.2,
        ai_timeout_seconds=0.2,
        broadcast_max_concurrency=4,
        reminder_offsets_hours=[24, 1],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def repo():
    return InMemoryEstimateRepository()


@pytest.fixture
def reminder_repo():
    return InMemoryReminderRepository()


@pytest.fixture
def assessor():
    return FakeAssessor()


@pytest.fixture
def advisor():
    return FakeAdvisor()


@pytest.fixture
def workflow(repo, reminder_repo, notifier, assessor, advisor, settings, clock):
    return EstimateWorkflow(
        repo,
        reminders=reminder_repo,
        notifier=notifier,
        assessor=assessor,
        advisor=advisor,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def requester():
    return Caller(user_id="user-1", tier="wowplus")


@pytest.fixture
def free_requester():
    return Caller(user_id="user-1", tier="free")


@pytest.fixture
def shop():
    return Caller(user_id="owner-1", tier="wowplus", shop_id="shop-1")


@pytest.fixture
def standard_shop():
    return Caller(user_id="owner-1", tier="standard", shop_id="shop-1")


@pytest.fixture
def outsider():
    return Caller(user_id="user-9", tier="wowplus", shop_id="shop-9")


@pytest.fixture
async def pending(workflow, requester):
    """A freshly created estimate addressed to shop-1."""
    return await workflow.create_estimate(requester, make_request())


@pytest.fixture
async def quoted(workflow, shop, pending):
    return await workflow.respond_to_estimate(
        shop, pending.id, "shop-1", 1200.0, 5, "Replace bumper cover and repaint"
    )
