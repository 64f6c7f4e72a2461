"""AI-assisted conflict resolution for estimates."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import pydantic

from repairflow.core.exceptions import DependencyError
from repairflow.domain.estimate import ResolutionSuggestion
from repairflow.domain.state_machine import (
    Transition,
    apply_resolution,
    attach_suggestions,
    ensure_writable_by,
)
from repairflow.repositories.interfaces import ResolutionAdvisor
from repairflow.services.conflicts import ConflictResolver
from repairflow.services.dependencies import call_dependency

logger = logging.getLogger(__name__)


def ai_unavailable(dependency: str) -> DependencyError:
    return DependencyError(
        dependency,
        f"{dependency} is not configured",
        status_code=503,
        code="DEPENDENCY_UNAVAILABLE",
    )


class ResolutionService:
    def __init__(
        self,
        resolver: ConflictResolver,
        advisor: Optional[ResolutionAdvisor],
        *,
        timeout: float = 5.0,
    ):
        self._resolver = resolver
        self._advisor = advisor
        self._timeout = timeout

    async def suggest(self, party_id: str, estimate_id: str, now: datetime) -> Transition:
        """Ask the advisor for suggestions and store them on the estimate."""
        if self._advisor is None:
            raise ai_unavailable("resolution_advisor")

        estimate = await self._resolver.load(estimate_id)
        ensure_writable_by(estimate, party_id, now)

        raw = await call_dependency(
            "resolution_advisor", self._advisor.suggest_resolutions(estimate), self._timeout
        )
        try:
            suggestions = [ResolutionSuggestion.model_validate(item) for item in raw or []]
        except pydantic.ValidationError as exc:
            raise DependencyError(
                "resolution_advisor", "Resolution advisor returned malformed suggestions"
            ) from exc

        logger.info("Got %d resolution suggestion(s) for estimate %s", len(suggestions), estimate_id)
        return await self._resolver.mutate(
            estimate_id, lambda current: attach_suggestions(current, party_id, suggestions, now)
        )

    async def apply(
        self,
        party_id: str,
        estimate_id: str,
        resolution_id: str,
        chosen_option: str,
        notes: Optional[str],
        now: datetime,
    ) -> Transition:
        return await self._resolver.mutate(
            estimate_id,
            lambda current: apply_resolution(
                current, party_id, resolution_id, chosen_option, notes, now
            ),
        )
