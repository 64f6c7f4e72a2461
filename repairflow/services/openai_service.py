"""Estimate AI service: OpenAI-powered damage assessment and resolution advice.

Provides two capabilities:
1. **Damage assessment**: looks at the damage photos of a request and
   returns a summary, an estimated repair cost and a confidence score.
2. **Resolution advice**: proposes ways to settle a disputed quote
   (renegotiation, mediation, compromise or escalation), each with options
   the parties can pick from.

Implements the ``DamageAssessor`` and ``ResolutionAdvisor`` interfaces.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from openai import AsyncOpenAI, OpenAIError

from repairflow.core.config import settings
from repairflow.core.exceptions import DependencyError
from repairflow.domain.estimate import Estimate

logger = logging.getLogger(__name__)

# ── System prompts ────────────────────────────────────────────────────────

DAMAGE_ASSESSMENT_PROMPT = """You are an experienced collision-repair estimator.

You are given photos of a damaged vehicle. Describe the visible damage and
estimate the cost of repairing it at a typical independent body shop.

Output ONLY valid JSON matching this schema:

{
  "summary": "<one or two sentences describing the damaged areas and likely repairs>",
  "estimated_cost": <number, repair cost in USD>,
  "confidence": <float 0.0-1.0>,
  "damage_areas": ["<area>", ...],
  "severity": "low" | "medium" | "high" | "critical"
}

## Confidence Scoring Rules
- 0.9-1.0 = damage clearly visible from several angles
- 0.6-0.8 = damage visible but hidden damage is likely
- 0.3-0.5 = photos are unclear or show only part of the damage
- 0.0-0.2 = the photos do not show vehicle damage

## Rules
1. Output ONLY valid JSON, no markdown and no commentary.
2. If the photos do not show a vehicle, set estimated_cost to 0 and confidence to 0.0."""


RESOLUTION_PROMPT = """You are a neutral mediator between a vehicle owner and a body shop
who disagree about a repair estimate.

Given the estimate below, propose up to three ways to resolve the
disagreement.

Output ONLY valid JSON matching this schema:

{
  "suggestions": [
    {
      "suggestion": "<what the parties should do, one or two sentences>",
      "confidence": <float 0.0-1.0, how likely this resolves the dispute>,
      "type": "renegotiation" | "mediation" | "compromise" | "escalation_recommendation",
      "options": ["<short option label>", ...]
    }
  ]
}

## Rules
1. Output ONLY valid JSON, no markdown and no commentary.
2. Option labels are at most 100 characters.
3. Order suggestions from most to least likely to succeed."""


class OpenAIEstimateAssistant:
    """Thin async wrapper around OpenAI for estimate assessment and mediation."""

    def __init__(self) -> None:
        if not settings.ai_enabled:
            raise DependencyError(
                "openai",
                "OpenAI API key is not configured. Set OPENAI_API_KEY in your .env file.",
                status_code=503,
                code="DEPENDENCY_UNAVAILABLE",
            )
        self.client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout,
        )
        self.model = settings.openai_model
        self.max_tokens = settings.openai_max_tokens

    # ── Core OpenAI call ──────────────────────────────────────────────────

    async def _call_openai(self, system_prompt: str, user_content: Any) -> Dict[str, Any]:
        """Send an async request to OpenAI and return parsed JSON."""
        try:
            logger.info("Calling OpenAI model=%s", self.model)
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                max_completion_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )

            content = response.choices[0].message.content
            if not content:
                raise DependencyError("openai", "Empty response from OpenAI")

            logger.info("OpenAI call successful")
            return json.loads(content)

        except OpenAIError as exc:
            logger.error("OpenAI API error: %s", exc)
            raise DependencyError("openai", f"OpenAI service error: {exc}") from exc
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from OpenAI: %s", exc)
            raise DependencyError("openai", f"Invalid JSON response: {exc}") from exc

    # ── Public methods ────────────────────────────────────────────────────

    async def assess(self, media_refs: List[str]) -> Dict[str, Any]:
        """Assess damage from photo URLs.

        Returns:
            Dict with ``summary``, ``estimated_cost`` and ``confidence`` keys.
        """
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": f"Assess the damage shown in these {len(media_refs)} photo(s)."}
        ]
        content.extend({"type": "image_url", "image_url": {"url": ref}} for ref in media_refs)
        result = await self._call_openai(DAMAGE_ASSESSMENT_PROMPT, content)
        return {
            "summary": result.get("summary", ""),
            "estimated_cost": result.get("estimated_cost", 0),
            "confidence": result.get("confidence", 0.0),
        }

    async def suggest_resolutions(self, estimate: Estimate) -> List[Dict[str, Any]]:
        facts = {
            "status": estimate.status.value,
            "vehicle": estimate.vehicle.model_dump() if estimate.vehicle else None,
            "damageDescription": estimate.damage_description,
            "quotedCost": estimate.quoted_cost,
            "timelineDays": estimate.timeline_days,
            "shopDetails": estimate.details,
            "aiEstimatedCost": estimate.ai_assessment.estimated_cost if estimate.ai_assessment else None,
        }
        result = await self._call_openai(
            RESOLUTION_PROMPT, f"Estimate:\n{json.dumps(facts, indent=2, default=str)}"
        )
        suggestions = result.get("suggestions", [])
        return suggestions if isinstance(suggestions, list) else []


def get_ai_service() -> OpenAIEstimateAssistant:
    """Factory that creates an OpenAIEstimateAssistant instance.

    Raises ``DependencyError`` when the OpenAI key is not configured.
    """
    return OpenAIEstimateAssistant()
