"""Estimate workflow router.

Pattern:
  1. Resolve the caller from the X-Caller-* headers
  2. Take the workflow from app state
  3. Pass the raw body through; the workflow validates it
  4. Wrap the result in the response envelope

Static paths are declared before ``/{estimate_id}`` so they are not
captured by it.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request, status

from repairflow.core.exceptions import UnauthorizedError
from repairflow.core.pagination import PaginationParams
from repairflow.core.response import DataResponse, ListResponse, paginated
from repairflow.schemas.estimate import (
    Acknowledgement,
    AIAssessmentOut,
    BroadcastResultOut,
    EstimateOut,
    ReminderOut,
    ResolutionSuggestionOut,
)
from repairflow.services.estimates import Caller, EstimateWorkflow

router = APIRouter(prefix="/estimates", tags=["Estimates"])


# ------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------

def get_workflow(request: Request) -> EstimateWorkflow:
    return request.app.state.workflow


def get_caller(
    x_caller_id: Optional[str] = Header(default=None),
    x_caller_tier: Optional[str] = Header(default=None),
    x_shop_id: Optional[str] = Header(default=None),
) -> Caller:
    """Identity set by the upstream auth gateway."""
    if not x_caller_id or not x_caller_tier:
        raise UnauthorizedError("X-Caller-Id and X-Caller-Tier headers are required")
    return Caller(user_id=x_caller_id, tier=x_caller_tier, shop_id=x_shop_id or None)


def _field(body: dict[str, Any], name: str, camel: str) -> Any:
    return body.get(camel, body.get(name))


def _page(estimates: list, pagination: PaginationParams) -> dict:
    page = paginated(estimates, pagination)
    page["data"] = [EstimateOut.model_validate(e) for e in page["data"]]
    return page


# ------------------------------------------------------------------
# Collection endpoints
# ------------------------------------------------------------------

@router.post("", response_model=DataResponse[EstimateOut], status_code=status.HTTP_201_CREATED)
async def create_estimate(
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    """Request an estimate from a single shop."""
    estimate = await workflow.create_estimate(caller, body)
    return {"data": EstimateOut.model_validate(estimate)}


@router.get("/user/{requester_id}", response_model=ListResponse[EstimateOut])
async def list_own_estimates(
    requester_id: str,
    pagination: PaginationParams = Depends(),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    estimates = await workflow.list_own_estimates(caller, requester_id)
    return _page(estimates, pagination)


@router.get("/shop/{shop_id}", response_model=ListResponse[EstimateOut])
async def list_shop_estimates(
    shop_id: str,
    pagination: PaginationParams = Depends(),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    estimates = await workflow.list_shop_estimates(caller, shop_id)
    return _page(estimates, pagination)


@router.get("/leads", response_model=ListResponse[EstimateOut])
async def list_leads(
    shop_id: Optional[str] = Query(default=None, alias="shopId"),
    pagination: PaginationParams = Depends(),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    """Open requests for the caller's shop (Premium)."""
    estimates = await workflow.list_leads(caller, shop_id or caller.shop_id or "")
    return _page(estimates, pagination)


@router.post("/broadcast", response_model=DataResponse[list[BroadcastResultOut]])
async def broadcast_estimate(
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    """Send one request to several shops. Per-shop failures are reported, not raised."""
    results = await workflow.broadcast_estimate(caller, body)
    return {"data": [BroadcastResultOut.model_validate(r) for r in results]}


@router.get("/reminders/pending", response_model=DataResponse[list[ReminderOut]])
async def list_pending_reminders(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    shop_id: Optional[str] = Query(default=None, alias="shopId"),
    reminder_status: str = Query(default="pending", alias="status"),
    reminder_type: str = Query(default="all", alias="type"),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    reminders = await workflow.list_pending_reminders(
        caller, user_id=user_id, shop_id=shop_id, status=reminder_status, type=reminder_type
    )
    return {"data": [ReminderOut.model_validate(r) for r in reminders]}


# ------------------------------------------------------------------
# Single-estimate endpoints
# ------------------------------------------------------------------

@router.get("/{estimate_id}", response_model=DataResponse[EstimateOut])
async def get_estimate(
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    estimate = await workflow.get_estimate(caller, estimate_id)
    return {"data": EstimateOut.model_validate(estimate)}


@router.post("/{estimate_id}/review", response_model=DataResponse[EstimateOut])
async def begin_review(
    estimate_id: str,
    body: dict[str, Any] = Body(default_factory=dict),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    shop_id = _field(body, "shop_id", "shopId") or caller.shop_id
    estimate = await workflow.begin_review(caller, estimate_id, shop_id)
    return {"data": EstimateOut.model_validate(estimate)}


@router.put("/{estimate_id}/respond", response_model=DataResponse[EstimateOut])
async def respond_to_estimate(
    estimate_id: str,
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    """Quote an estimate on behalf of the recipient shop (Standard)."""
    estimate = await workflow.respond_to_estimate(
        caller,
        estimate_id,
        _field(body, "shop_id", "shopId") or caller.shop_id,
        _field(body, "quoted_cost", "quotedCost"),
        _field(body, "timeline_days", "timelineDays"),
        body.get("details"),
    )
    return {"data": EstimateOut.model_validate(estimate)}


@router.post("/{estimate_id}/accept", response_model=DataResponse[EstimateOut])
async def accept_estimate(
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    estimate = await workflow.accept_estimate(caller, estimate_id)
    return {"data": EstimateOut.model_validate(estimate)}


@router.post("/{estimate_id}/reject", response_model=DataResponse[EstimateOut])
async def reject_estimate(
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    estimate = await workflow.reject_estimate(caller, estimate_id)
    return {"data": EstimateOut.model_validate(estimate)}


@router.post("/{estimate_id}/ai-assess", response_model=DataResponse[AIAssessmentOut])
async def assess_damage(
    estimate_id: str,
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    assessment = await workflow.assess_damage(
        caller, estimate_id, _field(body, "media_refs", "mediaRefs")
    )
    return {"data": AIAssessmentOut.model_validate(assessment)}


@router.patch("/{estimate_id}/set-expiry", response_model=DataResponse[Acknowledgement])
async def set_expiry(
    estimate_id: str,
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    ack = await workflow.set_expiry(caller, estimate_id, _field(body, "expires_at", "expiresAt"))
    return {"data": ack}


@router.get(
    "/{estimate_id}/resolve-conflict-suggestions",
    response_model=DataResponse[list[ResolutionSuggestionOut]],
)
async def suggest_resolutions(
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    """Ask the AI advisor for ways to settle a disputed quote (Wow++)."""
    suggestions = await workflow.suggest_resolutions(caller, estimate_id)
    return {"data": [ResolutionSuggestionOut.model_validate(s) for s in suggestions]}


@router.post("/{estimate_id}/resolve-with-ai", response_model=DataResponse[Acknowledgement])
async def resolve_with_ai(
    estimate_id: str,
    body: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
    workflow: EstimateWorkflow = Depends(get_workflow),
):
    ack = await workflow.resolve_with_ai(
        caller,
        estimate_id,
        _field(body, "resolution_id", "resolutionId"),
        _field(body, "chosen_option", "chosenOption"),
        body.get("notes"),
    )
    return {"data": ack}
