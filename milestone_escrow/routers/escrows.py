"""Escrow lifecycle endpoints."""

from fastapi import APIRouter, Depends, Query

from milestone_escrow.auth.roles import get_caller
from milestone_escrow.models.escrow import MilestoneSpec
from milestone_escrow.runtime import get_lifecycle
from milestone_escrow.schemas.escrow import (
    EscrowCreate,
    EscrowPage,
    EscrowResponse,
    EventResponse,
    MilestoneResponse,
    ProgressResponse,
)
from milestone_escrow.services.lifecycle import EscrowLifecycle
from milestone_escrow.services.store import specs_from_arrays

router = APIRouter(prefix="/escrows", tags=["escrows"])


@router.post("", response_model=EscrowResponse, status_code=201)
async def create_escrow(
    data: EscrowCreate,
    caller: str = Depends(get_caller),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowResponse:
    """Operator opens an escrow with fixed milestones."""
    if data.milestones is not None:
        specs = [MilestoneSpec(description=m.description, weight=m.weight) for m in data.milestones]
    else:
        specs = specs_from_arrays(data.descriptions or [], data.weights or [])
    escrow_id = await lifecycle.create_escrow(
        caller, data.title, data.beneficiary, data.depositor, data.total_amount, specs
    )
    return EscrowResponse.model_validate(lifecycle.get_escrow(escrow_id))


@router.get("", response_model=EscrowPage)
async def list_escrows(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowPage:
    """Id-ordered page of escrows."""
    items = lifecycle.list_escrows(offset, limit)
    return EscrowPage(
        total=lifecycle.count(),
        offset=offset,
        items=[EscrowResponse.model_validate(r) for r in items],
    )


@router.get("/{escrow_id}", response_model=EscrowResponse)
async def get_escrow(
    escrow_id: int,
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowResponse:
    return EscrowResponse.model_validate(lifecycle.get_escrow(escrow_id))


@router.get("/{escrow_id}/progress", response_model=ProgressResponse)
async def get_progress(
    escrow_id: int,
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> ProgressResponse:
    return ProgressResponse(
        escrow_id=escrow_id,
        progress=lifecycle.progress(escrow_id),
        milestone_count=lifecycle.milestone_count(escrow_id),
        all_milestones_completed=lifecycle.all_milestones_completed(escrow_id),
    )


@router.get("/{escrow_id}/events", response_model=list[EventResponse])
async def get_events(
    escrow_id: int,
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> list[EventResponse]:
    """Audit trail of committed transitions for one escrow."""
    return [
        EventResponse(
            sequence=e.sequence,
            event=e.action.value,
            escrow_id=e.escrow_id,
            timestamp=e.timestamp,
            details=e.details,
        )
        for e in lifecycle.events(escrow_id)
    ]


@router.get("/{escrow_id}/milestones/{index}", response_model=MilestoneResponse)
async def get_milestone(
    escrow_id: int,
    index: int,
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> MilestoneResponse:
    return MilestoneResponse.model_validate(lifecycle.get_milestone(escrow_id, index))


@router.post("/{escrow_id}/fund", response_model=EscrowResponse)
async def fund_escrow(
    escrow_id: int,
    caller: str = Depends(get_caller),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowResponse:
    """Depositor funds the escrow. Requires a prior allowance to the custody account."""
    record = await lifecycle.fund(escrow_id, caller)
    return EscrowResponse.model_validate(record)


@router.post("/{escrow_id}/milestones/{index}/complete", response_model=MilestoneResponse)
async def complete_milestone(
    escrow_id: int,
    index: int,
    caller: str = Depends(get_caller),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> MilestoneResponse:
    """Operator marks a milestone complete."""
    milestone = await lifecycle.complete_milestone(escrow_id, index, caller)
    return MilestoneResponse.model_validate(milestone)


@router.post("/{escrow_id}/release", response_model=EscrowResponse)
async def release_escrow(
    escrow_id: int,
    caller: str = Depends(get_caller),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowResponse:
    """Operator releases the full amount to the beneficiary."""
    record = await lifecycle.release(escrow_id, caller)
    return EscrowResponse.model_validate(record)


@router.post("/{escrow_id}/refund", response_model=EscrowResponse)
async def refund_escrow(
    escrow_id: int,
    caller: str = Depends(get_caller),
    lifecycle: EscrowLifecycle = Depends(get_lifecycle),
) -> EscrowResponse:
    """Operator refunds the full amount to the depositor."""
    record = await lifecycle.refund(escrow_id, caller)
    return EscrowResponse.model_validate(record)
