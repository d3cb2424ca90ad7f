"""
Approval API routes.
Reviewers list pending requests and record decisions.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from ...agents.escalation import EscalationEngine
from ...approvals.models import ApprovalRequest
from ...models.schemas import ApprovalDecisionRequest, ApprovalResponse
from ..dependencies import get_escalation_engine, get_request_id

logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(approval: ApprovalRequest) -> ApprovalResponse:
    return ApprovalResponse.model_validate({
        **approval.model_dump(),
        "status": approval.status.value
    })


@router.get("/approvals", response_model=List[ApprovalResponse])
async def list_pending_approvals(
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    """Pending approval requests for a tenant, newest first."""
    pending = await engine.list_pending(tenant_id)
    return [to_response(approval) for approval in pending]


@router.get("/approvals/{approval_id}", response_model=ApprovalResponse)
async def get_approval(
    approval_id: str,
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    """Requests of other tenants are reported as 404."""
    return to_response(await engine.get_approval(approval_id, tenant_id))


@router.post("/approvals/{approval_id}/decision", response_model=ApprovalResponse)
async def decide_approval(
    approval_id: str,
    decision: ApprovalDecisionRequest,
    engine: EscalationEngine = Depends(get_escalation_engine),
    request_id: str = Depends(get_request_id)
):
    """
    Approve, reject or escalate a pending request.

    Returns 404 for ids unknown to the tenant and 409 when the request
    was already resolved.
    """
    approval = await engine.decide(
        approval_id,
        decision.approved,
        notes=decision.notes,
        approver_id=decision.approver_id,
        escalate=decision.escalate,
        tenant_id=decision.tenant_id
    )
    logger.info(
        f"Decision recorded for approval {approval_id}: {approval.status.value}",
        extra={"request_id": request_id, "tenant_id": approval.tenant_id}
    )
    return to_response(approval)
