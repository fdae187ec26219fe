from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from settlement.core.security import Actor, get_actor, require_admin
from settlement.domain.refunds.ledger import RefundLedger, serialize_refund
from settlement.orchestration.refunds import RefundOrchestrator
from settlement.persistence.pg import get_session
from settlement.providers.base import PaymentProvider
from settlement.providers.registry import get_payment_provider

router = APIRouter(prefix="/admin", tags=["refunds"])


class DirectRefundRequest(BaseModel):
    amount: int | None = Field(default=None, gt=0, description="int cents; defaults to the remaining balance")


class RejectRefundRequest(BaseModel):
    reason: str | None = None


@router.get("/refunds")
def list_pending_refunds(
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    rows = RefundLedger(session).get_pending()
    return {"count": len(rows), "refunds": [serialize_refund(row) for row in rows]}


@router.post("/refunds/{refund_id}/approve")
def approve_refund(
    refund_id: int,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    require_admin(actor)
    outcome = RefundOrchestrator(session, provider).approve_refund(refund_id, admin_id=actor.id or "admin")
    return outcome.as_dict()


@router.post("/refunds/{refund_id}/reject")
def reject_refund(
    refund_id: int,
    req: RejectRefundRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    require_admin(actor)
    refund = RefundOrchestrator(session, provider).reject_refund(refund_id, admin_id=actor.id or "admin", reason=req.reason)
    return {"success": True, "refund": serialize_refund(refund)}


@router.post("/orders/{order_id}/refund")
def refund_order(
    order_id: int,
    req: DirectRefundRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    require_admin(actor)
    outcome = RefundOrchestrator(session, provider).refund_order(order_id, admin_id=actor.id or "admin", amount=req.amount)
    return outcome.as_dict()
