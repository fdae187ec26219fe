from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from settlement.core.errors import OrderAccessDenied
from settlement.core.security import Actor, get_actor, require_admin, require_customer
from settlement.domain.orders.aggregates import OrderStatus
from settlement.domain.orders.invoice import build_invoice
from settlement.domain.orders.store import OrderStore, serialize_order
from settlement.domain.refunds.ledger import serialize_refund
from settlement.orchestration.refunds import RefundOrchestrator
from settlement.persistence.pg import get_session
from settlement.providers.base import PaymentProvider
from settlement.providers.registry import get_payment_provider

router = APIRouter(tags=["orders"])


class OrderStatusRequest(BaseModel):
    status: str = Field(pattern="^(" + "|".join(sorted(OrderStatus.ALL)) + ")$")


class PickupRequest(BaseModel):
    collected: bool = True


@router.get("/orders")
def list_my_orders(
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    user_id = require_customer(actor)
    rows = OrderStore(session).get_orders_by_user(user_id)
    return {"count": len(rows), "orders": [serialize_order(row) for row in rows]}


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    payload = build_invoice(session, order_id)
    if actor.type not in {"admin", "system"} and payload["user_id"] != require_customer(actor):
        raise OrderAccessDenied("order belongs to another user", order_id=order_id)
    return payload


@router.post("/orders/{order_id}/refund-requests")
def request_refund(
    order_id: int,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    user_id = require_customer(actor)
    refund = RefundOrchestrator(session, provider).request_refund(order_id, user_id)
    return {"success": True, "refund": serialize_refund(refund)}


@router.get("/admin/orders")
def list_all_orders(
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    rows = OrderStore(session).get_all_orders()
    return {"count": len(rows), "orders": [serialize_order(row) for row in rows]}


@router.post("/admin/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    req: OrderStatusRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    order = OrderStore(session).update_status(order_id, req.status)
    return {"success": True, "order": serialize_order(order)}


@router.post("/admin/orders/{order_id}/pickup")
def mark_pickup(
    order_id: int,
    req: PickupRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    order = OrderStore(session).update_pickup_collected(order_id, req.collected)
    return {"success": True, "order": serialize_order(order)}


@router.delete("/admin/orders/{order_id}")
def delete_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    OrderStore(session).delete_order(order_id)
    return {"success": True, "order_id": order_id}
