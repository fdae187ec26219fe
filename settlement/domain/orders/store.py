from __future__ import annotations

from typing import Iterable

from sqlalchemy import delete, desc, func, select
from sqlalchemy.orm import Session, selectinload

from settlement.core.errors import InvalidOrderStatus, OrderDeletionBlocked, OrderNotFound
from settlement.domain.orders.aggregates import CartLine, OrderStatus, OrderTotals
from settlement.persistence.models import OrderItemModel, OrderModel, TransactionModel


class OrderStore:
    def __init__(self, session: Session):
        self.session = session

    def create_order(
        self,
        user_id: int | None,
        address: str,
        lines: Iterable[CartLine],
        total: int,
        delivery_type: str,
        delivery_fee: int,
        payment_method: str | None,
        payment_ref: str | None = None,
    ) -> OrderModel:
        order = OrderModel(
            user_id=user_id,
            address=address or "",
            delivery_type=delivery_type or "doorstep",
            delivery_fee_cents=delivery_fee,
            status=OrderStatus.PENDING,
            total_cents=total,
            payment_method=payment_method,
            payment_ref=payment_ref,
        )
        order.lines = [
            OrderItemModel(
                product_id=line.product_id,
                product_name=line.product_name or "",
                quantity=line.quantity,
                unit_price_cents=line.unit_price,
            )
            for line in lines
        ]
        # Header and lines go out in one flush; a failure leaves neither.
        self.session.add(order)
        self.session.flush()
        return order

    def get_order_by_id(self, order_id: int, for_update: bool = False) -> OrderModel:
        stmt = select(OrderModel).options(selectinload(OrderModel.lines)).where(OrderModel.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        order = self.session.scalar(stmt)
        if order is None:
            raise OrderNotFound(f"order {order_id} not found", order_id=order_id)
        return order

    def find_by_payment_ref(self, payment_ref: str) -> OrderModel | None:
        return self.session.scalar(
            select(OrderModel).options(selectinload(OrderModel.lines)).where(OrderModel.payment_ref == payment_ref)
        )

    def get_orders_by_user(self, user_id: int) -> list[OrderModel]:
        stmt = (
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .where(OrderModel.user_id == user_id)
            .order_by(desc(OrderModel.created_at), desc(OrderModel.id))
        )
        return list(self.session.scalars(stmt).all())

    def get_all_orders(self) -> list[OrderModel]:
        stmt = (
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .order_by(desc(OrderModel.created_at), desc(OrderModel.id))
        )
        return list(self.session.scalars(stmt).all())

    def update_status(self, order_id: int, status: str) -> OrderModel:
        if status not in OrderStatus.ALL:
            raise InvalidOrderStatus(f"unknown order status: {status}", status=status)
        order = self.get_order_by_id(order_id)
        order.status = status
        self.session.flush()
        return order

    def update_pickup_collected(self, order_id: int, collected: bool = True) -> OrderModel:
        order = self.get_order_by_id(order_id)
        order.pickup_collected = collected
        if collected and order.delivery_type == "pickup" and order.status not in {
            OrderStatus.REFUNDED,
            OrderStatus.CANCELLED,
        }:
            order.status = OrderStatus.COLLECTED
        self.session.flush()
        return order

    def delete_order(self, order_id: int) -> None:
        self.get_order_by_id(order_id)
        referenced = self.session.scalar(
            select(func.count()).select_from(TransactionModel).where(TransactionModel.local_order_id == order_id)
        )
        if referenced:
            raise OrderDeletionBlocked(
                "order is referenced by a payment transaction and cannot be deleted",
                order_id=order_id,
            )
        self.session.execute(delete(OrderItemModel).where(OrderItemModel.order_id == order_id))
        self.session.execute(delete(OrderModel).where(OrderModel.id == order_id))
        self.session.flush()

    @staticmethod
    def summarize(order: OrderModel, refunded: int = 0) -> OrderTotals:
        subtotal = sum(line.quantity * line.unit_price_cents for line in order.lines)
        return OrderTotals(
            subtotal=subtotal,
            delivery_fee=order.delivery_fee_cents,
            total=order.total_cents,
            refunded=refunded,
        )


def serialize_order(order: OrderModel, totals: OrderTotals | None = None) -> dict:
    payload = {
        "id": order.id,
        "user_id": order.user_id,
        "address": order.address,
        "delivery_type": order.delivery_type,
        "delivery_fee": order.delivery_fee_cents,
        "status": order.status,
        "total": order.total_cents,
        "payment_method": order.payment_method,
        "pickup_collected": order.pickup_collected,
        "created_at": order.created_at.isoformat().replace("+00:00", "Z"),
        "lines": [
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "unit_price": line.unit_price_cents,
            }
            for line in order.lines
        ],
    }
    if totals is not None:
        payload["totals"] = totals.as_dict()
    return payload
