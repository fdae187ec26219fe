from __future__ import annotations

from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from settlement.domain.orders.aggregates import CartLine, CartSnapshot
from settlement.persistence.models import CartItemModel


class CartStore(Protocol):
    def get_items_by_user(self, user_id: int) -> list[CartLine]:
        ...

    def clear_cart(self, user_id: int) -> int:
        ...


class SqlCartStore:
    """Per-user cart persisted in ``cart_items``."""

    def __init__(self, session: Session):
        self.session = session

    def get_items_by_user(self, user_id: int) -> list[CartLine]:
        rows = self.session.scalars(
            select(CartItemModel).where(CartItemModel.user_id == user_id).order_by(CartItemModel.id.asc())
        ).all()
        return [
            CartLine(
                product_id=row.product_id,
                product_name=row.product_name,
                unit_price=row.price_cents,
                quantity=row.quantity,
            )
            for row in rows
        ]

    def add_item(self, user_id: int, line: CartLine) -> CartItemModel:
        row = self.session.scalar(
            select(CartItemModel)
            .where(CartItemModel.user_id == user_id)
            .where(CartItemModel.product_id == line.product_id)
        )
        if row is None:
            row = CartItemModel(
                user_id=user_id,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                price_cents=line.unit_price,
            )
            self.session.add(row)
        else:
            row.quantity += line.quantity
            row.price_cents = line.unit_price
            row.product_name = line.product_name
        self.session.flush()
        return row

    def clear_cart(self, user_id: int) -> int:
        result = self.session.execute(delete(CartItemModel).where(CartItemModel.user_id == user_id))
        self.session.flush()
        return int(result.rowcount or 0)

    def snapshot(self, user_id: int) -> CartSnapshot:
        return CartSnapshot.of(user_id, self.get_items_by_user(user_id))
