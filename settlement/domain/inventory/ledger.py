from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from settlement.core.errors import InsufficientStock, ProductDeletionBlocked, ProductNotFound
from settlement.domain.orders.aggregates import CartLine
from settlement.persistence.models import OrderItemModel, ProductModel

logger = logging.getLogger(__name__)


@dataclass
class StockReservation:
    """Decrements applied so far in one reservation attempt, in cart order."""

    ledger: "InventoryLedger"
    steps: list[tuple[int, int]] = field(default_factory=list)

    def record(self, product_id: int, amount: int) -> None:
        self.steps.append((product_id, amount))

    def release(self) -> None:
        for product_id, amount in reversed(self.steps):
            self.ledger.increase_quantity(product_id, amount)
        self.steps.clear()

    @property
    def reserved(self) -> dict[int, int]:
        totals: dict[int, int] = {}
        for product_id, amount in self.steps:
            totals[product_id] = totals.get(product_id, 0) + amount
        return totals


class InventoryLedger:
    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: int) -> ProductModel:
        product = self.session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFound(f"product {product_id} not found", product_id=product_id)
        return product

    def quantity_of(self, product_id: int) -> int:
        quantity = self.session.scalar(select(ProductModel.quantity).where(ProductModel.id == product_id))
        if quantity is None:
            raise ProductNotFound(f"product {product_id} not found", product_id=product_id)
        return int(quantity)

    def reduce_quantity(self, product_id: int, amount: int) -> None:
        if amount <= 0:
            raise ValueError(f"reduce amount must be positive, got {amount}")
        result = self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .where(ProductModel.quantity >= amount)
            .values(quantity=ProductModel.quantity - amount)
        )
        if result.rowcount == 0:
            raise InsufficientStock(product_id=product_id, requested=amount)

    def increase_quantity(self, product_id: int, amount: int) -> None:
        if amount <= 0:
            raise ValueError(f"increase amount must be positive, got {amount}")
        result = self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(quantity=ProductModel.quantity + amount)
        )
        if result.rowcount == 0:
            raise ProductNotFound(f"product {product_id} not found", product_id=product_id)

    def reserve(self, lines: Iterable[CartLine]) -> StockReservation:
        reservation = StockReservation(ledger=self)
        for line in lines:
            try:
                self.reduce_quantity(line.product_id, line.quantity)
            except Exception:
                logger.info(
                    "stock reservation failed at product_id=%s; releasing %s earlier line(s)",
                    line.product_id,
                    len(reservation.steps),
                )
                reservation.release()
                raise
            reservation.record(line.product_id, line.quantity)
        return reservation

    def delete_product(self, product_id: int) -> None:
        product = self.get_product(product_id)
        purchased = self.session.scalar(
            select(func.count()).select_from(OrderItemModel).where(OrderItemModel.product_id == product_id)
        )
        if purchased:
            raise ProductDeletionBlocked(
                "product cannot be deleted because it has been purchased",
                product_id=product_id,
            )
        self.session.delete(product)
        self.session.flush()
