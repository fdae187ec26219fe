from __future__ import annotations

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from settlement.core.errors import RefundNotFound, RefundNotPending
from settlement.persistence.models import RefundModel


class RefundStatus:
    REQUESTED = "requested"
    COMPLETED = "completed"
    REJECTED = "rejected"

    TERMINAL = frozenset({COMPLETED, REJECTED})


class RefundLedger:
    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        order_id: int,
        amount: int,
        currency: str,
        status: str = RefundStatus.REQUESTED,
        transaction_id: int | None = None,
        user_id: int | None = None,
        method: str | None = None,
        provider_ref: str | None = None,
        provider_response: str | None = None,
    ) -> RefundModel:
        row = RefundModel(
            order_id=order_id,
            transaction_id=transaction_id,
            user_id=user_id,
            amount_cents=amount,
            currency=currency,
            method=method,
            provider_ref=provider_ref,
            status=status,
            provider_response=provider_response,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def get_by_id(self, refund_id: int) -> RefundModel:
        row = self.session.get(RefundModel, refund_id)
        if row is None:
            raise RefundNotFound(f"refund {refund_id} not found", refund_id=refund_id)
        return row

    def get_pending(self) -> list[RefundModel]:
        stmt = (
            select(RefundModel)
            .where(RefundModel.status == RefundStatus.REQUESTED)
            .order_by(desc(RefundModel.id))
        )
        return list(self.session.scalars(stmt).all())

    def find_requested_by_order_id(self, order_id: int) -> RefundModel | None:
        stmt = (
            select(RefundModel)
            .where(RefundModel.order_id == order_id)
            .where(RefundModel.status == RefundStatus.REQUESTED)
            .order_by(desc(RefundModel.id))
            .limit(1)
        )
        return self.session.scalar(stmt)

    def get_latest_by_order_id(self, order_id: int) -> RefundModel | None:
        stmt = select(RefundModel).where(RefundModel.order_id == order_id).order_by(desc(RefundModel.id)).limit(1)
        return self.session.scalar(stmt)

    def sum_completed_by_order(self, order_id: int) -> int:
        stmt = (
            select(func.coalesce(func.sum(RefundModel.amount_cents), 0))
            .where(RefundModel.order_id == order_id)
            .where(RefundModel.status == RefundStatus.COMPLETED)
        )
        return int(self.session.scalar(stmt) or 0)

    def update_status(
        self,
        refund_id: int,
        status: str,
        provider_ref: str | None = None,
        provider_response: str | None = None,
        amount: int | None = None,
    ) -> bool:
        """Move a refund to ``status``; returns False when it is already there.

        Only ``requested`` rows can change. Re-applying a row's current terminal
        status is a no-op so a retried admin action or a redelivered provider
        event does not fail.
        """
        if status not in RefundStatus.TERMINAL:
            raise ValueError(f"refund can only move to a terminal status, got {status}")
        row = self.get_by_id(refund_id)
        if row.status == status:
            return False
        if row.status != RefundStatus.REQUESTED:
            raise RefundNotPending(
                f"refund {refund_id} is already {row.status}",
                refund_id=refund_id,
                status=row.status,
            )
        row.status = status
        row.provider_ref = provider_ref
        row.provider_response = provider_response
        if amount is not None:
            row.amount_cents = amount
        self.session.flush()
        return True

    def complete_requested_by_order_id(
        self,
        order_id: int,
        status: str,
        provider_ref: str | None = None,
        provider_response: str | None = None,
        amount: int | None = None,
    ) -> int:
        if status not in RefundStatus.TERMINAL:
            raise ValueError(f"refund can only move to a terminal status, got {status}")
        values: dict = {
            "status": status,
            "provider_ref": provider_ref,
            "provider_response": provider_response,
        }
        if amount is not None:
            values["amount_cents"] = amount
        result = self.session.execute(
            update(RefundModel)
            .where(RefundModel.order_id == order_id)
            .where(RefundModel.status == RefundStatus.REQUESTED)
            .values(**values)
        )
        self.session.flush()
        return int(result.rowcount or 0)


def serialize_refund(row: RefundModel) -> dict:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "transaction_id": row.transaction_id,
        "user_id": row.user_id,
        "amount": row.amount_cents,
        "currency": row.currency,
        "method": row.method,
        "provider_ref": row.provider_ref,
        "status": row.status,
        "provider_response": row.provider_response,
        "created_at": row.created_at.isoformat().replace("+00:00", "Z"),
    }
