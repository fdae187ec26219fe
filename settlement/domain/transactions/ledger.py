from __future__ import annotations

from datetime import datetime

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from settlement.persistence.models import TransactionModel


class TransactionLedger:
    """Append-only audit trail of provider payment captures.

    There is no update path; the capture id recorded here is what
    the refund path hands back to the provider.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        local_order_id: int,
        provider: str,
        provider_capture_id: str,
        amount: int,
        currency: str,
        status: str,
        provider_order_id: str | None = None,
        payer_id: str | None = None,
        payer_email: str | None = None,
        captured_at: datetime | None = None,
    ) -> TransactionModel:
        row = TransactionModel(
            local_order_id=local_order_id,
            provider=provider,
            provider_order_id=provider_order_id,
            provider_capture_id=provider_capture_id,
            payer_id=payer_id,
            payer_email=payer_email,
            amount_cents=amount,
            currency=currency,
            status=status,
            captured_at=captured_at,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def find_by_order_id(self, order_id: int) -> TransactionModel | None:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.local_order_id == order_id)
            .order_by(desc(TransactionModel.id))
            .limit(1)
        )
        return self.session.scalar(stmt)

    def find_by_capture_id(self, capture_id: str) -> TransactionModel | None:
        return self.session.scalar(
            select(TransactionModel).where(TransactionModel.provider_capture_id == capture_id)
        )


def serialize_transaction(row: TransactionModel) -> dict:
    return {
        "id": row.id,
        "local_order_id": row.local_order_id,
        "provider": row.provider,
        "provider_order_id": row.provider_order_id,
        "provider_capture_id": row.provider_capture_id,
        "payer_id": row.payer_id,
        "payer_email": row.payer_email,
        "amount": row.amount_cents,
        "currency": row.currency,
        "status": row.status,
        "captured_at": row.captured_at.isoformat().replace("+00:00", "Z") if row.captured_at else None,
    }
