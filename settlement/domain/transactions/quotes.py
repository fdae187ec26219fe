from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.persistence.models import PaymentQuoteModel


class PaymentQuoteLedger:
    """Amounts shown to the shopper for providers whose status call does not echo one.

    NETS status responses carry no amount, so the quoted total is kept
    against the retrieval ref and stands in for the captured amount.
    """

    def __init__(self, session: Session):
        self.session = session

    def record(self, provider: str, provider_ref: str, amount: int, currency: str) -> PaymentQuoteModel:
        row = self.get(provider, provider_ref)
        if row is None:
            row = PaymentQuoteModel(provider=provider, provider_ref=provider_ref)
            self.session.add(row)
        row.amount_cents = amount
        row.currency = currency
        self.session.flush()
        return row

    def get(self, provider: str, provider_ref: str) -> PaymentQuoteModel | None:
        stmt = select(PaymentQuoteModel).where(
            PaymentQuoteModel.provider == provider,
            PaymentQuoteModel.provider_ref == provider_ref,
        )
        return self.session.execute(stmt).scalars().first()
