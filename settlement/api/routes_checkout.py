from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from settlement.core.config import get_settings
from settlement.core.errors import EmptyCart, PaymentAmountMismatch
from settlement.core.security import Actor, get_actor, require_roles
from settlement.domain.cart.store import SqlCartStore
from settlement.domain.inventory.ledger import InventoryLedger
from settlement.domain.orders.aggregates import CartLine, CartSnapshot, CheckoutDetails, compute_total
from settlement.domain.transactions.quotes import PaymentQuoteLedger
from settlement.orchestration.settlement import SettlementOrchestrator
from settlement.persistence.pg import get_session
from settlement.providers.base import PaymentProvider
from settlement.providers.nets import NetsClient
from settlement.providers.registry import get_nets_client, get_payment_provider
from settlement.providers.schemas import decode_paypal_capture

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CartLineIn(BaseModel):
    product_id: int = Field(ge=1)
    product_name: str = ""
    # Ignored for pricing; guest lines are re-priced from the catalog.
    unit_price: int | None = Field(default=None, ge=0, description="int cents")
    quantity: int = Field(ge=1)


class CartRequest(BaseModel):
    # Guest carts live in the storefront session and are sent with the request.
    items: list[CartLineIn] = Field(default_factory=list)
    delivery_fee: int = Field(default=0, ge=0, description="int cents")


class SettleRequest(CartRequest):
    address: str = ""
    delivery_type: str = Field(default="doorstep", pattern="^(doorstep|pickup)$")


class PayPalCaptureRequest(SettleRequest):
    provider_order_id: str = Field(min_length=1)


class NetsCompleteRequest(SettleRequest):
    txn_retrieval_ref: str = Field(min_length=1)
    wait: bool = False


def _require_shopper(actor: Actor) -> None:
    require_roles(actor, {"customer", "guest"}, detail="checkout requires a storefront shopper")


def _resolve_cart(actor: Actor, body: CartRequest, session: Session) -> CartSnapshot:
    if actor.user_id is not None:
        return SqlCartStore(session).snapshot(actor.user_id)
    catalog = InventoryLedger(session)
    lines = []
    for item in body.items:
        product = catalog.get_product(item.product_id)
        lines.append(
            CartLine(
                product_id=product.id,
                product_name=product.name,
                unit_price=product.price_cents,
                quantity=item.quantity,
            )
        )
    return CartSnapshot.of(None, lines)


def _checkout_details(body: SettleRequest) -> CheckoutDetails:
    return CheckoutDetails(
        address=body.address,
        delivery_type=body.delivery_type,
        delivery_fee=body.delivery_fee,
    )


def _quote(actor: Actor, body: CartRequest, session: Session) -> int:
    cart = _resolve_cart(actor, body, session)
    if cart.is_empty:
        raise EmptyCart("cart is empty")
    return compute_total(cart.lines, body.delivery_fee)


@router.post("/paypal/orders")
def create_paypal_order(
    req: CartRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    _require_shopper(actor)
    total = _quote(actor, req, session)
    currency = get_settings().default_currency
    provider_order_id = provider.create_order(total, currency)
    return {"provider_order_id": provider_order_id, "amount": total, "currency": currency}


@router.post("/paypal/capture")
def capture_paypal_order(
    req: PayPalCaptureRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    _require_shopper(actor)
    payload = provider.capture_order(req.provider_order_id)
    confirmation = decode_paypal_capture(payload, provider=provider.provider_name)
    cart = _resolve_cart(actor, req, session)
    orchestrator = SettlementOrchestrator(session, cart_store=SqlCartStore(session))
    result = orchestrator.settle(confirmation, cart, _checkout_details(req))
    return result.as_dict()


@router.post("/nets/qr")
def request_nets_qr(
    req: CartRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    nets: NetsClient = Depends(get_nets_client),
):
    _require_shopper(actor)
    total = _quote(actor, req, session)
    qr = nets.request_qr(total)
    PaymentQuoteLedger(session).record("nets", qr.txn_retrieval_ref, total, get_settings().default_currency)
    session.commit()
    return {
        "txn_retrieval_ref": qr.txn_retrieval_ref,
        "qr_code": qr.data_url,
        "network_status": qr.network_status,
        "amount": total,
    }


@router.get("/nets/{txn_retrieval_ref}/status")
def nets_payment_status(
    txn_retrieval_ref: str,
    actor: Actor = Depends(get_actor),
    nets: NetsClient = Depends(get_nets_client),
):
    _require_shopper(actor)
    confirmation = nets.query_status(txn_retrieval_ref)
    return {
        "txn_retrieval_ref": txn_retrieval_ref,
        "status": confirmation.status,
        "raw_status": confirmation.raw_status,
    }


@router.post("/nets/complete")
def complete_nets_payment(
    req: NetsCompleteRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    nets: NetsClient = Depends(get_nets_client),
):
    _require_shopper(actor)
    quote = PaymentQuoteLedger(session).get("nets", req.txn_retrieval_ref)
    if quote is None:
        raise PaymentAmountMismatch(
            "no quoted amount for this NETS payment",
            txn_retrieval_ref=req.txn_retrieval_ref,
        )
    if req.wait:
        confirmation = nets.wait_for_payment(req.txn_retrieval_ref)
    else:
        confirmation = nets.query_status(req.txn_retrieval_ref)
    if confirmation.amount is None:
        confirmation = confirmation.model_copy(update={"amount": quote.amount_cents, "currency": quote.currency})
    cart = _resolve_cart(actor, req, session)
    orchestrator = SettlementOrchestrator(session, cart_store=SqlCartStore(session))
    result = orchestrator.settle(confirmation, cart, _checkout_details(req))
    return result.as_dict()
