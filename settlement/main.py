from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from settlement.api.routes_checkout import router as checkout_router
from settlement.api.routes_orders import router as orders_router
from settlement.api.routes_reconciliation import router as reconciliation_router
from settlement.api.routes_refunds import router as refunds_router
from settlement.core.config import get_settings
from settlement.core.errors import SettlementError
from settlement.core.logging import configure_logging
from settlement.persistence.pg import init_db

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title=settings.app_name)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    logger.info("settlement service ready: env=%s payment_backend=%s", settings.env, settings.payment_backend)


@app.exception_handler(SettlementError)
async def settlement_error_handler(_: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error("%s: %s %s", exc.code, exc.message, exc.context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(refunds_router)
app.include_router(reconciliation_router)
