import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import NOTIFY_RATE_LIMIT, limiter, verify_api_key
from .checkout import CheckoutService, OrderAlreadyPaidError, SessionInitializer
from .config import GatewayConfig
from .connectors.base import ProviderError
from .connectors.saferpay import SaferpayClient
from .database import (
    OrderRepository,
    PaymentRepository,
    close_db,
    get_async_session_factory,
    get_db,
    init_db,
)
from .gateway import SaferpayGateway
from .locking import DatabaseLockBackend, LockManager, RedisLockBackend

logger = logging.getLogger(__name__)

_gateway: Optional[SaferpayGateway] = None


def build_gateway(config: GatewayConfig) -> SaferpayGateway:
    """Wire the gateway with the lock backend selected by ``REDIS_URL``."""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        backend = RedisLockBackend.from_url(redis_url)
    else:
        backend = DatabaseLockBackend(get_async_session_factory())
    lock_manager = LockManager(backend, timeout=config.lock_timeout)
    return SaferpayGateway(config, SaferpayClient(config), lock_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _gateway
    await init_db()
    _gateway = build_gateway(GatewayConfig.from_env())
    logger.info(f"Gateway {_gateway.gateway_id} ready in {_gateway.config.mode} mode")
    try:
        yield
    finally:
        await _gateway.client.aclose()
        _gateway = None
        await close_db()


app = FastAPI(title="Saferpay Payment Page Gateway", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"Saferpay request failed: {exc}")
    return PlainTextResponse(str(exc), status_code=502)


def get_gateway() -> SaferpayGateway:
    if _gateway is None:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    return _gateway


def _check_gateway_id(gateway: SaferpayGateway, gateway_id: str) -> None:
    if gateway_id != gateway.gateway_id:
        raise HTTPException(status_code=404, detail="Unknown payment gateway")


class CheckoutBody(BaseModel):
    return_url: str
    cancel_url: str
    language: Optional[str] = None


@app.api_route("/payment/notify/{gateway_id}", methods=["GET", "POST"], response_class=PlainTextResponse)
@limiter.limit(NOTIFY_RATE_LIMIT)
async def notify(
    request: Request,
    gateway_id: str,
    order: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    gateway: SaferpayGateway = Depends(get_gateway),
):
    _check_gateway_id(gateway, gateway_id)
    result = await gateway.on_notify(db, order)
    return PlainTextResponse(result.message, status_code=result.status_code)


@app.get("/payment/return/{order_uuid}")
async def payment_return(
    order_uuid: str,
    db: AsyncSession = Depends(get_db),
    gateway: SaferpayGateway = Depends(get_gateway),
):
    order = await OrderRepository(db).get_by_uuid(order_uuid)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    if not await gateway.on_return(order):
        return JSONResponse({"order": order.uuid, "state": "pending"}, status_code=202)

    # Pick up what the notification request committed meanwhile.
    await db.refresh(order)
    payments = await PaymentRepository(db).find_by(gateway.gateway_id, order.id)
    if order.is_paid:
        state = "paid"
    elif payments:
        state = "authorized"
    else:
        state = "unpaid"
    return {"order": order.uuid, "state": state}


@app.post("/payment/checkout/{order_uuid}")
async def checkout(
    order_uuid: str,
    body: CheckoutBody,
    db: AsyncSession = Depends(get_db),
    gateway: SaferpayGateway = Depends(get_gateway),
    api_key: str = Depends(verify_api_key),
):
    order = await OrderRepository(db).get_by_uuid(order_uuid)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    service = CheckoutService(db, SessionInitializer(gateway.config, gateway.client))
    try:
        result = await service.start(order, body.return_url, body.cancel_url, body.language)
    except OrderAlreadyPaidError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "order": order.uuid,
        "token": result.token,
        "redirect_url": result.redirect_url,
        "expiration": result.expiration.isoformat(),
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "saferpay_gateway"}
