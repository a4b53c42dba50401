import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .adapters.base import GatewayError, GatewayErrorCode, PaymentSession
from .adapters.exceptions import (
    AuthenticationError,
    PaymentNotFoundError,
    ValidationError,
    VerificationError,
)
from .adapters.foxpay import FoxPayAdapter, FoxPayOptions
from .adapters.foxpay.webhooks import SIGNATURE_HEADER
from .config import get_settings
from .models import Base
from .payment_handler import PaymentSessionService

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("foxpay-service")


class EndpointFilter(logging.Filter):
    """Filter out noisy health check access logs."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging filter
        return "GET /health" not in record.getMessage()


logging.getLogger("uvicorn.access").addFilter(EndpointFilter())


@lru_cache(maxsize=1)
def get_provider() -> FoxPayAdapter:
    """Build the FoxPay adapter; raises ``ConfigurationError`` if options are missing."""
    return FoxPayAdapter(FoxPayOptions.from_settings(get_settings()))


def get_session_service(request: Request) -> PaymentSessionService:
    return request.app.state.session_service


# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = get_provider()

    engine: AsyncEngine = create_async_engine(settings.database_url)
    sessionmaker = async_sessionmaker(engine, expire_on_commit=False)

    # Ensure database is reachable before starting services
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        await conn.run_sync(Base.metadata.create_all)

    redis: Optional[Redis] = None
    try:
        redis = Redis.from_url(
            settings.redis_url, encoding="utf-8", decode_responses=True
        )
        await redis.ping()
    except Exception as exc:  # pragma: no cover - startup warning
        logger.warning("Redis unavailable: %s", exc)
        redis = None

    app.state.session_service = PaymentSessionService(sessionmaker, provider, redis)
    logger.info("FoxPay service ready (api=%s)", provider.options.api_url)
    try:
        yield
    finally:
        await provider.aclose()
        get_provider.cache_clear()
        await engine.dispose()
        if redis is not None:
            await redis.close()


app = FastAPI(
    title="FoxPay Payment Service",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CreateSessionRequest(BaseModel):
    amount: int
    currency_code: str
    cart_id: Optional[str] = None


class UpdateSessionRequest(CreateSessionRequest):
    pass


class RefundRequest(BaseModel):
    amount: int = Field(gt=0)


def _raise_for_gateway_error(error: GatewayError) -> None:
    if error.code == GatewayErrorCode.NOT_AUTHORIZED:
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail=error.to_dict())


def _session_response(result) -> dict:
    if isinstance(result, GatewayError):
        _raise_for_gateway_error(result)
    return result.to_dict()


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PaymentNotFoundError)
async def not_found_handler(request: Request, exc: PaymentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.error(f"FoxPay authentication failed: {exc}")
    return JSONResponse(
        status_code=503, content={"detail": "Payment provider unavailable"}
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "foxpay-service"}


@app.post("/payment/webhook")
async def foxpay_webhook(
    request: Request,
    provider: FoxPayAdapter = Depends(get_provider),
    service: PaymentSessionService = Depends(get_session_service),
):
    """Verify a FoxPay callback and apply it to the payment session."""
    payload = await request.body()
    sig = request.headers.get(SIGNATURE_HEADER)

    try:
        result = await provider.get_webhook_action_and_data(
            payload, sig, dict(request.headers)
        )
    except VerificationError:
        raise HTTPException(status_code=401, detail="Invalid signature")

    logger.info(f"Received webhook action {result.action.value} for {result.session_id}")
    session = await service.apply_webhook_action(result)
    return {
        "received": True,
        "action": result.action.value,
        "session_id": result.session_id,
        "status": session.status.value if session is not None else None,
    }


@app.post("/store/payment-sessions", status_code=status.HTTP_201_CREATED)
async def create_payment_session(
    body: CreateSessionRequest,
    service: PaymentSessionService = Depends(get_session_service),
):
    result = await service.create_session(body.amount, body.currency_code, body.cart_id)
    return _session_response(result)


@app.get("/store/payment-sessions/{external_id}")
async def get_payment_session(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    session: PaymentSession = await service.get_session(external_id)
    return session.to_dict()


@app.get("/store/payment-sessions/{external_id}/status")
async def get_payment_session_status(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    current = await service.refresh_status(external_id)
    return {"external_id": external_id, "status": current.value}


@app.get("/store/payment-sessions/{external_id}/provider")
async def retrieve_provider_record(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    result = await service.retrieve_session(external_id)
    if isinstance(result, GatewayError):
        _raise_for_gateway_error(result)
    return result


@app.post("/store/payment-sessions/{external_id}/authorize")
async def authorize_payment_session(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    return _session_response(await service.authorize_session(external_id))


@app.post("/store/payment-sessions/{external_id}/capture")
async def capture_payment_session(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    return _session_response(await service.capture_session(external_id))


@app.post("/store/payment-sessions/{external_id}/cancel")
async def cancel_payment_session(
    external_id: str, service: PaymentSessionService = Depends(get_session_service)
):
    return _session_response(await service.cancel_session(external_id))


@app.post("/store/payment-sessions/{external_id}/update")
async def update_payment_session(
    external_id: str,
    body: UpdateSessionRequest,
    service: PaymentSessionService = Depends(get_session_service),
):
    result = await service.update_session(
        external_id, body.amount, body.currency_code, body.cart_id
    )
    return _session_response(result)


@app.post("/store/payment-sessions/{external_id}/refund")
async def refund_payment_session(
    external_id: str,
    body: RefundRequest,
    service: PaymentSessionService = Depends(get_session_service),
):
    result = await service.refund_session(external_id, body.amount)
    if isinstance(result, GatewayError):
        _raise_for_gateway_error(result)
    return {"external_id": external_id, "status": result.status, "data": result.data}


if __name__ == "__main__":
    uvicorn.run(
        "foxpay_service.main:app",
        host="0.0.0.0",
        port=settings.HTTP_PORT,
        reload=True,
        log_level="info"
    )
