from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import BaseCustomException, create_error_response
from app.api.v1.api import api_router
from app.api.v1.flow.schemas import FLOW_STEPS
from app.domain.bookings.models import BookingStatus
from app.domain.bookings.repository import BookingRepository
from app.domain.payments.reconciler import PaymentReconciler, ReconcilerSupervisor
from app.infrastructure.database import AsyncSessionLocal, close_db, init_db
from app.infrastructure.payment_gateway import MidtransGateway
from app.infrastructure.redis import close_redis_services, init_redis_services, redis_manager

logger = logging.getLogger(__name__)


async def resume_reconciliation(supervisor: ReconcilerSupervisor) -> int:
    """Restart reconcilers for bookings left unsettled by a previous process"""
    async with AsyncSessionLocal() as db:
        repo = BookingRepository(db)
        pending = await repo.get_by_status(BookingStatus.PENDING_PAYMENT)
        expired = await repo.get_by_status(BookingStatus.EXPIRED)
    booking_ids = [b.id for b in pending] + [b.id for b in expired if not b.expiry_finalized]
    for booking_id in booking_ids:
        supervisor.start(booking_id)
    return len(booking_ids)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    try:
        await init_redis_services(settings.REDIS_URL, FLOW_STEPS, settings.FLOW_STATE_TTL_SECONDS)
    except Exception as e:
        # The flow hand-off is advisory; bookings work without it
        logger.warning(f"Flow state store disabled: {e}")

    gateway = MidtransGateway()
    supervisor = ReconcilerSupervisor(PaymentReconciler(AsyncSessionLocal, gateway))
    app.state.payment_gateway = gateway
    app.state.reconciler_supervisor = supervisor
    resumed = await resume_reconciliation(supervisor)
    logger.info(f"{settings.PROJECT_NAME} started, resumed {resumed} reconciler(s)")

    yield

    await supervisor.stop_all()
    await gateway.aclose()
    if redis_manager.is_connected:
        await close_redis_services()
    await close_db()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(BaseCustomException)
async def custom_exception_handler(request: Request, exc: BaseCustomException):
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc, request_id=request.headers.get("X-Request-ID")),
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health_check(request: Request):
    supervisor = getattr(request.app.state, "reconciler_supervisor", None)
    return {
        "status": "ok",
        "redis": await redis_manager.is_healthy(),
        "reconcilers": len(supervisor) if supervisor is not None else 0,
    }
