from fastapi import APIRouter
from app.core.exceptions import ErrorResponse
from app.api.v1.providers import routes as providers
from app.api.v1.bookings import routes as bookings
from app.api.v1.payments import routes as payments
from app.api.v1.flow import routes as flow

error_responses = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}

api_router = APIRouter(responses=error_responses)
api_router.include_router(providers.router, prefix="/providers", tags=["providers"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(flow.router, prefix="/flow", tags=["flow"])
