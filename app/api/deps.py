from typing import Optional
import uuid

from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ValidationError

from app.core import security
from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import AuthenticationError, ExternalServiceError
from app.domain.payments.reconciler import ReconcilerSupervisor
from app.infrastructure import redis as redis_services
from app.infrastructure.payment_gateway import PaymentGateway
from app.infrastructure.redis import FlowStateStore

# Tokens are issued by the auth service; this service only verifies them
reusable_oauth2 = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


class CurrentUser(BaseModel):
    """Caller identity taken from a verified access token"""
    id: uuid.UUID
    email: Optional[str] = None
    role: Optional[str] = None


async def get_current_user(token: str = Depends(reusable_oauth2)) -> CurrentUser:
    payload = security.verify_token(token)
    if not payload:
        raise AuthenticationError("Could not validate credentials")
    try:
        return CurrentUser(id=payload.get("sub"), email=payload.get("email"), role=payload.get("role"))
    except ValidationError:
        raise AuthenticationError("Could not validate credentials")


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or system_clock


def get_payment_gateway(request: Request) -> PaymentGateway:
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise ExternalServiceError("Payment gateway is not configured")
    return gateway


def get_supervisor(request: Request) -> Optional[ReconcilerSupervisor]:
    return getattr(request.app.state, "reconciler_supervisor", None)


def get_flow_store() -> FlowStateStore:
    if redis_services.flow_state_store is None:
        raise ExternalServiceError("Flow state store unavailable", details={"service_name": "redis"})
    return redis_services.flow_state_store


def get_flow_session(x_flow_session: str = Header(..., min_length=8, max_length=128)) -> str:
    return x_flow_session
