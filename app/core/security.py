from datetime import timedelta
from typing import Optional, Dict, Any
import jwt
from app.core.clock import utcnow
from app.core.config import settings


def create_access_token(subject: str, data: Optional[Dict[str, Any]] = None, expires_minutes: int = 60) -> str:
    """Create JWT access token.

    Tokens are normally issued by the external auth service; this helper
    exists for tooling and tests that share the signing key.
    """
    to_encode = dict(data or {})
    expire = utcnow() + timedelta(minutes=expires_minutes)
    to_encode.update({
        "exp": expire,
        "iat": utcnow(),
        "sub": subject,
        "token_type": "access"
    })
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except jwt.PyJWTError:
        return None


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Verify token and check token type"""
    payload = decode_token(token)
    if not payload:
        return None

    if payload.get("token_type") != token_type:
        return None

    return payload
