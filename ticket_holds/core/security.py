"""
Bearer-token identity for operators and buyers.

Accounts and login live in another service; this module only verifies the
JWTs it issues and exposes the caller's user id and role.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from dataclasses import dataclass
import logging

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ticket_holds.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller"""

    user_id: int
    role: Optional[str] = None

    @property
    def is_operator(self) -> bool:
        return self.role in settings.OPERATOR_ROLES


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )


def decode_token(token: str) -> Identity:
    """
    Verify a token and return the identity it carries
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        raise credentials_exception

    if payload.get("type") != "access":
        raise credentials_exception

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise credentials_exception

    return Identity(user_id=user_id, role=payload.get("role"))


async def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Optional[Identity]:
    """
    Identity of the caller, or None for anonymous requests
    """
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


async def get_optional_user_id(
    identity: Optional[Identity] = Depends(get_optional_identity)
) -> Optional[int]:
    return identity.user_id if identity else None


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_optional_identity)
) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_operator(
    identity: Identity = Depends(get_current_identity)
) -> Identity:
    """
    Require a caller allowed to manage holds and links
    """
    if not identity.is_operator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator privileges required"
        )
    return identity
