from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.database import get_db
from promo_engine.core.security import verify_access_token, ADMIN_ROLE


logger = logging.getLogger(__name__)

# Bearer scheme that lets anonymous requests through; routes decide what they need
security = HTTPBearer(auto_error=False)


async def get_current_customer_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[uuid.UUID]:
    """
    Optional customer identity for storefront routes.

    Anonymous carts are allowed, so a missing token yields None. A token
    that is present but invalid is rejected rather than silently ignored.
    """
    if credentials is None:
        return None

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        logger.warning(f"Invalid subject in token: {payload.get('sub')}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> dict:
    """Dependency for back-office routes: a valid token with the ADMIN role claim."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("role") != ADMIN_ROLE:
        logger.warning(f"Admin route denied for subject {payload.get('sub')}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    return payload


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
CustomerId = Annotated[Optional[uuid.UUID], Depends(get_current_customer_id)]
AdminUser = Annotated[dict, Depends(require_admin)]
