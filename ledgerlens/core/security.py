from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional, Dict, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from ledgerlens.core.config import settings
from ledgerlens.core.schemas import AIQueryContext

SUPERADMIN_ROLE = "superadmin"


# Tokens come from the identity service in production; this issuer signs
# with the same settings and is used by the test suite and local tooling
def create_access_token(data: dict):
    to_encode = data.copy()

    expire_time = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire_time})

    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )

    return encoded_jwt


# Tokens are issued by the identity service; we only verify them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="profile/login")


def context_from_claims(payload: Dict[str, Any]) -> Optional[AIQueryContext]:
    """
    Turn verified token claims into a query context.

    Super admins get global scope (and keep their active org as a default).
    Everyone else is pinned to their active org, which must be one of the
    orgs they are a member of. Returns None when no context can be granted.
    """
    user_id = payload.get("user_id")
    if user_id is None:
        return None

    user_name = payload.get("name")
    active_org_id = payload.get("active_org_id")

    if payload.get("role") == SUPERADMIN_ROLE:
        return AIQueryContext.for_superuser(
            user_id=str(user_id), user_name=user_name, active_org_id=active_org_id
        )

    if not active_org_id:
        return None

    # Verify membership
    if active_org_id not in (payload.get("org_ids") or []):
        return None

    return AIQueryContext.for_org(
        org_id=active_org_id, user_id=str(user_id), user_name=user_name
    )


# Decode the token and work out what the caller may query
async def get_query_context(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> AIQueryContext:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    # Covers bad signatures and expired tokens
    except jwt.InvalidTokenError:
        raise credentials_exception

    if payload.get("user_id") is None:
        raise credentials_exception

    context = context_from_claims(payload)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization",
        )

    return context
